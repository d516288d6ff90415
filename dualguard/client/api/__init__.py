"""
Typed wrappers over the DualGuard REST resources.

Each wrapper takes a ``DualGuardAPIClient`` and goes through its
authenticated request pipeline.
"""

from enum import Enum
from typing import Any, Dict, Optional, Sequence

PAGINATION_KEYS = ('page', 'limit', 'offset', 'sortBy', 'sortOrder')


def build_query_params(
    params: Optional[Dict[str, Any]],
    leading_keys: Sequence[str] = PAGINATION_KEYS,
    include_filters: bool = True
) -> Optional[Dict[str, str]]:
    """
    Build query parameters from listing options.

    Leading keys are added first and only when truthy. Any other key with a
    value other than None is appended as a filter when ``include_filters``
    is set.

    Returns:
        Ordered parameters, or None when there are none
    """
    if not params:
        return None

    query: Dict[str, str] = {}
    for key in leading_keys:
        if params.get(key):
            query[key] = _stringify(params[key])

    if include_filters:
        for key, value in params.items():
            if key not in leading_keys and value is not None:
                query[key] = _stringify(value)

    return query or None


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)
