"""
Local cache of the signed-in user's record.

The cached record lets the command line show who is signed in without a
round trip. It is never authoritative: fresh data always comes from the API,
and the cache is cleared on sign-out.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from dualguard.shared.models import User

logger = logging.getLogger(__name__)


class UserStorage:
    """Stores the last fetched current user in ``user.json``."""

    def __init__(self, config_dir: Optional[str] = None):
        self._config_dir = self._get_config_directory(config_dir)
        self._user_file = self._config_dir / "user.json"

        logger.debug(f"User cache at {self._user_file}")

    def _get_config_directory(self, custom_dir: Optional[str] = None) -> Path:
        """Get the configuration directory path."""
        if custom_dir:
            return Path(custom_dir)

        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            return Path(xdg_config) / 'dualguard'
        return Path.home() / '.config' / 'dualguard'

    @property
    def path(self) -> Path:
        return self._user_file

    def save(self, user: Optional[User]) -> bool:
        """
        Cache ``user``; passing None clears the cache.

        Returns:
            True if successful, False otherwise
        """
        if user is None:
            return self.clear()

        try:
            self._config_dir.mkdir(parents=True, exist_ok=True)

            # Write to temporary file first, then rename for atomic operation
            temp_file = self._user_file.with_suffix('.tmp')
            with open(temp_file, 'w') as f:
                json.dump(user.to_dict(), f, indent=2)
            temp_file.replace(self._user_file)

            logger.debug(f"Cached user {user.username}")
            return True

        except (OSError, TypeError) as e:
            logger.warning(f"Failed to save user cache: {e}")
            return False

    def load(self) -> Optional[User]:
        """
        Load the cached user.

        Returns:
            The cached user, or None if absent. A corrupted cache is removed.
        """
        if not self._user_file.exists():
            return None

        try:
            with open(self._user_file, 'r') as f:
                return User.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Discarding corrupted user cache: {e}")
            self.clear()
            return None

    def clear(self) -> bool:
        try:
            self._user_file.unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.warning(f"Failed to clear user cache: {e}")
            return False
