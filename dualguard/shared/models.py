"""
Core data models for the DualGuard client.

This module defines the request descriptor consumed by the API client, the
credential types returned by credential stores, and the records the audit
platform's REST API returns for users, contests, issues and escalations.
"""

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union


class UserRole(Enum):
    AUDITOR = "AUDITOR"
    JUDGE = "JUDGE"
    ADMIN = "ADMIN"


class UserStatus(Enum):
    UNVERIFIED = "UNVERIFIED"
    VERIFIED = "VERIFIED"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class ContestStatus(Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    JUDGING = "JUDGING"
    ESCALATIONS = "ESCALATIONS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class IssueStatus(Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DUPLICATE = "DUPLICATE"
    ESCALATED = "ESCALATED"


class Severity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Request pipeline
# ---------------------------------------------------------------------------

@dataclass
class RequestDescriptor:
    """
    One logical HTTP request, built per call by an API client.

    ``skip_auth`` suppresses credential attachment and the refresh-and-retry
    on 401. ``skip_error_handling`` suppresses the refresh-and-retry as well
    as the ``api:error`` and ``auth:signout`` events.
    """
    method: str
    path: str
    body: Optional[Any] = None
    params: Optional[Dict[str, str]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    skip_auth: bool = False
    skip_error_handling: bool = False

    def __post_init__(self):
        self.method = self.method.upper()
        if not self.path:
            raise ValueError("Request path cannot be empty")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LiteralCredential:
    """A credential whose secret value is readable by the client."""
    value: str = field(repr=False)

    def __post_init__(self):
        if not self.value:
            raise ValueError("Credential value cannot be empty")


@dataclass(frozen=True)
class OpaqueCredential:
    """
    A credential known to be present but not readable, such as an httpOnly
    cookie set by the server. The transport forwards it on its own.
    """
    name: str


# Absent credentials are represented by None.
Credential = Union[LiteralCredential, OpaqueCredential]


@dataclass(frozen=True)
class TokenResponse:
    """Credential pair returned by login, refresh and email verification."""
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)

    @classmethod
    def from_body(cls, body: Any) -> Optional['TokenResponse']:
        """Extract a credential pair from a response body, if it carries one."""
        if not isinstance(body, dict):
            return None
        access = body.get('accessToken')
        refresh = body.get('refreshToken')
        if isinstance(access, str) and isinstance(refresh, str) and access and refresh:
            return cls(access_token=access, refresh_token=refresh)
        return None


# ---------------------------------------------------------------------------
# API records
# ---------------------------------------------------------------------------

R = TypeVar('R', bound='ApiRecord')

_CAMEL_RE = re.compile(r'_([a-z])')


def _camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp as sent by the backend (``Z`` suffix allowed)."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value)


def parse_decimal(value: Union[str, int, float]) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal value: {value!r}")


def enum_or_raw(enum_cls: Type[Enum]) -> Callable[[str], Union[Enum, str]]:
    """Converter returning the enum member, or the raw string for values this client does not know."""
    def convert(value: str):
        try:
            return enum_cls(value)
        except ValueError:
            return value
    return convert


def nested(record_cls: Type['ApiRecord']) -> Callable[[Dict[str, Any]], 'ApiRecord']:
    return lambda value: record_cls.from_dict(value)


def nested_list(record_cls: Type['ApiRecord']) -> Callable[[List[Dict[str, Any]]], List['ApiRecord']]:
    return lambda values: [record_cls.from_dict(value) for value in values]


def _convert(converter: Callable[[Any], Any]) -> Dict[str, Any]:
    return {'convert': converter}


def _dump(value: Any) -> Any:
    if isinstance(value, ApiRecord):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value


class ApiRecord:
    """
    Mixin for dataclasses mirroring camelCase JSON records.

    Field names are snake_case; the JSON key is the camelCase form unless a
    field sets ``metadata['key']``. ``metadata['convert']`` turns the raw JSON
    value into the field type. Missing keys fall back to the field default.
    """

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        if not isinstance(data, dict):
            raise ValueError(f"Expected an object for {cls.__name__}, got {type(data).__name__}")

        kwargs = {}
        for f in fields(cls):
            key = f.metadata.get('key', _camel(f.name))
            if key not in data:
                continue
            value = data[key]
            converter = f.metadata.get('convert')
            if converter is not None and value is not None:
                value = converter(value)
            kwargs[f.name] = value

        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ValueError(f"Incomplete {cls.__name__} record: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.metadata.get('key', _camel(f.name)): _dump(getattr(self, f.name))
            for f in fields(self)
        }


@dataclass
class User(ApiRecord):
    """A platform account (auditor, judge or admin)."""
    id: int
    username: str
    email: Optional[str] = None
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet: Optional[str] = None
    is_banned: bool = False
    is_email_verified: bool = False
    is_identity_verified: bool = False
    role: Union[UserRole, str] = field(default=UserRole.AUDITOR, metadata=_convert(enum_or_raw(UserRole)))
    avatar_url: Optional[str] = None
    status: Optional[Union[UserStatus, str]] = field(default=None, metadata=_convert(enum_or_raw(UserStatus)))
    score: Optional[Decimal] = field(default=None, metadata=_convert(parse_decimal))
    total_rewards: Optional[Decimal] = field(default=None, metadata=_convert(parse_decimal))
    high_issue_count: Optional[int] = None
    medium_issue_count: Optional[int] = None
    low_issue_count: Optional[int] = None
    github_username: Optional[str] = None
    x_username: Optional[str] = None
    telegram_username: Optional[str] = None
    discord_username: Optional[str] = None
    created_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    updated_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))

    @property
    def is_judge(self) -> bool:
        return self.role in (UserRole.JUDGE, UserRole.ADMIN)


@dataclass
class CodeLocation(ApiRecord):
    file: Optional[str] = None
    line: Optional[int] = None
    function: Optional[str] = None


@dataclass
class Contest(ApiRecord):
    """An audit contest with its prize pool and schedule."""
    id: int
    title: str
    status: Union[ContestStatus, str] = field(metadata=_convert(enum_or_raw(ContestStatus)))
    start_date: datetime = field(metadata=_convert(parse_timestamp))
    end_date: datetime = field(metadata=_convert(parse_timestamp))
    total_prize_pool: Decimal = field(metadata=_convert(parse_decimal))
    contract_address: Optional[str] = None
    contract_name: Optional[str] = None
    description: Optional[str] = None
    sponsor_id: Optional[int] = None
    source_code_url: Optional[str] = None
    documentation_url: Optional[str] = None
    judging_end_date: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    prize_token_address: Optional[str] = None
    prize_distribution: Optional[Dict[str, float]] = None
    max_issues_per_auditor: Optional[int] = None
    min_severity_for_reward: Optional[Union[Severity, str]] = field(
        default=None, metadata=_convert(enum_or_raw(Severity))
    )
    tags: List[str] = field(default_factory=list)
    chain: Optional[str] = None
    photo_url: Optional[str] = None
    github_repo_url: Optional[str] = None
    auditors_count: Optional[int] = None
    issue_count: Optional[int] = None
    created_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    updated_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))

    def __post_init__(self):
        if self.tags is None:
            self.tags = []

    @property
    def prize_display(self) -> str:
        """Short prize pool label, e.g. ``$1.5M`` or ``$50K``."""
        amount = self.total_prize_pool
        if amount >= 1000000:
            return f"${amount / 1000000:.1f}M"
        if amount >= 1000:
            return f"${amount / 1000:.0f}K"
        return f"${amount:.0f}"

    @property
    def category(self) -> str:
        if self.tags:
            return self.tags[0]
        if self.description:
            return self.description.split(' ')[0]
        return 'Smart Contract'


@dataclass
class ContestParticipation(ApiRecord):
    contest_id: int
    user_id: int
    joined_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    issues_submitted: int = 0
    issues_approved: int = 0
    total_reward_earned: Decimal = field(default=Decimal('0'), metadata=_convert(parse_decimal))
    user: Optional[User] = field(default=None, metadata=_convert(nested(User)))
    contest: Optional[Contest] = field(default=None, metadata=_convert(nested(Contest)))


@dataclass
class IssueFolder(ApiRecord):
    id: int
    name: str
    tag: Optional[str] = None
    severity: Optional[Union[Severity, str]] = field(default=None, metadata=_convert(enum_or_raw(Severity)))


@dataclass
class UserIssue(ApiRecord):
    """Summary of one of the current user's findings in a contest."""
    title: str
    severity: Union[Severity, str] = field(metadata=_convert(enum_or_raw(Severity)))
    status: Union[IssueStatus, str] = field(metadata=_convert(enum_or_raw(IssueStatus)))
    description: str = ''
    is_valid: bool = False
    judge_severity: Optional[Union[Severity, str]] = field(default=None, metadata=_convert(enum_or_raw(Severity)))
    created_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    updated_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    folder: Optional[IssueFolder] = field(default=None, metadata=_convert(nested(IssueFolder)))


@dataclass
class UserParticipation(ApiRecord):
    """Whether the current user joined a contest, and what they submitted."""
    participated: bool = False
    joined_at: Optional[datetime] = field(
        default=None,
        metadata={'key': 'participation', 'convert': lambda p: parse_timestamp(p['joinedAt']) if p.get('joinedAt') else None}
    )
    issues_submitted: List[UserIssue] = field(default_factory=list, metadata=_convert(nested_list(UserIssue)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'participated': self.participated,
            'participation': {'joinedAt': self.joined_at.isoformat()} if self.joined_at else None,
            'issuesSubmitted': [issue.to_dict() for issue in self.issues_submitted],
        }


@dataclass
class Issue(ApiRecord):
    """A vulnerability finding submitted to a contest."""
    id: int
    contest_id: int
    title: str
    severity: Union[Severity, str] = field(metadata=_convert(enum_or_raw(Severity)))
    status: Union[IssueStatus, str] = field(metadata=_convert(enum_or_raw(IssueStatus)))
    submitted_by: Optional[int] = None
    description: str = ''
    anonymous_id: Optional[str] = None
    affected_contract: Optional[str] = None
    vulnerable_code_snippet: Optional[str] = None
    code_location: Optional[CodeLocation] = field(default=None, metadata=_convert(nested(CodeLocation)))
    proof_of_concept: Optional[str] = None
    recommended_fix: Optional[str] = None
    cwe_id: Optional[str] = None
    cvss_score: Optional[Decimal] = field(default=None, metadata=_convert(parse_decimal))
    reward_amount: Optional[Decimal] = field(default=None, metadata=_convert(parse_decimal))
    reward_paid: bool = False
    reward_paid_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    duplicate_of: Optional[int] = None
    judged_by: Optional[int] = None
    judged_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    judge_notes: Optional[str] = None
    created_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    updated_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    submitter: Optional[User] = field(default=None, metadata=_convert(nested(User)))


@dataclass
class IssueComment(ApiRecord):
    id: int
    issue_id: int
    user_id: int
    content: str
    is_internal: bool = False
    created_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    updated_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    user: Optional[User] = field(default=None, metadata=_convert(nested(User)))


@dataclass
class IssueEscalationComment(ApiRecord):
    """Dispute thread between the submitting auditor and the judge."""
    id: int
    issue_id: int
    auditor_comment: Optional[str] = None
    judge_response: Optional[str] = None
    auditor_commented_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    judge_responded_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    created_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))
    updated_at: Optional[datetime] = field(default=None, metadata=_convert(parse_timestamp))

    @property
    def awaiting_judge(self) -> bool:
        return bool(self.auditor_comment) and not self.judge_response


@dataclass
class Page:
    """One page of a paginated listing."""
    items: List[Any]
    page: int = 1
    limit: int = 0
    total: int = 0
    total_pages: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], item_cls: Type[ApiRecord]) -> 'Page':
        if not isinstance(data, dict) or not isinstance(data.get('data'), list):
            raise ValueError("Expected a paginated response with a 'data' list")
        pagination = data.get('pagination') or {}
        items = [item_cls.from_dict(item) for item in data['data']]
        return cls(
            items=items,
            page=pagination.get('page', 1),
            limit=pagination.get('limit', len(items)),
            total=pagination.get('total', len(items)),
            total_pages=pagination.get('totalPages', 1 if items else 0),
        )

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages
