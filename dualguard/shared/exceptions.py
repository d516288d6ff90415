"""
Exception hierarchy for the DualGuard API client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions, plus the tagged ``ApiError`` raised by the request
pipeline for every failed HTTP exchange.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the DualGuard client."""

    # Authentication errors (1000-1099)
    AUTH_UNAUTHORIZED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_NO_CREDENTIALS = "AUTH_1003"
    AUTH_FORBIDDEN = "AUTH_1004"

    # Network and communication errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # Response errors (3000-3099)
    RESPONSE_PARSE_FAILED = "RESPONSE_3001"
    RESPONSE_CLIENT_ERROR = "RESPONSE_3002"
    RESPONSE_NOT_FOUND = "RESPONSE_3003"
    RESPONSE_SERVER_ERROR = "RESPONSE_3004"

    # Credential storage errors (4000-4099)
    STORAGE_WRITE_FAILED = "STORAGE_4001"
    STORAGE_READ_FAILED = "STORAGE_4002"

    # Configuration errors (8000-8099)
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RECONNECT = "reconnect"
    REFRESH_TOKEN = "refresh_token"
    SIGN_IN = "sign_in"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"


class DualGuardError(Exception):
    """
    Base exception class for all DualGuard client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = dict(context or {})
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


def _classify_status(status: int) -> ErrorCode:
    """Map an HTTP status (0 for transport failures) to an error code."""
    if status == 0:
        return ErrorCode.NETWORK_CONNECTION_FAILED
    if status == 401:
        return ErrorCode.AUTH_UNAUTHORIZED
    if status == 403:
        return ErrorCode.AUTH_FORBIDDEN
    if status == 404:
        return ErrorCode.RESPONSE_NOT_FOUND
    if status >= 500:
        return ErrorCode.RESPONSE_SERVER_ERROR
    return ErrorCode.RESPONSE_CLIENT_ERROR


_RECOVERY_BY_CODE = {
    ErrorCode.NETWORK_CONNECTION_FAILED: [RecoveryAction.RETRY, RecoveryAction.RECONNECT],
    ErrorCode.AUTH_UNAUTHORIZED: [RecoveryAction.SIGN_IN],
    ErrorCode.AUTH_FORBIDDEN: [RecoveryAction.CONTACT_ADMIN],
    ErrorCode.RESPONSE_SERVER_ERROR: [RecoveryAction.RETRY],
    ErrorCode.RESPONSE_CLIENT_ERROR: [RecoveryAction.USER_INTERVENTION],
}


class ApiError(DualGuardError):
    """
    A failed HTTP exchange with the backend.

    ``status`` is the HTTP status code, or 0 when the transport failed before
    any status line was received. ``code`` and ``details`` are copied from
    the error body returned by the server when present.
    """

    def __init__(
        self,
        message: str,
        status: int,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[ErrorCode] = None,
        **kwargs
    ):
        error_code = error_code or _classify_status(status)
        severity = kwargs.pop(
            'severity',
            ErrorSeverity.HIGH if status in (0, 401) or status >= 500 else ErrorSeverity.MEDIUM
        )
        recovery_actions = kwargs.pop('recovery_actions', _RECOVERY_BY_CODE.get(error_code, []))
        context = dict(kwargs.pop('context', None) or {})
        context['status'] = status

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            context=context,
            recovery_actions=recovery_actions,
            **kwargs
        )

        self.status = status
        self.code = code
        self.details = details

    @property
    def is_network_error(self) -> bool:
        return self.status == 0

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_server_error(self) -> bool:
        return self.status >= 500

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['error']['status'] = self.status
        data['error']['api_code'] = self.code
        data['error']['details'] = self.details
        return data

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, code={self.code!r}, message={self.message!r})"


class TokenStorageError(DualGuardError):
    """Credential storage back-end errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ConfigurationError(DualGuardError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = dict(kwargs.pop('context', None) or {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> DualGuardError:
    """
    Convert a generic exception to a structured DualGuardError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Error code used when no specific mapping applies

    Returns:
        Structured DualGuardError
    """
    if isinstance(exception, DualGuardError):
        return exception

    if isinstance(exception, (ConnectionError, TimeoutError)):
        return ApiError(
            message=str(exception) or "Network error",
            status=0,
            context=context,
            cause=exception
        )

    return DualGuardError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
