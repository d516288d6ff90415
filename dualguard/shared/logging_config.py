"""
Logging configuration for the DualGuard client.

This module provides structured logging with an audit trail for session
events (sign-in, token refresh, sign-out) and configurable output formats.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from dualguard.shared.exceptions import DualGuardError, ApiError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of events that should be audited."""
    AUTHENTICATION = "authentication"
    TOKEN_REFRESH = "token_refresh"
    SIGN_OUT = "sign_out"
    ERROR_EVENT = "error_event"


_RESERVED_RECORD_FIELDS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'error_info', 'audit_info', 'taskName', 'message',
])


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs with consistent fields.
    """

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'pid': os.getpid(),
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        error = getattr(record, 'error_info', None)
        if isinstance(error, DualGuardError):
            log_entry['error'] = {
                'code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }
            if isinstance(error, ApiError):
                log_entry['error']['status'] = error.status
                log_entry['error']['api_code'] = error.code

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        if self.include_extra_fields:
            extra_fields = {
                key: value for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_FIELDS
            }
            if extra_fields:
                log_entry['extra'] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """
    Detailed human-readable formatter.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        error = getattr(record, 'error_info', None)
        if isinstance(error, DualGuardError):
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Severity: {error.severity.value}"
            if isinstance(error, ApiError):
                formatted += f"\n  Status: {error.status}"
                if error.code:
                    formatted += f"\n  API Code: {error.code}"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Logger for session audit events with structured information.

    Never pass token values here; only identities and outcomes are recorded.
    """

    def __init__(self, logger_name: str = "dualguard.audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        user: Optional[str] = None,
        base_url: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            user: Email or username involved, when known
            base_url: Backend the event relates to
            result: Outcome (success, failure, ...)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'user': user,
            'base_url': base_url,
            'result': result,
            'context': additional_context or {}
        }
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_authentication(self, user: str, success: bool = True, failure_reason: Optional[str] = None):
        """Log sign-in attempts."""
        self.log_event(
            event_type=AuditEventType.AUTHENTICATION,
            message=f"Sign-in {'successful' if success else 'failed'} for {user}",
            user=user,
            result="success" if success else "failure",
            additional_context={'failure_reason': failure_reason} if failure_reason else None
        )

    def log_token_refresh(self, base_url: str, success: bool, status: Optional[int] = None):
        """Log refresh attempts."""
        self.log_event(
            event_type=AuditEventType.TOKEN_REFRESH,
            message=f"Token refresh {'succeeded' if success else 'failed'}",
            base_url=base_url,
            result="success" if success else "failure",
            additional_context={'status': status} if status is not None else None
        )

    def log_sign_out(self, base_url: str, reason: str):
        """Log sign-out, whether user initiated or forced."""
        self.log_event(
            event_type=AuditEventType.SIGN_OUT,
            message=f"Signed out ({reason})",
            base_url=base_url,
            result="signed_out",
            additional_context={'reason': reason}
        )

    def log_error(self, error: DualGuardError):
        """Log error events."""
        context = {
            'error_code': error.error_code.value,
            'severity': error.severity.value,
            'context': error.context,
        }
        if isinstance(error, ApiError):
            context['status'] = error.status
            context['api_code'] = error.code
        self.log_event(
            event_type=AuditEventType.ERROR_EVENT,
            message=f"Error occurred: {error.message}",
            result="error",
            additional_context=context
        )


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    enable_console: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Set up logging for the client.

    Args:
        log_level: Minimum log level to capture
        log_format: Format for log output
        log_file: Path to main log file (optional)
        max_file_size: Maximum size of log files before rotation
        backup_count: Number of backup files to keep
        enable_console: Whether to log to stderr
        audit_file: Path to audit log file; audit records go to the main
            handlers when omitted

    Returns:
        Dictionary of configured loggers
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.value))

    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    if enable_console:
        # stdout is reserved for command output
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    audit_logger = logging.getLogger('dualguard.audit')
    for handler in audit_logger.handlers[:]:
        audit_logger.removeHandler(handler)
    if audit_file:
        Path(audit_file).parent.mkdir(parents=True, exist_ok=True)
        audit_handler = logging.handlers.RotatingFileHandler(
            audit_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        audit_handler.setFormatter(StructuredFormatter())
        audit_logger.addHandler(audit_handler)
        audit_logger.propagate = False
    else:
        audit_logger.propagate = True

    # aiohttp is chatty at DEBUG
    if log_level != LogLevel.DEBUG:
        logging.getLogger('aiohttp').setLevel(logging.WARNING)

    return {
        'root': root_logger,
        'client': logging.getLogger('dualguard.client'),
        'audit': audit_logger,
    }


def log_structured_error(logger: logging.Logger, error: DualGuardError, level: int = logging.ERROR):
    """
    Log a structured error with its full context.

    Args:
        logger: Logger instance to use
        error: The structured error to log
        level: Logging level
    """
    logger.log(level, error.message, extra={'error_info': error})
