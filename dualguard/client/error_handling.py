"""
Error reporting for the DualGuard command-line client.

``ClientErrorHandler`` is the consumer of the client's event bus: every
surfaced API failure is logged, audited, recorded and shown to the user, and
a forced sign-out drops the cached user record.
"""

import logging
import re
import sys
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Callable, Iterable, List, TextIO

from dualguard.client.user_storage import UserStorage
from dualguard.shared.events import EventBus, API_ERROR, AUTH_SIGNOUT
from dualguard.shared.exceptions import ApiError, DualGuardError, ErrorSeverity, RecoveryAction, handle_exception
from dualguard.shared.logging_config import log_structured_error, AuditLogger

logger = logging.getLogger(__name__)

MAX_ERROR_HISTORY = 100


class ErrorDisplayMode(Enum):
    """How errors should be displayed to the user."""
    SILENT = "silent"
    NOTIFICATION = "notification"
    VERBOSE = "verbose"


class ClientErrorHandler:
    """
    Centralized error handling for the command-line client.

    Subscribes to ``api:error`` and ``auth:signout`` on the bus it is given.
    """

    def __init__(
        self,
        events: EventBus,
        user_storage: Optional[UserStorage] = None,
        display_mode: ErrorDisplayMode = ErrorDisplayMode.NOTIFICATION,
        stream: Optional[TextIO] = None,
        optional_resources: Iterable[re.Pattern] = ()
    ):
        self._events = events
        self._user_storage = user_storage
        self._display_mode = display_mode
        self._stream = stream
        self._optional_resources = tuple(optional_resources)
        self._error_history: List[Dict[str, Any]] = []
        self._audit_logger = AuditLogger()
        self._signout_callbacks: List[Callable[[], None]] = []
        self.signed_out = False

        self._unsubscribers = [
            events.subscribe(API_ERROR, self.handle_error),
            events.subscribe(AUTH_SIGNOUT, self.handle_signout),
        ]

        logger.debug("Client error handler initialized")

    def add_signout_callback(self, callback: Callable[[], None]) -> None:
        self._signout_callbacks.append(callback)

    def handle_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Log, audit, record and display an error.

        Args:
            error: The error that occurred
            context: Additional context information
        """
        if self._is_expected_absence(error):
            logger.debug(f"Resource not found, treated as absent: {error.context.get('path')}")
            return

        if not isinstance(error, DualGuardError):
            structured_error = handle_exception(error, context)
        else:
            structured_error = error

        self._add_to_error_history(structured_error, context)
        log_structured_error(logger, structured_error)
        self._audit_logger.log_error(structured_error)
        self._display_error_to_user(structured_error)

    def _is_expected_absence(self, error: Exception) -> bool:
        """A 404 on an optional sub-resource means it does not exist yet."""
        if not isinstance(error, ApiError) or not error.is_not_found:
            return False
        path = error.context.get('path') or ''
        return any(pattern.match(path) for pattern in self._optional_resources)

    def handle_signout(self, payload: Any = None) -> None:
        """Forget the cached user once the session has ended."""
        reason = payload.get('reason') if isinstance(payload, dict) else None
        logger.info(f"Session signed out ({reason or 'unknown reason'})")

        self.signed_out = True
        if self._user_storage is not None:
            self._user_storage.clear()

        for callback in self._signout_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in sign-out callback: {e}")

    def _add_to_error_history(self, error: DualGuardError, context: Optional[Dict[str, Any]]):
        """Add error to history for analysis and debugging."""
        history_entry = {
            'timestamp': datetime.now().isoformat(),
            'error_code': error.error_code.value,
            'message': error.message,
            'severity': error.severity.value,
            'context': error.context,
            'additional_context': context or {},
            'recovery_actions': [action.value for action in error.recovery_actions]
        }

        self._error_history.append(history_entry)

        if len(self._error_history) > MAX_ERROR_HISTORY:
            self._error_history = self._error_history[-MAX_ERROR_HISTORY:]

    def _display_error_to_user(self, error: DualGuardError):
        if self._display_mode == ErrorDisplayMode.SILENT:
            return

        stream = self._stream or sys.stderr
        print(f"{self._get_error_title(error)}: {error.user_message}", file=stream)

        if self._display_mode == ErrorDisplayMode.VERBOSE:
            print(f"  code: {error.error_code.value}", file=stream)
            for action in error.recovery_actions:
                print(f"  try: {self._get_recovery_action_text(action)}", file=stream)

    def _get_error_title(self, error: DualGuardError) -> str:
        """Get user-friendly error title."""
        title_map = {
            ErrorSeverity.LOW: "Information",
            ErrorSeverity.MEDIUM: "Warning",
            ErrorSeverity.HIGH: "Error",
            ErrorSeverity.CRITICAL: "Critical Error"
        }
        return title_map.get(error.severity, "Error")

    def _get_recovery_action_text(self, action: RecoveryAction) -> str:
        text_map = {
            RecoveryAction.RETRY: "Retry",
            RecoveryAction.RECONNECT: "Check the server address and your connection",
            RecoveryAction.REFRESH_TOKEN: "Refresh authentication",
            RecoveryAction.SIGN_IN: "Sign in again",
            RecoveryAction.USER_INTERVENTION: "Manual fix required",
            RecoveryAction.CONTACT_ADMIN: "Contact an administrator",
        }
        return text_map.get(action, action.value.replace('_', ' ').capitalize())

    def get_error_history(self) -> List[Dict[str, Any]]:
        """Get the error history for debugging."""
        return self._error_history.copy()

    def close(self) -> None:
        """Stop listening to the event bus."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
