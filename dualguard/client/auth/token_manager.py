"""
Token Manager for the DualGuard client.

This module refreshes the credential pair through the backend's refresh
endpoint, stores new credentials, and signs the session out when credentials
cannot be recovered.
"""

import asyncio
import logging
from typing import Optional, Callable, List

from dualguard.client import endpoints
from dualguard.client.auth.token_storage import CredentialStore
from dualguard.shared.events import EventBus, AUTH_SIGNOUT
from dualguard.shared.exceptions import ApiError, ErrorCode, TokenStorageError
from dualguard.shared.logging_config import AuditLogger
from dualguard.shared.models import RequestDescriptor, LiteralCredential, TokenResponse

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Manages the credential pair on behalf of the API client.

    Concurrent callers of ``refresh`` share a single refresh request.
    """

    def __init__(self, api_client, credential_store: CredentialStore, events: EventBus,
                 audit_logger: Optional[AuditLogger] = None):
        self.api_client = api_client
        self.credential_store = credential_store
        self.events = events
        self.audit_logger = audit_logger or AuditLogger()

        # Callbacks for authentication events
        self._auth_callbacks: List[Callable[[bool], None]] = []
        self._token_refresh_callbacks: List[Callable[[], None]] = []

        self._refresh_task: Optional[asyncio.Task] = None

        logger.info("Token manager initialized")

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def add_token_refresh_callback(self, callback: Callable[[], None]) -> None:
        """
        Add callback for successful refreshes.

        Args:
            callback: Function called with no arguments
        """
        self._token_refresh_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        """Notify callbacks of authentication state change."""
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def _notify_token_refresh(self) -> None:
        """Notify callbacks of token refresh."""
        for callback in self._token_refresh_callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in token refresh callback: {e}")

    @property
    def base_url(self) -> str:
        return getattr(self.api_client, 'base_url', '')

    def has_credentials(self) -> bool:
        return self.credential_store.has_credentials()

    def is_refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def store_tokens(self, tokens: Optional[TokenResponse]) -> None:
        """
        Persist a credential pair from a login, refresh or verification response.

        With no pair in the body, cookies the server set are persisted instead.
        """
        if tokens is not None:
            self.credential_store.write(tokens.access_token, tokens.refresh_token)
        else:
            self.credential_store.flush()
        self._notify_auth_change(True)

    async def refresh(self) -> None:
        """
        Exchange the refresh credential for a new pair.

        Callers arriving while a refresh is in flight wait for that refresh
        and see its outcome.

        Raises:
            ApiError: If no credentials are present or the refresh fails
        """
        if not self.is_refreshing():
            self._refresh_task = asyncio.ensure_future(self._refresh())
        else:
            logger.debug("Refresh already in flight; waiting for it")

        # A cancelled waiter must not cancel the refresh shared with others
        await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> None:
        if not self.credential_store.has_credentials():
            logger.warning("Cannot refresh: no credentials stored")
            raise ApiError(
                "No refresh token available",
                status=401,
                error_code=ErrorCode.AUTH_NO_CREDENTIALS
            )

        refresh_credential = self.credential_store.read_refresh()
        if isinstance(refresh_credential, LiteralCredential):
            body = {'refreshToken': refresh_credential.value}
        else:
            # Opaque cookie credentials travel with the request itself
            body = {}

        logger.info("Refreshing credentials")

        try:
            response = await self.api_client.execute(RequestDescriptor(
                'POST',
                endpoints.AUTH_REFRESH,
                body=body,
                skip_auth=True,
                skip_error_handling=True
            ))
            tokens = TokenResponse.from_body(response)
            if tokens is not None:
                self.credential_store.write(tokens.access_token, tokens.refresh_token)
            else:
                self.credential_store.flush()
        except ApiError as e:
            self._discard_credentials()
            self.audit_logger.log_token_refresh(self.base_url, success=False, status=e.status)
            # Only a non-2xx answer keeps its status; transport and parse failures are 500
            if e.is_network_error or e.error_code == ErrorCode.RESPONSE_PARSE_FAILED:
                status = 500
            else:
                status = e.status
            raise ApiError(
                "Failed to refresh token",
                status=status,
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            )
        except Exception as e:
            self._discard_credentials()
            self.audit_logger.log_token_refresh(self.base_url, success=False, status=500)
            raise ApiError(
                "Failed to refresh token",
                status=500,
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            )

        logger.info("Credential refresh successful")
        self.audit_logger.log_token_refresh(self.base_url, success=True)
        self._notify_token_refresh()

    def _discard_credentials(self) -> None:
        try:
            self.credential_store.clear()
        except TokenStorageError as e:
            logger.error(f"Failed to clear credentials: {e}")

    def sign_out(self, reason: str = "logout") -> None:
        """
        Clear credentials and announce the end of the session.

        Emits ``auth:signout`` exactly once per call.
        """
        logger.info(f"Signing out ({reason})")

        self._discard_credentials()
        self.audit_logger.log_sign_out(self.base_url, reason)
        self.events.emit(AUTH_SIGNOUT, {'reason': reason})

        self._notify_auth_change(False)

    async def shutdown(self) -> None:
        """Wait out an in-flight refresh so it is not torn down mid-write."""
        if self.is_refreshing():
            try:
                await self._refresh_task
            except ApiError as e:
                logger.debug(f"Pending refresh failed during shutdown: {e}")
