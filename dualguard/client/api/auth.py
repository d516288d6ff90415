"""
Authentication endpoints: sign-in, sign-up, sign-out and email verification.
"""

import logging
from typing import Any, Dict, Optional

from dualguard.client import endpoints
from dualguard.shared.exceptions import ApiError
from dualguard.shared.logging_config import AuditLogger
from dualguard.shared.models import TokenResponse, User

logger = logging.getLogger(__name__)


class AuthAPI:
    """Session lifecycle operations against ``/auth``."""

    def __init__(self, api_client, audit_logger: Optional[AuditLogger] = None):
        self.api_client = api_client
        self.token_manager = api_client.token_manager
        self.audit_logger = audit_logger or AuditLogger()

    async def login(self, email: str, password: str) -> Optional[TokenResponse]:
        """
        Sign in with email and password.

        Returns:
            The credential pair when the server returns one in the body, or
            None when it only set credential cookies
        """
        try:
            response = await self.api_client.post(
                endpoints.AUTH_LOGIN,
                {'email': email, 'password': password},
                skip_auth=True
            )
        except ApiError as e:
            self.audit_logger.log_authentication(email, success=False, failure_reason=e.message)
            raise

        tokens = TokenResponse.from_body(response)
        self.token_manager.store_tokens(tokens)
        self.audit_logger.log_authentication(email, success=True)
        logger.info("Signed in")
        return tokens

    async def sign_up(self, username: str, email: str, password: str) -> Dict[str, Any]:
        return await self.api_client.post(
            endpoints.AUTH_SIGN_UP,
            {'username': username, 'email': email, 'password': password},
            skip_auth=True
        )

    async def logout(self) -> None:
        """Sign out this session. Local credentials are cleared even if the request fails."""
        await self._logout(endpoints.AUTH_LOGOUT, reason="logout")

    async def logout_all(self) -> None:
        """Sign out every session of the account. Local credentials are cleared even if the request fails."""
        await self._logout(endpoints.AUTH_LOGOUT_ALL, reason="logout_all")

    async def _logout(self, path: str, reason: str) -> None:
        try:
            await self.api_client.post(path)
        except ApiError as e:
            logger.error(f"Logout request failed: {e.message}")
        finally:
            self.token_manager.sign_out(reason=reason)

    async def get_current_user(self) -> User:
        return User.from_dict(await self.api_client.get(endpoints.AUTH_ME))

    async def refresh_token(self, refresh_token: str) -> Optional[TokenResponse]:
        """Exchange an explicit refresh token for a new pair and store it."""
        response = await self.api_client.post(
            endpoints.AUTH_REFRESH,
            {'refreshToken': refresh_token},
            skip_auth=True
        )
        tokens = TokenResponse.from_body(response)
        if tokens is not None:
            self.token_manager.store_tokens(tokens)
        return tokens

    async def verify_email(self, token: str) -> Dict[str, Any]:
        """
        Confirm an email address with the token from the verification mail.

        A successful verification may sign the user in, either with a
        credential pair in the body or with cookies.
        """
        response = await self.api_client.post(
            endpoints.AUTH_VERIFY_EMAIL,
            {'token': token},
            skip_auth=True
        )
        tokens = TokenResponse.from_body(response)
        if tokens is not None:
            self.token_manager.store_tokens(tokens)
        else:
            self.api_client.credential_store.flush()
        return response

    async def resend_verification_email(self, email: str) -> Dict[str, Any]:
        return await self.api_client.post(
            endpoints.AUTH_RESEND_VERIFICATION,
            {'email': email},
            skip_auth=True
        )
