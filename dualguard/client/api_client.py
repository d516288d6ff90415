"""
HTTP API client for the DualGuard backend.

This module provides the authenticated request pipeline every API wrapper goes
through: it attaches credentials, refreshes them once when the server answers
401, parses response bodies, and turns failures into ``ApiError`` while
signalling ``api:error`` and ``auth:signout`` on the event bus.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError, CookieJar

from dualguard import __version__
from dualguard.client.auth.token_manager import TokenManager
from dualguard.client.auth.token_storage import CredentialStore, CookieCredentialStore
from dualguard.shared.events import EventBus, API_ERROR
from dualguard.shared.exceptions import ApiError, ErrorCode, TokenStorageError
from dualguard.shared.models import RequestDescriptor, LiteralCredential

logger = logging.getLogger(__name__)


@dataclass
class RawResponse:
    """Status and undecoded body of one HTTP exchange."""
    status: int
    text: str = ''
    content_type: str = ''

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class DualGuardAPIClient:
    """
    HTTP API client for the DualGuard REST backend.

    Credentials come from ``credential_store``. When it is a
    ``CookieCredentialStore`` its cookie jar becomes the session's jar, so
    credential cookies travel with every request and cookies set by the
    server land back in the store.
    """

    def __init__(
        self,
        base_url: str,
        credential_store: CredentialStore,
        events: Optional[EventBus] = None,
        timeout: float = 30.0,
        cookie_jar: Optional[CookieJar] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self.credential_store = credential_store
        self.events = events or EventBus()

        if cookie_jar is None and isinstance(credential_store, CookieCredentialStore):
            cookie_jar = credential_store.cookie_jar
        self.cookie_jar = cookie_jar

        self.token_manager = TokenManager(self, credential_store, self.events)

        self._session: Optional[ClientSession] = None

        logger.info(f"API client initialized for server: {self.base_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                cookie_jar=self.cookie_jar,
                headers={'User-Agent': f'DualGuardClient/{__version__}'}
            )

    async def close(self) -> None:
        """Close the HTTP session and persist any cookies the server set."""
        await self.token_manager.shutdown()

        try:
            self.credential_store.flush()
        except TokenStorageError as e:
            logger.error(f"Failed to persist credentials on close: {e}")

        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _build_url(self, path: str) -> str:
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f"{self.base_url}{path}"

    def _build_headers(self, descriptor: RequestDescriptor) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        headers.update(descriptor.headers)

        if not descriptor.skip_auth:
            access = self.credential_store.read_access()
            # Opaque credentials are cookies the session forwards by itself
            if isinstance(access, LiteralCredential):
                headers['Authorization'] = f'Bearer {access.value}'

        return headers

    async def _transmit(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[str],
        params: Optional[Dict[str, str]]
    ) -> RawResponse:
        """Perform one HTTP exchange and read the whole body."""
        await self._ensure_session()

        async with self._session.request(
            method=method,
            url=url,
            data=data,
            params=params,
            headers=headers
        ) as response:
            body = await response.read()
            return RawResponse(
                status=response.status,
                text=body.decode(response.charset or 'utf-8', errors='replace'),
                content_type=response.headers.get('Content-Type', '')
            )

    async def _send(self, descriptor: RequestDescriptor) -> RawResponse:
        """
        Send a descriptor once, with credentials read at send time.

        Raises:
            ApiError: status 0 when the server could not be reached
        """
        url = self._build_url(descriptor.path)
        headers = self._build_headers(descriptor)
        data = json.dumps(descriptor.body) if descriptor.body is not None else None

        logger.debug(f"Making {descriptor.method} request to {url}")

        try:
            response = await self._transmit(descriptor.method, url, headers, data, descriptor.params)
        except asyncio.TimeoutError as e:
            logger.warning(f"Request to {url} timed out")
            raise ApiError("Request timed out", status=0, error_code=ErrorCode.NETWORK_TIMEOUT, cause=e)
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {descriptor.method} {url}: {e}")
            raise ApiError(str(e) or "Network error", status=0, cause=e)

        logger.debug(f"{descriptor.method} {url} -> {response.status}")
        return response

    def _surface(self, descriptor: RequestDescriptor, error: ApiError) -> ApiError:
        error.context.setdefault('method', descriptor.method)
        error.context.setdefault('path', descriptor.path)
        if not descriptor.skip_error_handling:
            self.events.emit(API_ERROR, error)
        return error

    async def execute(self, descriptor: RequestDescriptor) -> Any:
        """
        Execute one logical request.

        A 401 on an authenticated request triggers one credential refresh and
        one retry of the original request. If either fails the session is
        signed out.

        Args:
            descriptor: The request to perform

        Returns:
            Parsed response body ({} for an empty body)

        Raises:
            ApiError: On any failure
        """
        try:
            response = await self._send(descriptor)
        except ApiError as error:
            raise self._surface(descriptor, error)

        if response.status == 401 and not descriptor.skip_auth and not descriptor.skip_error_handling:
            response = await self._refresh_and_retry(descriptor)

        try:
            body = self._parse_body(response)
        except ApiError as error:
            raise self._surface(descriptor, error)

        if not response.ok:
            raise self._surface(descriptor, self._build_error(response.status, body))

        return body

    async def _refresh_and_retry(self, descriptor: RequestDescriptor) -> RawResponse:
        logger.info(f"{descriptor.method} {descriptor.path} was unauthorized; refreshing credentials")

        try:
            await self.token_manager.refresh()
        except ApiError as e:
            logger.warning(f"Credential refresh failed (status {e.status}); signing out")
            self.token_manager.sign_out(reason="refresh_failed")
            raise ApiError("Authentication failed", status=401, cause=e)

        try:
            response = await self._send(descriptor)
        except ApiError as error:
            raise self._surface(descriptor, error)

        if response.status == 401:
            logger.warning(f"{descriptor.method} {descriptor.path} still unauthorized after refresh; signing out")
            self.token_manager.sign_out(reason="unauthorized_after_refresh")
            raise ApiError("Authentication failed", status=401)

        return response

    def _parse_body(self, response: RawResponse) -> Any:
        """
        Decode a response body as JSON.

        Bodies are parsed as JSON whatever the declared content type; an empty
        body is an empty object.
        """
        text = response.text.strip()
        if not text:
            return {}
        try:
            return json.loads(text)
        except ValueError as e:
            logger.warning(
                f"Failed to parse response (status {response.status}, "
                f"content type {response.content_type or 'unknown'})"
            )
            raise ApiError(
                "Failed to parse response",
                status=response.status,
                error_code=ErrorCode.RESPONSE_PARSE_FAILED,
                cause=e
            )

    def _build_error(self, status: int, body: Any) -> ApiError:
        message = code = details = None
        if isinstance(body, dict):
            message = body.get('message')
            code = body.get('code')
            details = body.get('details')

        # Validation failures come back as a list of messages
        if isinstance(message, list):
            message = '; '.join(str(item) for item in message)

        return ApiError(
            message or f"Request failed with status {status}",
            status=status,
            code=code if isinstance(code, str) else None,
            details=details if isinstance(details, dict) else None
        )

    async def get(self, path: str, params: Optional[Dict[str, str]] = None, **options) -> Any:
        return await self.execute(RequestDescriptor('GET', path, params=params, **options))

    async def post(self, path: str, data: Optional[Any] = None, **options) -> Any:
        return await self.execute(RequestDescriptor('POST', path, body=data, **options))

    async def put(self, path: str, data: Optional[Any] = None, **options) -> Any:
        return await self.execute(RequestDescriptor('PUT', path, body=data, **options))

    async def patch(self, path: str, data: Optional[Any] = None, **options) -> Any:
        return await self.execute(RequestDescriptor('PATCH', path, body=data, **options))

    async def delete(self, path: str, **options) -> Any:
        return await self.execute(RequestDescriptor('DELETE', path, **options))

    def has_credentials(self) -> bool:
        return self.credential_store.has_credentials()
