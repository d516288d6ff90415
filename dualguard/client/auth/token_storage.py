"""
Credential storage for the DualGuard client.

Three stores share one interface:

- ``CookieCredentialStore`` keeps credentials as cookies in the aiohttp cookie
  jar used by the HTTP session, so they are forwarded automatically. Cookies
  the server marks httpOnly are reported as opaque.
- ``SecureTokenStorage`` keeps literal bearer tokens in the system keyring,
  or in a Fernet-encrypted file when no keyring is available.
- ``MemoryCredentialStore`` keeps literal tokens for the lifetime of the process.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Callable, Dict, Any, Iterable, Optional

from aiohttp import CookieJar
from cryptography.fernet import Fernet, InvalidToken
from jose import jwt, JWTError
from yarl import URL

from dualguard.shared.exceptions import TokenStorageError, ErrorCode
from dualguard.shared.models import Credential, LiteralCredential, OpaqueCredential

logger = logging.getLogger(__name__)

# Every name the backend and earlier clients have used for the pair.
ACCESS_TOKEN_NAMES = ('accessToken', 'access_token', 'token')
REFRESH_TOKEN_NAMES = ('refreshToken', 'refresh_token')
CREDENTIAL_NAMES = ACCESS_TOKEN_NAMES + REFRESH_TOKEN_NAMES

DEFAULT_ACCESS_TOKEN_LIFETIME = timedelta(days=7)
DEFAULT_REFRESH_TOKEN_LIFETIME = timedelta(days=30)


def get_token_expiration(token: str) -> Optional[datetime]:
    """
    Read the expiry claim of a JWT without verifying it.

    Returns:
        Expiration datetime, or None for opaque tokens or tokens without one
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None

    expires = claims.get('exp', claims.get('expires_at'))
    if isinstance(expires, (int, float)):
        return datetime.fromtimestamp(expires)
    return None


class CredentialStore(ABC):
    """
    Persistent record of the access/refresh credential pair.

    Reads return a ``LiteralCredential`` when the value is readable, an
    ``OpaqueCredential`` when only its presence is known, and None when absent.
    """

    @abstractmethod
    def has_credentials(self) -> bool:
        """True if any recognized credential is present."""

    @abstractmethod
    def read_access(self) -> Optional[Credential]:
        pass

    @abstractmethod
    def read_refresh(self) -> Optional[Credential]:
        pass

    @abstractmethod
    def write(self, access_token: str, refresh_token: str) -> None:
        """Persist both credentials with their own lifetimes."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every recognized credential. Clearing an empty store is not an error."""

    def flush(self) -> None:
        """Persist state that is only kept in memory. Most stores write through."""


class CookieCredentialStore(CredentialStore):
    """
    Credentials held as cookies in the session's cookie jar.

    When ``client_writes`` is False, ``write`` does nothing: the server sets
    the pair with ``Set-Cookie`` on login and refresh responses and the jar
    picks them up on its own.
    """

    def __init__(
        self,
        cookie_jar: CookieJar,
        base_url: str,
        client_writes: bool = True,
        access_lifetime: timedelta = DEFAULT_ACCESS_TOKEN_LIFETIME,
        refresh_lifetime: timedelta = DEFAULT_REFRESH_TOKEN_LIFETIME,
        cookie_file: Optional[str] = None
    ):
        self.cookie_jar = cookie_jar
        self.client_writes = client_writes
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self.cookie_file = Path(cookie_file) if cookie_file else None
        self._origin = URL(base_url).origin()

        if self.cookie_file and self.cookie_file.exists():
            self._load()

        logger.info(f"Cookie credential store initialized (client writes: {client_writes})")

    def _load(self) -> None:
        try:
            self.cookie_jar.load(self.cookie_file)
            logger.debug(f"Loaded cookies from {self.cookie_file}")
        except Exception as e:
            logger.warning(f"Failed to load cookie file {self.cookie_file}: {e}")

    def _find(self, names: Iterable[str]) -> Optional[Credential]:
        cookies = {morsel.key: morsel for morsel in self.cookie_jar if morsel.value}
        for name in names:
            morsel = cookies.get(name)
            if morsel is None:
                continue
            if morsel['httponly']:
                return OpaqueCredential(name)
            return LiteralCredential(morsel.value)
        return None

    def has_credentials(self) -> bool:
        return any(
            morsel.key in CREDENTIAL_NAMES and morsel.value
            for morsel in self.cookie_jar
        )

    def read_access(self) -> Optional[Credential]:
        return self._find(ACCESS_TOKEN_NAMES)

    def read_refresh(self) -> Optional[Credential]:
        return self._find(REFRESH_TOKEN_NAMES)

    def write(self, access_token: str, refresh_token: str) -> None:
        if not self.client_writes:
            logger.debug("Credentials are server-managed cookies; skipping client-side write")
            return

        cookies = SimpleCookie()
        for names, value, lifetime in (
            (('accessToken', 'access_token'), access_token, self.access_lifetime),
            (('refreshToken', 'refresh_token'), refresh_token, self.refresh_lifetime),
        ):
            for name in names:
                cookies[name] = value
                cookies[name]['max-age'] = str(int(lifetime.total_seconds()))
                cookies[name]['path'] = '/'
                cookies[name]['samesite'] = 'Lax'

        self.cookie_jar.update_cookies(cookies, response_url=self._origin)
        self.flush()
        logger.info("Credentials stored as cookies")

    def clear(self) -> None:
        self.cookie_jar.clear(lambda morsel: morsel.key in CREDENTIAL_NAMES)
        self.flush()
        logger.info("Credential cookies cleared")

    def flush(self) -> None:
        if not self.cookie_file:
            return
        try:
            self.cookie_file.parent.mkdir(parents=True, exist_ok=True)
            self.cookie_jar.save(self.cookie_file)
            os.chmod(self.cookie_file, 0o600)
        except OSError as e:
            logger.error(f"Failed to save cookie file: {e}")
            raise TokenStorageError(f"Failed to save cookie file: {e}", cause=e)


class SecureTokenStorage(CredentialStore):
    """
    Literal bearer tokens kept in the system keyring, or in an encrypted file
    when no keyring is usable.

    Each token carries its own expiry; an expired token reads as absent.
    """

    def __init__(
        self,
        account: str,
        service_name: str = "dualguard-client",
        storage_dir: Optional[str] = None,
        use_keyring: Optional[bool] = None,
        access_lifetime: timedelta = DEFAULT_ACCESS_TOKEN_LIFETIME,
        refresh_lifetime: timedelta = DEFAULT_REFRESH_TOKEN_LIFETIME,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.account = account
        self.service_name = service_name
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self._clock = clock
        self.keyring_available = (
            self._check_keyring_availability() if use_keyring is None else use_keyring
        )
        self.storage_dir = self._get_storage_dir(storage_dir)
        self.storage_path = self.storage_dir / 'auth_tokens.enc'
        self.key_path = self.storage_dir / 'auth_tokens.key'

        self._encryption_key: Optional[bytes] = None

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            import keyring
            test_key = f"{self.service_name}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_dir(self, storage_dir: Optional[str]) -> Path:
        if storage_dir:
            return Path(storage_dir)
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            return Path(xdg_config) / 'dualguard'
        return Path.home() / '.config' / 'dualguard'

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.key_path.write_bytes(key)
        os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _load_file(self) -> Dict[str, Any]:
        if not self.storage_path.exists():
            return {}
        try:
            fernet = Fernet(self._get_encryption_key())
            return json.loads(fernet.decrypt(self.storage_path.read_bytes()).decode())
        except (InvalidToken, ValueError, OSError) as e:
            logger.warning(f"Failed to read token file: {e}")
            return {}

    def _save_file(self, all_records: Dict[str, Any]) -> None:
        if not all_records:
            self.storage_path.unlink(missing_ok=True)
            return
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        fernet = Fernet(self._get_encryption_key())
        self.storage_path.write_bytes(fernet.encrypt(json.dumps(all_records).encode()))
        os.chmod(self.storage_path, 0o600)

    def _get_record(self) -> Optional[Dict[str, Any]]:
        try:
            if self.keyring_available:
                import keyring
                value = keyring.get_password(self.service_name, self.account)
                return json.loads(value) if value else None
            return self._load_file().get(self.account)
        except Exception as e:
            logger.error(f"Failed to retrieve credentials: {e}")
            return None

    def _is_live(self, expires_at: Optional[str]) -> bool:
        if not expires_at:
            return True
        try:
            return self._clock() < datetime.fromisoformat(expires_at)
        except (ValueError, TypeError):
            logger.warning(f"Invalid expiration date in stored credentials for {self.account}")
            return False

    def _read(self, token_key: str, expiry_key: str) -> Optional[Credential]:
        record = self._get_record()
        if not record or not record.get(token_key):
            return None
        if not self._is_live(record.get(expiry_key)):
            return None
        return LiteralCredential(record[token_key])

    def has_credentials(self) -> bool:
        return self.read_access() is not None or self.read_refresh() is not None

    def read_access(self) -> Optional[Credential]:
        return self._read('access_token', 'access_expires_at')

    def read_refresh(self) -> Optional[Credential]:
        return self._read('refresh_token', 'refresh_expires_at')

    def write(self, access_token: str, refresh_token: str) -> None:
        now = self._clock()
        access_expires_at = now + self.access_lifetime
        token_expiry = get_token_expiration(access_token)
        if token_expiry and token_expiry < access_expires_at:
            access_expires_at = token_expiry

        record = {
            'access_token': access_token,
            'refresh_token': refresh_token,
            'access_expires_at': access_expires_at.isoformat(),
            'refresh_expires_at': (now + self.refresh_lifetime).isoformat(),
            'stored_at': now.isoformat()
        }

        try:
            if self.keyring_available:
                import keyring
                keyring.set_password(self.service_name, self.account, json.dumps(record))
            else:
                all_records = self._load_file()
                all_records[self.account] = record
                self._save_file(all_records)
        except Exception as e:
            logger.error(f"Failed to store credentials: {e}")
            raise TokenStorageError(f"Failed to store credentials: {e}", cause=e)

        logger.info(f"Credentials stored securely for {self.account}")

    def clear(self) -> None:
        if self.keyring_available:
            import keyring
            from keyring.errors import PasswordDeleteError
            for key in (self.account,) + CREDENTIAL_NAMES:
                try:
                    keyring.delete_password(self.service_name, key)
                except PasswordDeleteError:
                    pass
        else:
            all_records = self._load_file()
            if self.account in all_records:
                del all_records[self.account]
                try:
                    self._save_file(all_records)
                except OSError as e:
                    raise TokenStorageError(
                        f"Failed to clear credentials: {e}",
                        error_code=ErrorCode.STORAGE_WRITE_FAILED,
                        cause=e
                    )

        logger.info(f"Credentials cleared for {self.account}")


class MemoryCredentialStore(CredentialStore):
    """Literal credentials kept in process memory only."""

    def __init__(self):
        self._tokens: Dict[str, str] = {}

    def has_credentials(self) -> bool:
        return bool(self._tokens)

    def read_access(self) -> Optional[Credential]:
        value = self._tokens.get('access_token')
        return LiteralCredential(value) if value else None

    def read_refresh(self) -> Optional[Credential]:
        value = self._tokens.get('refresh_token')
        return LiteralCredential(value) if value else None

    def write(self, access_token: str, refresh_token: str) -> None:
        self._tokens = {'access_token': access_token, 'refresh_token': refresh_token}

    def clear(self) -> None:
        self._tokens = {}
