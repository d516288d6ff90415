"""
Configuration Management for the DualGuard client.

This module handles client configuration: the API base URL, credential
storage and logging, with support for an INI configuration file and
environment variables.
"""

import os
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser

from yarl import URL

from dualguard.shared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = 'http://localhost:3000/api'
STORAGE_BACKENDS = ('cookie', 'keyring', 'memory')


def get_config_directory(custom_dir: Optional[str] = None) -> Path:
    """Resolve the directory holding configuration, cookies and caches."""
    if custom_dir:
        return Path(custom_dir)

    env_dir = os.environ.get('DUALGUARD_CONFIG_DIR')
    if env_dir:
        return Path(env_dir)

    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        return Path(xdg_config) / 'dualguard'
    return Path.home() / '.config' / 'dualguard'


class ClientConfiguration:
    """
    Configuration manager for the DualGuard client.

    Supports configuration from:
    1. Command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None, config_dir: Optional[str] = None):
        self._config_dir = get_config_directory(config_dir)
        self._config_file = config_file or str(self._config_dir / 'client.conf')
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        # Load configuration
        self._load_configuration()

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers and booleans
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'DUALGUARD_API_BASE_URL': ('api', 'base_url'),
            'DUALGUARD_API_TIMEOUT': ('api', 'timeout'),
            'DUALGUARD_AUTH_STORAGE': ('auth', 'storage'),
            'DUALGUARD_LOG_LEVEL': ('logging', 'level'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                # Convert boolean strings
                if value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                # Convert numeric strings
                elif value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'api': {
                'base_url': DEFAULT_API_BASE_URL,
                'timeout': 30.0,
            },
            'auth': {
                'storage': 'cookie',
                'cookie_file': str(self._config_dir / 'cookies.pickle'),
                'access_token_days': 7,
                'refresh_token_days': 30,
                'server_managed_cookies': False,
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'audit_file': None,
            },
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        for section_name, section_data in self._config_data.items():
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, (bool, dict, list)):
                    config.set(section_name, key, json.dumps(value))
                else:
                    config.set(section_name, key, str(value))

        config_path = Path(self._config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            config.write(f)

        logger.info(f"Configuration saved to: {self._config_file}")

    def get_config_file_path(self) -> str:
        return self._config_file

    def get_config_directory(self) -> Path:
        return self._config_dir

    # Convenience methods for common configuration values

    def get_api_base_url(self) -> str:
        """
        Get the API base URL, without a trailing slash.

        Raises:
            ConfigurationError: If the URL is not an absolute http(s) URL
        """
        value = str(self.get_config('api.base_url', DEFAULT_API_BASE_URL)).rstrip('/')
        try:
            url = URL(value)
        except ValueError:
            url = None
        if url is None or url.scheme not in ('http', 'https') or not url.host:
            raise ConfigurationError(
                f"Invalid API base URL: {value!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='api.base_url'
            )
        return value

    def get_api_timeout(self) -> float:
        value = self.get_config('api.timeout', 30.0)
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid API timeout: {value!r}",
                ErrorCode.CONFIG_INVALID_FORMAT,
                config_key='api.timeout'
            )
        if timeout <= 0:
            raise ConfigurationError(
                f"API timeout must be positive, got {timeout}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='api.timeout'
            )
        return timeout

    def get_auth_storage(self) -> str:
        """Get the credential storage backend: cookie, keyring or memory."""
        value = str(self.get_config('auth.storage', 'cookie')).lower()
        if value not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown credential storage {value!r}, expected one of {', '.join(STORAGE_BACKENDS)}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='auth.storage'
            )
        return value

    def get_cookie_file(self) -> Optional[str]:
        return self.get_config('auth.cookie_file')

    def get_access_token_lifetime(self) -> timedelta:
        return timedelta(days=float(self.get_config('auth.access_token_days', 7)))

    def get_refresh_token_lifetime(self) -> timedelta:
        return timedelta(days=float(self.get_config('auth.refresh_token_days', 30)))

    def server_manages_cookies(self) -> bool:
        value = self.get_config('auth.server_managed_cookies', False)
        if isinstance(value, str):
            return value.lower() in ('true', '1', 'yes')
        return bool(value)

    def get_log_level(self) -> str:
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def get_audit_file(self) -> Optional[str]:
        return self.get_config('logging.audit_file')
