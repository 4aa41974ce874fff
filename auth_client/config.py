"""
Configuration Management for the bearer auth client.

This module loads the identity endpoint settings, session options and
logging preferences from an INI file and environment variables, and turns
them into an AuthConfig for the auth orchestrator.
"""

import os
import json
import logging
from typing import Optional, Dict, Any
from configparser import ConfigParser

from auth_shared.logging_config import LogFormat, LogLevel, setup_logging
from auth_shared.models import AuthConfig

logger = logging.getLogger(__name__)


class ClientConfiguration:
    """
    Configuration manager for the bearer auth client.

    Supports configuration from:
    1. Overrides set at runtime (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)

    Values are not validated here. A blank endpoint path is passed through
    and reported by the resource builder when a request is made.
    """

    ENV_MAPPINGS = {
        'AUTH_CLIENT_SCHEME': ('server', 'scheme'),
        'AUTH_CLIENT_HOST': ('server', 'host'),
        'AUTH_CLIENT_PORT': ('server', 'port'),
        'AUTH_CLIENT_TIMEOUT': ('server', 'timeout'),
        'AUTH_CLIENT_RETRY_ATTEMPTS': ('server', 'retry_attempts'),
        'AUTH_CLIENT_LOGIN_PATH': ('endpoints', 'login_path'),
        'AUTH_CLIENT_REGISTER_PATH': ('endpoints', 'register_path'),
        'AUTH_CLIENT_LOGOUT_PATH': ('endpoints', 'logout_path'),
        'AUTH_CLIENT_TOKEN_FIELD': ('session', 'token_field'),
        'AUTH_CLIENT_REMEMBER_ME': ('session', 'remember_me'),
        'AUTH_CLIENT_KEYRING_SERVICE': ('session', 'keyring_service'),
        'AUTH_CLIENT_STORAGE_DIR': ('session', 'storage_dir'),
        'AUTH_CLIENT_LOG_LEVEL': ('logging', 'level'),
        'AUTH_CLIENT_LOG_FORMAT': ('logging', 'format'),
        'AUTH_CLIENT_LOG_FILE': ('logging', 'file'),
    }

    DEFAULTS = {
        'server': {
            'scheme': 'https',
            'host': 'localhost',
            'port': None,
            'timeout': 30.0,
            'retry_attempts': 3,
        },
        'endpoints': {
            'login_path': '/login',
            'register_path': '/register',
            'logout_path': '/logout',
        },
        'session': {
            'token_field': None,
            'remember_me': False,
            'auth_header': 'Authorization',
            'auth_scheme': 'Bearer',
            'keyring_service': 'bearer-auth-client',
            'storage_dir': None,
        },
        'logging': {
            'level': 'INFO',
            'format': 'standard',
            'file': None,
        },
    }

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if self._config_file and os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        elif self._config_file:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers, booleans and quoted strings
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            section_data = self._config_data.setdefault(section, {})
            if value.lower() in ('true', 'false'):
                section_data[key] = value.lower() == 'true'
            elif value.isdigit():
                section_data[key] = int(value)
            else:
                section_data[key] = value

    def _set_defaults(self) -> None:
        """Fill in default values for missing settings."""
        for section, section_defaults in self.DEFAULTS.items():
            section_data = self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                section_data.setdefault(key, default_value)

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using 'section.key' notation.

        Overrides set with set_override() take precedence.
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        value = self._config_data.get(section, {}).get(config_key)
        return default if value is None else value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in 'section.key' notation
            value: Override value
        """
        self._overrides[key] = value

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def get_auth_config(self) -> AuthConfig:
        """Build the endpoint configuration for the auth orchestrator."""
        port = self.get_config('server.port')
        token_field = self.get_config('session.token_field')

        return AuthConfig(
            scheme=str(self.get_config('server.scheme', '')),
            host=str(self.get_config('server.host', '')),
            login_path=str(self.get_config('endpoints.login_path', '')),
            register_path=str(self.get_config('endpoints.register_path', '')),
            logout_path=str(self.get_config('endpoints.logout_path', '')),
            port=int(port) if isinstance(port, int) or (isinstance(port, str) and port.isdigit()) else None,
            token_field=str(token_field) if token_field else None,
            remember_me=self._as_bool(self.get_config('session.remember_me', False)),
            auth_header=str(self.get_config('session.auth_header', 'Authorization')),
            auth_scheme=str(self.get_config('session.auth_scheme', 'Bearer')),
        )

    @staticmethod
    def _as_bool(value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ('true', 'yes', '1', 'on')
        return bool(value)

    def get_timeout(self) -> float:
        """Get request timeout in seconds."""
        return float(self.get_config('server.timeout', 30.0))

    def get_retry_attempts(self) -> int:
        """Get number of retry attempts for connectivity failures."""
        return int(self.get_config('server.retry_attempts', 3))

    def get_keyring_service(self) -> str:
        """Get the keyring service name for the secure store."""
        return self.get_config('session.keyring_service', 'bearer-auth-client')

    def get_storage_dir(self) -> Optional[str]:
        """Get the directory of the encrypted fallback store."""
        return self.get_config('session.storage_dir')

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        """Get logging format (standard, json or detailed)."""
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')

    def configure_logging(self, enable_console: bool = True) -> Dict[str, logging.Logger]:
        """
        Set up logging from the [logging] section.

        Unknown level or format names fall back to INFO and standard.
        """
        try:
            log_level = LogLevel(self.get_log_level())
        except ValueError:
            logger.warning(f"Unknown log level: {self.get_log_level()}")
            log_level = LogLevel.INFO

        try:
            log_format = LogFormat(self.get_log_format())
        except ValueError:
            logger.warning(f"Unknown log format: {self.get_log_format()}")
            log_format = LogFormat.STANDARD

        return setup_logging(
            log_level=log_level,
            log_format=log_format,
            log_file=self.get_log_file(),
            enable_console=enable_console
        )

    def to_dict(self) -> Dict[str, Any]:
        """Get all configuration data, overrides applied."""
        data = {section: dict(values) for section, values in self._config_data.items()}
        for key, value in self._overrides.items():
            if '.' in key:
                section, config_key = key.split('.', 1)
                data.setdefault(section, {})[config_key] = value
        return data
