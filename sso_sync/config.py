"""
Configuration loading and management for SSO Sync.

This module handles loading configuration from a YAML file and SSOSYNC_*
environment variables, with validation and defaults. When running as a
Lambda function there is usually no file and everything comes from the
environment.
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional

from sso_sync.secrets import GOOGLE_ADMIN_EMAIL_SECRET, GOOGLE_CREDENTIALS_SECRET

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.yaml'

LOG_LEVELS = ('panic', 'fatal', 'critical', 'error', 'warn', 'warning', 'info', 'debug', 'trace')
LOG_FORMATS = ('json', 'text')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable -> dotted config key
    ENV_OVERRIDES = {
        'SSOSYNC_GOOGLE_ADMIN': 'google.admin_email',
        'SSOSYNC_GOOGLE_CREDENTIALS': 'google.credentials',
        'SSOSYNC_USER_MATCH': 'google.user_match',
        'SSOSYNC_GROUP_MATCH': 'google.group_match',
        'SSOSYNC_IDENTITY_STORE_ID': 'aws.identity_store_id',
        'SSOSYNC_REGION': 'aws.region',
        'SSOSYNC_IGNORE_USERS': 'sync.ignore_users',
        'SSOSYNC_IGNORE_GROUPS': 'sync.ignore_groups',
        'SSOSYNC_INCLUDE_GROUPS': 'sync.include_groups',
        'SSOSYNC_MAX_WORKERS': 'sync.max_workers',
        'SSOSYNC_LOG_LEVEL': 'logging.level',
        'SSOSYNC_LOG_FORMAT': 'logging.format',
    }

    LIST_FIELDS = ('sync.ignore_users', 'sync.ignore_groups', 'sync.include_groups')

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses SSOSYNC_CONFIG env var or 'config.yaml'
        """
        self.explicit_path = config_path is not None or bool(os.getenv('SSOSYNC_CONFIG'))
        self.config_path = config_path or os.getenv('SSOSYNC_CONFIG', DEFAULT_CONFIG_PATH)
        self.config = {}

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Args:
            overrides: Dotted-key values (e.g. from CLI flags) applied last

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If an explicit config file is missing or validation fails
        """
        self.config = self._read_file()

        self._apply_env_overrides()
        for key, value in (overrides or {}).items():
            if value is not None:
                self._set_nested_value(self.config, key, value)

        self._apply_defaults()
        self._normalize()
        self._validate()

        if self.config['sync']['include_groups']:
            logger.warning("include_groups is configured but is not applied by reconciliation")

        logger.info(f"Configuration loaded successfully from {self.source_description}")
        return self.config

    @property
    def source_description(self) -> str:
        return self.config_path if os.path.exists(self.config_path) else 'environment'

    def _read_file(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            if self.explicit_path:
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")
            logger.debug(f"No configuration file at {self.config_path}, using environment only")
            return {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {self.config_path} must contain a mapping")
        return data

    def _apply_env_overrides(self):
        """Apply SSOSYNC_* environment variable overrides."""
        for env_var, config_key in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        defaults = {
            'google': {
                'admin_email': '',
                'credentials': '',
                'user_match': '',
                'group_match': '',
            },
            'aws': {
                'identity_store_id': '',
                'region': None,
            },
            'sync': {
                'ignore_users': [],
                'ignore_groups': [],
                'include_groups': [],
                'max_workers': 1,
                'page_size': 50,
                'protect_ignored_groups': False,
            },
            'secrets': {
                'enabled': False,
                'google_admin_secret': GOOGLE_ADMIN_EMAIL_SECRET,
                'google_credentials_secret': GOOGLE_CREDENTIALS_SECRET,
            },
            'logging': {
                'level': 'warn',
                'format': 'json',
                'log_dir': None,
                'retention_days': 7,
            },
        }
        for section, values in defaults.items():
            section_config = self.config.setdefault(section, {})
            if section_config is None:
                section_config = self.config[section] = {}
            for key, value in values.items():
                section_config.setdefault(key, value)

        # Lambda keeps the Google credentials in Secrets Manager
        if is_lambda():
            self.config['secrets']['enabled'] = True

        secrets_config = self.config['secrets']
        if secrets_config['enabled']:
            google = self.config['google']
            google['admin_email'] = google['admin_email'] or secrets_config['google_admin_secret']
            google['credentials'] = google['credentials'] or secrets_config['google_credentials_secret']

    def _normalize(self):
        """Coerce list and numeric fields that may arrive as strings."""
        for key_path in self.LIST_FIELDS:
            section, key = key_path.split('.')
            self.config[section][key] = parse_list(self.config[section][key])

        sync_config = self.config['sync']
        for key in ('max_workers', 'page_size'):
            try:
                sync_config[key] = int(sync_config[key])
            except (TypeError, ValueError):
                raise ConfigurationError(f"sync.{key} must be an integer, got {sync_config[key]!r}")

        logging_config = self.config['logging']
        logging_config['level'] = str(logging_config['level']).lower()
        logging_config['format'] = str(logging_config['format']).lower()

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        google = self.config['google']
        if not google.get('admin_email'):
            errors.append("Missing required Google field: admin_email")
        if not google.get('credentials'):
            errors.append("Missing required Google field: credentials")

        if not self.config['aws'].get('identity_store_id'):
            errors.append("Missing required AWS field: identity_store_id")

        sync_config = self.config['sync']
        if sync_config['max_workers'] < 1:
            errors.append("sync.max_workers must be at least 1")
        if not 1 <= sync_config['page_size'] <= 500:
            errors.append("sync.page_size must be between 1 and 500")

        logging_config = self.config['logging']
        if logging_config['level'] not in LOG_LEVELS:
            errors.append(f"Unknown log level: {logging_config['level']}")
        if logging_config['format'] not in LOG_FORMATS:
            errors.append(f"Unknown log format: {logging_config['format']}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))


def parse_list(value: Any) -> List[str]:
    """Accept a YAML list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


def is_lambda() -> bool:
    return bool(os.getenv('AWS_LAMBDA_FUNCTION_NAME'))


def load_config(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file
        overrides: Dotted-key values applied after the environment

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load(overrides)
