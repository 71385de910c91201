"""
Logging setup and configuration for SSO Sync.

This module provides centralized logging configuration: level names shared
with the deployment template, JSON or text output for CloudWatch or a
terminal, optional rotating file output, and scrubbing of secrets.
"""

import os
import re
import json
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Dict, Any


LEVELS = {
    'panic': logging.CRITICAL,
    'fatal': logging.CRITICAL,
    'critical': logging.CRITICAL,
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'info': logging.INFO,
    'debug': logging.DEBUG,
    'trace': logging.DEBUG,
}


def resolve_level(name: str) -> int:
    return LEVELS.get(str(name).lower(), logging.WARNING)


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'secret', 'token', 'private_key', 'private_key_id',
        'client_secret', 'access_token', 'refresh_token', 'credentials',
        'SecretString', 'SecretBinary',
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if record.args:
            record.msg = record.getMessage()
            record.args = None

        msg = str(record.msg)

        for keyword in self.SENSITIVE_KEYWORDS:
            # key=value
            msg = re.sub(rf'({keyword}\s*=\s*)[^\s,}}\]]+', r'\1****', msg, flags=re.IGNORECASE)
            # "key": "value"
            msg = re.sub(rf'("{keyword}"\s*:\s*")[^"]*(")', r'\1****\2', msg, flags=re.IGNORECASE)
            # 'key': 'value' (repr of a dict)
            msg = re.sub(rf"('{keyword}'\s*:\s*')[^']*(')", r'\1****\2', msg, flags=re.IGNORECASE)

        msg = re.sub(r'-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----',
                     '****', msg, flags=re.DOTALL)

        record.msg = msg
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        entry = {
            'time': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname.lower(),
            'logger': record.name,
            'msg': record.getMessage(),
        }
        if record.exc_info:
            entry['error'] = self.formatException(record.exc_info)
        return json.dumps(entry)


class LoggingManager:
    """
    Manages logging configuration for SSO Sync.

    Console output always goes to stderr; a daily rotating file is added when
    a log directory is configured.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: Logging configuration dictionary
        """
        if self.configured:
            return

        logging_config = config if config else {}

        level = resolve_level(logging_config.get('level', 'warn'))
        log_format = str(logging_config.get('format', 'json')).lower()
        self.log_dir = logging_config.get('log_dir')
        self.retention_days = logging_config.get('retention_days', 7)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if log_format == 'json':
            formatter = JsonFormatter()
        else:
            formatter = logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        sensitive_filter = SensitiveDataFilter()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(sensitive_filter)
        root_logger.addHandler(console_handler)

        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
            file_handler = logging.handlers.TimedRotatingFileHandler(
                filename=os.path.join(self.log_dir, 'sso-sync.log'),
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            file_handler.suffix = '%Y-%m-%d'
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(sensitive_filter)
            root_logger.addHandler(file_handler)

        # Client libraries are chatty at debug
        for noisy in ('botocore', 'boto3', 'urllib3', 'googleapiclient.discovery'):
            logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={logging.getLevelName(level)}, format={log_format}, "
                    f"dir={self.log_dir}")

    def reset(self) -> None:
        self.configured = False


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)
