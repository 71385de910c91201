"""
Secret retrieval from AWS Secrets Manager.

When running as a Lambda function the Google admin email and service account
key are stored as secrets rather than passed in plain configuration.
"""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

GOOGLE_ADMIN_EMAIL_SECRET = 'SSOSyncGoogleAdminEmail'
GOOGLE_CREDENTIALS_SECRET = 'SSOSyncGoogleCredentials'


class SecretsError(Exception):
    """Raised when a secret cannot be read."""
    pass


class SecretsManager:
    """Reads the current version of named secrets."""

    def __init__(self, client=None, region: Optional[str] = None):
        if client is None:
            session = boto3.session.Session(region_name=region) if region else boto3.session.Session()
            client = session.client('secretsmanager')
        self.client = client

    def get_secret(self, secret_id: str) -> str:
        """
        Return a secret's value as text.

        Raises:
            SecretsError: If the secret is missing or unreadable
        """
        try:
            response = self.client.get_secret_value(SecretId=secret_id, VersionStage='AWSCURRENT')
        except (ClientError, BotoCoreError) as e:
            raise SecretsError(f"Failed to read secret {secret_id}: {e}")

        if response.get('SecretString') is not None:
            return response['SecretString']

        # boto3 hands back SecretBinary already base64-decoded
        binary = response.get('SecretBinary')
        if binary is None:
            raise SecretsError(f"Secret {secret_id} has no value")
        try:
            return binary.decode('utf-8')
        except UnicodeDecodeError as e:
            raise SecretsError(f"Secret {secret_id} is not UTF-8 text: {e}")

    def google_admin_email(self, secret_id: str = GOOGLE_ADMIN_EMAIL_SECRET) -> str:
        return self.get_secret(secret_id)

    def google_credentials(self, secret_id: str = GOOGLE_CREDENTIALS_SECRET) -> str:
        return self.get_secret(secret_id)
