"""
Main orchestrator for SSO Sync.

This module wires configuration, logging, secrets and the two directory
adapters together and runs one reconciliation pass. It is invoked either from
the command line or as a Lambda handler on a schedule; there is no state
carried between runs.
"""

import sys
import json
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from sso_sync.config import load_config, ConfigurationError
from sso_sync.google_client import GoogleDirectoryClient, GoogleAuthError, SourceFetchError
from sso_sync.logging_setup import setup_logging
from sso_sync.reconciler import Reconciler, SyncStats
from sso_sync.secrets import SecretsManager, SecretsError
from sso_sync.stores.aws_identity_store import AWSIdentityStore
from sso_sync.stores.base import EntityMutationError, TargetFetchError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_FETCH_ERROR = 3
EXIT_UNEXPECTED = 4


class SyncError(Exception):
    """Raised by the Lambda handler when a run does not complete."""
    pass


class SyncOrchestrator:
    """
    Runs one synchronization from Google Workspace to the identity store.

    Args:
        config_path: Path to configuration file
        overrides: Dotted-key configuration values taking precedence over file and environment
    """

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self.config_path = config_path
        self.overrides = overrides or {}
        self.config = None
        self.source = None
        self.target = None
        self.stats = SyncStats()
        self.error: Optional[Exception] = None

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Syncing AWS users and groups from Google Workspace")

            self._connect()

            google_config = self.config['google']
            reconciler = Reconciler(self.source, self.target, self.config['sync'])
            try:
                reconciler.run(google_config['user_match'], google_config['group_match'])
            finally:
                self.stats = reconciler.stats

            self._log_sync_summary()
            logger.info("Sync completed successfully")
            return EXIT_OK

        except (ConfigurationError, SecretsError) as e:
            self.error = e
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except (GoogleAuthError, SourceFetchError, TargetFetchError) as e:
            self.error = e
            logger.error(f"Directory listing failed: {e}")
            self._log_sync_summary()
            return EXIT_FETCH_ERROR
        except EntityMutationError as e:
            self.error = e
            logger.error(f"Sync aborted: {e}")
            self._log_sync_summary()
            return EXIT_SYNC_FAILED
        except Exception as e:
            self.error = e
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path, self.overrides)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _connect(self):
        """Resolve Google credentials and build both directory clients."""
        google_config = self.config['google']
        aws_config = self.config['aws']
        sync_config = self.config['sync']

        if self.config['secrets']['enabled']:
            secrets = SecretsManager(region=aws_config.get('region'))
            admin_email = secrets.google_admin_email(google_config['admin_email'])
            credentials = secrets.google_credentials(google_config['credentials'])
            self.source = GoogleDirectoryClient.from_json(credentials, admin_email, sync_config['page_size'])
        else:
            self.source = GoogleDirectoryClient.from_file(
                google_config['credentials'], google_config['admin_email'], sync_config['page_size'])

        self.target = AWSIdentityStore(
            aws_config['identity_store_id'],
            region=aws_config.get('region'),
        )

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.stats
        runtime = stats.runtime_seconds

        runtime_str = f"{runtime:.2f} seconds"
        if runtime > 60:
            runtime_str = f"{int(runtime // 60)}m {runtime % 60:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Users created: {stats['users_created']} (failed: {stats['users_create_failed']})")
        logger.info(f"Users deleted: {stats['users_deleted']} (failed: {stats['users_delete_failed']})")
        logger.info(f"Groups created: {stats['groups_created']} (failed: {stats['groups_create_failed']})")
        logger.info(f"Groups deleted: {stats['groups_deleted']}")
        logger.info(f"Memberships added: {stats['memberships_added']}")
        logger.info(f"Memberships removed: {stats['memberships_removed']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Check configuration and connectivity to both directories.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            self._connect()
        except (SecretsError, GoogleAuthError) as e:
            health_status['checks']['credentials'] = {
                'status': 'fail',
                'message': f'Credentials could not be loaded: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        if self.source.test_connection():
            health_status['checks']['google'] = {'status': 'pass', 'message': 'Google directory reachable'}
        else:
            health_status['checks']['google'] = {'status': 'fail', 'message': 'Google directory unreachable'}
            health_status['status'] = 'unhealthy'

        if self.target.test_connection():
            health_status['checks']['identity_store'] = {'status': 'pass', 'message': 'Identity store reachable'}
        else:
            health_status['checks']['identity_store'] = {'status': 'fail', 'message': 'Identity store unreachable'}
            health_status['status'] = 'unhealthy'

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.target:
            self.target.close_connection()


def handler(event=None, context=None) -> Dict[str, Any]:
    """AWS Lambda entry point for the scheduled run."""
    orchestrator = SyncOrchestrator()
    exit_code = orchestrator.run()
    if exit_code != EXIT_OK:
        raise SyncError(f"Sync failed with exit code {exit_code}: {orchestrator.error}")
    return {'status': 'ok', 'stats': orchestrator.stats.as_dict()}


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='Sync Google Workspace users and groups to AWS IAM Identity Center')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--log-level', help='Log level (panic, fatal, error, warn, info, debug, trace)')
    parser.add_argument('--log-format', choices=['json', 'text'], help='Log output format')
    parser.add_argument('--user-match', help='Google Workspace user filter query')
    parser.add_argument('--group-match', help='Google Workspace group filter query')
    parser.add_argument('--max-workers', type=int, help='Parallel membership reconciliation workers')

    args = parser.parse_args()

    overrides = {
        'logging.level': args.log_level,
        'logging.format': args.log_format,
        'google.user_match': args.user_match,
        'google.group_match': args.group_match,
        'sync.max_workers': args.max_workers,
    }
    orchestrator = SyncOrchestrator(config_path=args.config, overrides=overrides)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
