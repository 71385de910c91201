#!/usr/bin/env python3
"""
Unit tests for configuration module.

Covers YAML loading, SSOSYNC_* environment overrides, Lambda defaults and
validation.
"""

import os
import sys
import tempfile
import yaml
import unittest
from unittest.mock import patch
from typing import Dict, Any

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sso_sync.config import ConfigLoader, ConfigurationError, load_config, parse_list


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader class."""

    def setUp(self):
        self.valid_config = {
            'google': {
                'admin_email': 'admin@example.com',
                'credentials': 'credentials.json',
                'user_match': 'email:aws-*',
                'group_match': 'name:AWS*',
            },
            'aws': {
                'identity_store_id': 'd-1234567890',
                'region': 'eu-west-1',
            },
            'sync': {
                'ignore_users': ['robot@example.com'],
                'ignore_groups': ['all@example.com'],
            },
            'logging': {
                'level': 'info',
                'format': 'text',
            },
        }
        self.env = patch.dict(os.environ, {}, clear=True)
        self.env.start()
        self.addCleanup(self.env.stop)

    def create_test_config(self, config_data: Dict[str, Any]) -> str:
        """Create a temporary config file with the given data."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump(config_data, f)
        self.addCleanup(os.unlink, f.name)
        return f.name

    def test_valid_config(self):
        config = load_config(self.create_test_config(self.valid_config))

        self.assertEqual(config['google']['admin_email'], 'admin@example.com')
        self.assertEqual(config['aws']['identity_store_id'], 'd-1234567890')
        self.assertEqual(config['sync']['ignore_users'], ['robot@example.com'])
        # Defaults
        self.assertEqual(config['sync']['max_workers'], 1)
        self.assertEqual(config['sync']['page_size'], 50)
        self.assertFalse(config['sync']['protect_ignored_groups'])
        self.assertEqual(config['sync']['include_groups'], [])
        self.assertFalse(config['secrets']['enabled'])

    def test_missing_explicit_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigLoader('/nonexistent/sso-sync.yaml').load()
        self.assertIn('not found', str(ctx.exception))

    def test_invalid_yaml(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("google: [unterminated")
        self.addCleanup(os.unlink, f.name)

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(f.name)
        self.assertIn('Invalid YAML', str(ctx.exception))

    def test_missing_required_fields_are_all_reported(self):
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.create_test_config({'logging': {'level': 'loud'}}))

        message = str(ctx.exception)
        self.assertIn('admin_email', message)
        self.assertIn('credentials', message)
        self.assertIn('identity_store_id', message)
        self.assertIn('Unknown log level', message)

    def test_environment_only(self):
        os.environ.update({
            'SSOSYNC_GOOGLE_ADMIN': 'admin@example.com',
            'SSOSYNC_GOOGLE_CREDENTIALS': '/etc/sso/credentials.json',
            'SSOSYNC_IDENTITY_STORE_ID': 'd-0000000000',
            'SSOSYNC_IGNORE_USERS': 'a@example.com, b@example.com',
            'SSOSYNC_INCLUDE_GROUPS': 'Eng',
            'SSOSYNC_MAX_WORKERS': '4',
        })
        with tempfile.TemporaryDirectory() as tmp:
            with patch('sso_sync.config.DEFAULT_CONFIG_PATH', os.path.join(tmp, 'config.yaml')):
                config = ConfigLoader().load()

        self.assertEqual(config['sync']['ignore_users'], ['a@example.com', 'b@example.com'])
        self.assertEqual(config['sync']['include_groups'], ['Eng'])
        self.assertEqual(config['sync']['max_workers'], 4)
        self.assertEqual(config['google']['credentials'], '/etc/sso/credentials.json')

    def test_env_overrides_file(self):
        os.environ['SSOSYNC_USER_MATCH'] = 'name:Jane*'
        os.environ['SSOSYNC_LOG_LEVEL'] = 'DEBUG'

        config = load_config(self.create_test_config(self.valid_config))

        self.assertEqual(config['google']['user_match'], 'name:Jane*')
        self.assertEqual(config['logging']['level'], 'debug')

    def test_cli_overrides_take_precedence(self):
        os.environ['SSOSYNC_GROUP_MATCH'] = 'email:env-*'

        config = load_config(self.create_test_config(self.valid_config),
                             {'google.group_match': 'email:cli-*', 'sync.max_workers': None})

        self.assertEqual(config['google']['group_match'], 'email:cli-*')
        self.assertEqual(config['sync']['max_workers'], 1)

    def test_lambda_uses_secret_names(self):
        os.environ.update({
            'AWS_LAMBDA_FUNCTION_NAME': 'ssosync',
            'SSOSYNC_IDENTITY_STORE_ID': 'd-0000000000',
        })
        with tempfile.TemporaryDirectory() as tmp:
            with patch('sso_sync.config.DEFAULT_CONFIG_PATH', os.path.join(tmp, 'config.yaml')):
                config = ConfigLoader().load()

        self.assertTrue(config['secrets']['enabled'])
        self.assertEqual(config['google']['admin_email'], 'SSOSyncGoogleAdminEmail')
        self.assertEqual(config['google']['credentials'], 'SSOSyncGoogleCredentials')

    def test_invalid_numbers(self):
        self.valid_config['sync']['max_workers'] = 0
        self.valid_config['sync']['page_size'] = 1000
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.create_test_config(self.valid_config))
        self.assertIn('max_workers', str(ctx.exception))
        self.assertIn('page_size', str(ctx.exception))

        self.valid_config['sync']['max_workers'] = 'many'
        with self.assertRaises(ConfigurationError):
            load_config(self.create_test_config(self.valid_config))

    def test_include_groups_warns(self):
        self.valid_config['sync']['include_groups'] = ['Eng']
        with self.assertLogs('sso_sync.config', level='WARNING') as logs:
            load_config(self.create_test_config(self.valid_config))
        self.assertTrue(any('include_groups' in line for line in logs.output))


class TestParseList(unittest.TestCase):

    def test_parse_list(self):
        self.assertEqual(parse_list(None), [])
        self.assertEqual(parse_list(''), [])
        self.assertEqual(parse_list('a, b,,c '), ['a', 'b', 'c'])
        self.assertEqual(parse_list(['a', ' b ']), ['a', 'b'])


if __name__ == '__main__':
    unittest.main()
