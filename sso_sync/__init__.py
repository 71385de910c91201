"""
SSO Sync - Keep an AWS IAM Identity Center identity store in line with Google Workspace.

Users, groups and group memberships are read from the Google Workspace
directory and the identity store is reconciled to match on every run.
"""

__version__ = "1.0.0"
__author__ = "SSO Sync Team"
