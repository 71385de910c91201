"""
AWS IAM Identity Center identity store integration.

This module implements IdentityStoreBase on top of the boto3 ``identitystore``
client. Every call is scoped to a single identity store id.
"""

import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sso_sync.models import (
    DirectoryGroup,
    DirectoryUser,
    Email,
    ExternalId,
    GroupMembership,
    IdentityResolutionError,
    MemberId,
)
from sso_sync.stores.base import EntityMutationError, IdentityStoreBase, TargetFetchError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


class AWSIdentityStore(IdentityStoreBase):
    """Identity store client for AWS IAM Identity Center."""

    def __init__(self, identity_store_id: str, region: Optional[str] = None,
                 page_size: int = DEFAULT_PAGE_SIZE, client=None):
        """
        Initialize the identity store client.

        Args:
            identity_store_id: Identity store to operate on (``d-xxxxxxxxxx``)
            region: AWS region; falls back to the standard AWS environment
            page_size: Page size for every listing call
            client: Pre-built boto3 client, mainly for tests
        """
        self.identity_store_id = identity_store_id
        self.page_size = page_size
        if client is None:
            session = boto3.session.Session(region_name=region) if region else boto3.session.Session()
            client = session.client('identitystore')
        self.client = client

        logger.info(f"Initialized identity store client for {self.identity_store_id}")

    def _paginate(self, operation: str, result_key: str, **params) -> List[Dict[str, Any]]:
        """Drain a paginated listing, failing on any page error."""
        items = []
        try:
            paginator = self.client.get_paginator(operation)
            pages = paginator.paginate(
                IdentityStoreId=self.identity_store_id,
                PaginationConfig={'PageSize': self.page_size},
                **params
            )
            for page in pages:
                items.extend(page.get(result_key, []))
        except (ClientError, BotoCoreError) as e:
            raise TargetFetchError(f"Failed to list {result_key} from {self.identity_store_id}: {e}")
        return items

    # Listings

    def get_users(self) -> List[DirectoryUser]:
        users = [_user_from_api(u) for u in self._paginate('list_users', 'Users')]
        logger.debug(f"Retrieved {len(users)} users from {self.identity_store_id}")
        return users

    def get_groups(self) -> List[DirectoryGroup]:
        groups = [_group_from_api(g) for g in self._paginate('list_groups', 'Groups')]
        logger.debug(f"Retrieved {len(groups)} groups from {self.identity_store_id}")
        return groups

    def get_group_members(self, group: DirectoryGroup) -> List[GroupMembership]:
        raw = self._paginate('list_group_memberships', 'GroupMemberships', GroupId=group.id)
        memberships = []
        for item in raw:
            try:
                member_id = MemberId.from_api(item.get('MemberId') or {})
            except IdentityResolutionError as e:
                # Keep the membership with an unresolvable reference so it gets removed
                logger.warning(f"Membership {item.get('MembershipId')} in group={group.display_name}: {e}")
                member_id = MemberId('Unknown', '')
            memberships.append(GroupMembership(
                group_id=item.get('GroupId', group.id),
                member_id=member_id,
                id=item.get('MembershipId'),
            ))
        return memberships

    # Mutations

    def create_user(self, user: DirectoryUser) -> DirectoryUser:
        params = {
            'IdentityStoreId': self.identity_store_id,
            'UserName': user.username,
            'DisplayName': user.display_name,
            'Name': {
                'GivenName': user.given_name,
                'FamilyName': user.family_name,
            },
            'Emails': [
                {'Value': e.value, 'Type': e.type, 'Primary': e.primary}
                for e in user.emails
            ],
        }
        try:
            response = self.client.create_user(**params)
        except (ClientError, BotoCoreError) as e:
            raise EntityMutationError(f"Failed to create user {user.username}: {e}")
        user.id = response['UserId']
        return user

    def delete_user(self, user: DirectoryUser) -> None:
        try:
            self.client.delete_user(IdentityStoreId=self.identity_store_id, UserId=user.id)
        except (ClientError, BotoCoreError) as e:
            raise EntityMutationError(f"Failed to delete user {user.username}: {e}")

    def create_group(self, name: str, description: str) -> DirectoryGroup:
        params = {'IdentityStoreId': self.identity_store_id, 'DisplayName': name}
        # The API rejects an empty description
        if description:
            params['Description'] = description
        try:
            response = self.client.create_group(**params)
        except (ClientError, BotoCoreError) as e:
            raise EntityMutationError(f"Failed to create group {name}: {e}")
        return DirectoryGroup(display_name=name, description=description, id=response['GroupId'])

    def delete_group(self, group: DirectoryGroup) -> None:
        try:
            self.client.delete_group(IdentityStoreId=self.identity_store_id, GroupId=group.id)
        except (ClientError, BotoCoreError) as e:
            raise EntityMutationError(f"Failed to delete group {group.display_name}: {e}")

    def add_membership(self, user: DirectoryUser, group: DirectoryGroup) -> GroupMembership:
        member_id = MemberId.user(user.id)
        try:
            response = self.client.create_group_membership(
                IdentityStoreId=self.identity_store_id,
                GroupId=group.id,
                MemberId=member_id.to_api(),
            )
        except (ClientError, BotoCoreError) as e:
            raise EntityMutationError(
                f"Failed to add {user.username} to group {group.display_name}: {e}")
        return GroupMembership(group_id=group.id, member_id=member_id, id=response['MembershipId'])

    def remove_membership(self, membership: GroupMembership) -> None:
        try:
            self.client.delete_group_membership(
                IdentityStoreId=self.identity_store_id,
                MembershipId=membership.id,
            )
        except (ClientError, BotoCoreError) as e:
            raise EntityMutationError(f"Failed to remove membership {membership.id}: {e}")

    def test_connection(self) -> bool:
        """Read a single page of groups without raising."""
        try:
            self.client.list_groups(IdentityStoreId=self.identity_store_id, MaxResults=1)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Identity store connection test failed: {e}")
            return False


def _user_from_api(data: Dict[str, Any]) -> DirectoryUser:
    name = data.get('Name') or {}
    return DirectoryUser(
        username=data.get('UserName', ''),
        display_name=data.get('DisplayName', ''),
        given_name=name.get('GivenName', ''),
        family_name=name.get('FamilyName', ''),
        emails=[
            Email(value=e.get('Value', ''), type=e.get('Type', 'work'), primary=bool(e.get('Primary')))
            for e in data.get('Emails', [])
        ],
        external_ids=[
            ExternalId(issuer=x.get('Issuer', ''), id=x.get('Id', ''))
            for x in data.get('ExternalIds', [])
        ],
        id=data.get('UserId'),
    )


def _group_from_api(data: Dict[str, Any]) -> DirectoryGroup:
    return DirectoryGroup(
        display_name=data.get('DisplayName', ''),
        description=data.get('Description', ''),
        id=data.get('GroupId'),
    )
