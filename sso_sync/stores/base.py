"""
Base identity store interface.

This module defines the abstract base class that every target directory
integration implements, along with the errors reconciliation distinguishes
between: listing failures, which abort a run, and mutation failures, whose
severity the caller decides.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from sso_sync.models import DirectoryGroup, DirectoryUser, GroupMembership

logger = logging.getLogger(__name__)


class IdentityStoreError(Exception):
    """Base exception for identity store errors."""
    pass


class TargetFetchError(IdentityStoreError):
    """Raised when a paginated listing cannot be fully drained."""
    pass


class EntityMutationError(IdentityStoreError):
    """Raised when creating or deleting a user, group or membership fails."""
    pass


class IdentityStoreBase(ABC):
    """
    Abstract base class for identity store integrations.

    Listings return fully drained lists; a page failure raises
    TargetFetchError and nothing partial is returned. Mutations raise
    EntityMutationError.
    """

    @abstractmethod
    def get_users(self) -> List[DirectoryUser]:
        pass

    @abstractmethod
    def get_groups(self) -> List[DirectoryGroup]:
        pass

    @abstractmethod
    def get_group_members(self, group: DirectoryGroup) -> List[GroupMembership]:
        pass

    @abstractmethod
    def create_user(self, user: DirectoryUser) -> DirectoryUser:
        """
        Create a user.

        Args:
            user: User to create; its id is ignored

        Returns:
            The created user carrying its store-assigned id
        """
        pass

    @abstractmethod
    def delete_user(self, user: DirectoryUser) -> None:
        pass

    @abstractmethod
    def create_group(self, name: str, description: str) -> DirectoryGroup:
        pass

    @abstractmethod
    def delete_group(self, group: DirectoryGroup) -> None:
        pass

    @abstractmethod
    def add_membership(self, user: DirectoryUser, group: DirectoryGroup) -> GroupMembership:
        pass

    @abstractmethod
    def remove_membership(self, membership: GroupMembership) -> None:
        pass

    def close_connection(self):
        """Release any client resources. Default implementation does nothing."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
