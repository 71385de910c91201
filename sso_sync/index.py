"""
Identity index over target directory users.

The index maps identity store users by username (the natural key shared with
Google Workspace) and by the store-assigned user id, which is what group
memberships reference. It is built once per run, grows while new users are
created, and is frozen before group and membership reconciliation read it.
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from sso_sync.models import DirectoryUser, MemberId

logger = logging.getLogger(__name__)


class IdentityIndex:
    """Lookup of identity store users by username and by user id."""

    def __init__(self):
        self._by_username: Dict[str, DirectoryUser] = {}
        self._by_target_id: Dict[str, DirectoryUser] = {}
        self._frozen = False

    @classmethod
    def build(cls, users: Iterable[DirectoryUser]) -> 'IdentityIndex':
        """
        Build an index from a fully drained user listing.

        Args:
            users: Every user currently in the identity store

        Returns:
            Populated, still mutable index
        """
        index = cls()
        for user in users:
            index.add(user)
        logger.debug(f"Indexed {len(index)} identity store users")
        return index

    def add(self, user: DirectoryUser) -> None:
        if self._frozen:
            raise RuntimeError("Identity index is frozen")
        self._by_username[user.username] = user
        if user.id:
            self._by_target_id[user.id] = user

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def by_username(self) -> Mapping[str, DirectoryUser]:
        return MappingProxyType(self._by_username)

    @property
    def by_target_id(self) -> Mapping[str, DirectoryUser]:
        return MappingProxyType(self._by_target_id)

    def get(self, username: str) -> Optional[DirectoryUser]:
        return self._by_username.get(username)

    def resolve_member(self, member_id: MemberId) -> Optional[DirectoryUser]:
        """
        Resolve a membership's member reference to a known user.

        Returns None when the id is well formed but unknown. Raises
        IdentityResolutionError when the reference is not a user id.
        """
        return self._by_target_id.get(member_id.user_id())

    def __contains__(self, username: str) -> bool:
        return username in self._by_username

    def __len__(self) -> int:
        return len(self._by_username)


class UserSyncResult:
    """
    Outcome of user reconciliation, consumed by the group and removal passes.

    Pending deletions are keyed by username so a user that is both tombstoned
    and suspended is deleted once.
    """

    def __init__(self, index: Optional[IdentityIndex] = None):
        self.index = index if index is not None else IdentityIndex()
        self._pending_deletion: Dict[str, DirectoryUser] = {}

    @property
    def by_username(self) -> Mapping[str, DirectoryUser]:
        return self.index.by_username

    @property
    def by_target_id(self) -> Mapping[str, DirectoryUser]:
        return self.index.by_target_id

    @property
    def pending_deletion(self) -> List[DirectoryUser]:
        return list(self._pending_deletion.values())

    def mark_for_deletion(self, user: DirectoryUser) -> None:
        if self.index.frozen:
            raise RuntimeError("User sync result is frozen")
        self._pending_deletion.setdefault(user.username, user)

    def freeze(self) -> None:
        self.index.freeze()
