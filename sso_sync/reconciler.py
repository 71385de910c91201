"""
Reconciliation of the identity store against Google Workspace.

A run reconciles users first, then groups (reconciling each surviving group's
membership before any group is deleted), and finally deletes the users that
user reconciliation marked for removal. Every run recomputes its diffs from
live listings, so an interrupted run is completed by the next one.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sso_sync.index import IdentityIndex, UserSyncResult
from sso_sync.models import (
    DirectoryGroup,
    DirectoryUser,
    Email,
    ExternalId,
    GroupMembership,
    IdentityResolutionError,
    SourceGroup,
    SourceUser,
)
from sso_sync.stores.base import EntityMutationError, IdentityStoreBase

logger = logging.getLogger(__name__)

EXTERNAL_ID_ISSUER = 'Google'


class SyncStats:
    """Mutation counters for one run, safe to update from worker threads."""

    FIELDS = (
        'users_created', 'users_create_failed', 'users_deleted', 'users_delete_failed',
        'groups_created', 'groups_create_failed', 'groups_deleted',
        'memberships_added', 'memberships_removed', 'memberships_unresolved',
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in self.FIELDS}
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def __getitem__(self, name: str) -> int:
        return self._counts[name]

    @property
    def mutations(self) -> int:
        return sum(self._counts[name] for name in (
            'users_created', 'users_deleted', 'groups_created', 'groups_deleted',
            'memberships_added', 'memberships_removed',
        ))

    @property
    def runtime_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def as_dict(self) -> Dict[str, Any]:
        data = dict(self._counts)
        data['runtime_seconds'] = self.runtime_seconds
        return data


class Reconciler:
    """
    Computes and applies the mutations that make the identity store match
    Google Workspace.

    Args:
        source: Google directory client (see ``GoogleDirectoryClient``)
        target: Identity store adapter
        sync_config: The ``sync`` configuration section
    """

    def __init__(self, source, target: IdentityStoreBase, sync_config: Optional[Dict[str, Any]] = None):
        sync_config = sync_config or {}
        self.source = source
        self.target = target
        self.ignore_users = set(sync_config.get('ignore_users') or [])
        self.ignore_groups = set(sync_config.get('ignore_groups') or [])
        self.protect_ignored_groups = bool(sync_config.get('protect_ignored_groups', False))
        self.max_workers = max(1, int(sync_config.get('max_workers', 1)))
        self.stats = SyncStats()

    def run(self, user_query: str = '', group_query: str = '') -> SyncStats:
        """Run one full reconciliation pass."""
        self.stats = SyncStats()
        self.stats.start_time = datetime.now()
        try:
            result = self.reconcile_users(user_query)
            self.reconcile_groups(group_query, result)
            self.remove_users(result.pending_deletion)
        finally:
            self.stats.end_time = datetime.now()
        return self.stats

    # Users

    def reconcile_users(self, query: str = '') -> UserSyncResult:
        """
        Create missing users and collect users to delete.

        Listing failures propagate. A failed creation is logged and the user
        is left out of the index, so later stages treat it as absent.

        Returns:
            UserSyncResult with a frozen index
        """
        logger.debug("Retrieving identity store users")
        result = UserSyncResult(IdentityIndex.build(self.target.get_users()))

        logger.debug("Retrieving deleted Google users")
        for tombstone in self.source.get_deleted_users():
            if self.is_ignored_user(tombstone.primary_email):
                continue
            existing = result.index.get(tombstone.primary_email)
            if existing is None:
                logger.debug(f"email={tombstone.primary_email}: deleted user already absent")
                continue
            logger.warning(f"email={tombstone.primary_email}: deleted in Google, marked for removal")
            result.mark_for_deletion(existing)

        logger.debug("Retrieving active Google users")
        for source_user in self.source.get_users(query):
            self._reconcile_user(source_user, result)

        result.freeze()
        return result

    def _reconcile_user(self, source_user: SourceUser, result: UserSyncResult) -> None:
        email = source_user.primary_email
        if self.is_ignored_user(email):
            return

        existing = result.index.get(email)
        if existing is not None:
            if source_user.suspended:
                logger.warning(f"email={email}: suspended in Google, marked for removal")
                result.mark_for_deletion(existing)
            else:
                logger.debug(f"email={email}: already present")
            return

        if source_user.suspended:
            logger.debug(f"email={email}: suspended in Google, not created")
            return

        logger.debug(f"email={email}: creating user")
        try:
            created = self.target.create_user(build_directory_user(source_user))
        except EntityMutationError as e:
            logger.error(f"email={email}: cannot create user: {e}")
            self.stats.incr('users_create_failed')
            return
        result.index.add(created)
        self.stats.incr('users_created')
        logger.info(f"email={email}: user created")

    def remove_users(self, users: Iterable[DirectoryUser]) -> None:
        """Delete users from the identity store. A failed deletion is logged and skipped."""
        for user in users:
            try:
                self.target.delete_user(user)
            except EntityMutationError as e:
                logger.error(f"email={user.username}: cannot delete user: {e}")
                self.stats.incr('users_delete_failed')
                continue
            self.stats.incr('users_deleted')
            logger.info(f"email={user.username}: user deleted")

    # Groups

    def reconcile_groups(self, query: str, result: UserSyncResult) -> None:
        """
        Create missing groups, reconcile memberships, then delete stale groups.

        Listing failures, membership failures and group deletion failures
        propagate. A failed group creation is logged and that group is skipped.
        """
        logger.debug("Retrieving identity store groups")
        target_groups = self.target.get_groups()
        working: Dict[str, DirectoryGroup] = {g.display_name: g for g in target_groups}

        logger.debug(f"Retrieving Google groups (query={query!r})")
        source_index: Dict[str, SourceGroup] = {}
        for source_group in self.source.get_groups(query):
            if self.is_ignored_group(source_group):
                continue
            source_index[source_group.name] = source_group

            if source_group.name in working:
                logger.debug(f"group={source_group.name}: already present")
                continue

            logger.debug(f"group={source_group.name}: creating group")
            try:
                created = self.target.create_group(source_group.name, source_group.description)
            except EntityMutationError as e:
                logger.error(f"group={source_group.name}: cannot create group: {e}")
                self.stats.incr('groups_create_failed')
                continue
            working[created.display_name] = created
            self.stats.incr('groups_created')
            logger.info(f"group={source_group.name}: group created")

        to_delete = []
        for group in target_groups:
            if group.display_name in source_index:
                continue
            if self.protect_ignored_groups and group.display_name in self.ignore_groups:
                logger.debug(f"group={group.display_name}: ignored, not deleted")
                working.pop(group.display_name, None)
                continue
            to_delete.append(group)
            working.pop(group.display_name, None)

        pairs = [(source_index.get(name), group) for name, group in working.items()]
        self._reconcile_all_memberships(pairs, result)

        for group in to_delete:
            self.target.delete_group(group)
            self.stats.incr('groups_deleted')
            logger.info(f"group={group.display_name}: group deleted")

    def _reconcile_all_memberships(self, pairs: List[Tuple[Optional[SourceGroup], DirectoryGroup]],
                                   result: UserSyncResult) -> None:
        """Reconcile every group's membership; returns only once all work is done."""
        if self.max_workers == 1 or len(pairs) <= 1:
            for source_group, target_group in pairs:
                self.reconcile_membership(source_group, target_group, result)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='membership') as executor:
            futures = {
                executor.submit(self.reconcile_membership, source_group, target_group, result): target_group
                for source_group, target_group in pairs
            }
            first_error = None
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                error = future.exception()
                if error is None:
                    continue
                logger.error(f"group={futures[future].display_name}: membership reconciliation failed: {error}")
                if first_error is None:
                    first_error = error
                    for pending in futures:
                        pending.cancel()

        if first_error is not None:
            raise first_error

    # Memberships

    def reconcile_membership(self, source_group: Optional[SourceGroup], target_group: DirectoryGroup,
                             result: UserSyncResult) -> None:
        """
        Make one identity store group's members match its Google group.

        Google members unknown to the user index are neither added nor
        removed. Removals are applied before additions; any failure propagates.
        """
        group_name = target_group.display_name
        logger.info(f"group={group_name}: reconciling membership")

        desired: Dict[str, DirectoryUser] = {}
        for member in self.source.get_group_members(source_group):
            user = result.by_username.get(member.email)
            if user is not None:
                desired[member.email] = user

        to_remove: List[GroupMembership] = []
        for membership in self.target.get_group_members(target_group):
            try:
                user = result.index.resolve_member(membership.member_id)
            except IdentityResolutionError as e:
                logger.warning(f"group={group_name}: membership {membership.id}: {e}")
                self.stats.incr('memberships_unresolved')
                to_remove.append(membership)
                continue

            if user is None:
                logger.debug(f"group={group_name}: membership {membership.id} references an unknown user")
                to_remove.append(membership)
                continue
            if user.username not in desired:
                to_remove.append(membership)
            # Confirmed members are dropped from the desired set; a second
            # membership for the same user is therefore removed as a duplicate.
            desired.pop(user.username, None)

        for membership in to_remove:
            self.target.remove_membership(membership)
            self.stats.incr('memberships_removed')
            logger.info(f"group={group_name}: membership {membership.id} removed")

        for username, user in desired.items():
            self.target.add_membership(user, target_group)
            self.stats.incr('memberships_added')
            logger.info(f"group={group_name}: email={username} added")

    # Filters

    def is_ignored_user(self, username: str) -> bool:
        return username in self.ignore_users

    def is_ignored_group(self, group: SourceGroup) -> bool:
        return group.email in self.ignore_groups or group.name in self.ignore_groups


def build_directory_user(source_user: SourceUser) -> DirectoryUser:
    """Map a Google user onto a new identity store user."""
    return DirectoryUser(
        username=source_user.primary_email,
        display_name=' '.join([source_user.given_name, source_user.family_name]),
        given_name=source_user.given_name,
        family_name=source_user.family_name,
        emails=[Email(value=source_user.primary_email, type='work', primary=True)],
        external_ids=[ExternalId(issuer=EXTERNAL_ID_ISSUER, id=source_user.id)],
    )
