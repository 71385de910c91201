"""Identity store (target directory) adapters."""

from sso_sync.stores.base import IdentityStoreBase, TargetFetchError, EntityMutationError

__all__ = ['IdentityStoreBase', 'TargetFetchError', 'EntityMutationError']
