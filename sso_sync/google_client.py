"""
Google Workspace client for reading the source directory.

This module connects to the Admin SDK Directory API with a delegated service
account and retrieves users, recently deleted users, groups and group members.
Every listing is drained page by page before it is returned.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from google.auth.exceptions import GoogleAuthError as _AuthLibraryError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleAPIError

from sso_sync.models import SourceGroup, SourceMember, SourceUser

logger = logging.getLogger(__name__)

SCOPES = [
    'https://www.googleapis.com/auth/admin.directory.group.readonly',
    'https://www.googleapis.com/auth/admin.directory.group.member.readonly',
    'https://www.googleapis.com/auth/admin.directory.user.readonly',
]

CUSTOMER = 'my_customer'

# Directory API upper bounds for maxResults
MAX_PAGE_SIZE = {'users': 500, 'groups': 200, 'members': 200}


class GoogleAuthError(Exception):
    """Raised when the service account credentials cannot be loaded."""
    pass


class SourceFetchError(Exception):
    """Raised when a Directory API listing cannot be fully drained."""
    pass


class GoogleDirectoryClient:
    """
    Read-only client for the Google Workspace directory.

    The underlying HTTP transport is not thread-safe, so each thread gets its
    own service object built from the shared credentials.
    """

    def __init__(self, credentials_info: Dict[str, Any], admin_email: str, page_size: int = 50):
        """
        Initialize the directory client.

        Args:
            credentials_info: Parsed service account JSON key
            admin_email: Workspace admin the service account impersonates
            page_size: Requested page size for every listing
        """
        self.admin_email = admin_email
        self.page_size = page_size
        self._local = threading.local()

        try:
            self.credentials = service_account.Credentials.from_service_account_info(
                credentials_info, scopes=SCOPES, subject=admin_email
            )
        except (ValueError, KeyError, _AuthLibraryError) as e:
            raise GoogleAuthError(f"Invalid Google service account credentials: {e}")

        logger.info(f"Initialized Google directory client as {admin_email}")

    @classmethod
    def from_json(cls, credentials_json: str, admin_email: str, page_size: int = 50) -> 'GoogleDirectoryClient':
        try:
            info = json.loads(credentials_json)
        except json.JSONDecodeError as e:
            raise GoogleAuthError(f"Google credentials are not valid JSON: {e}")
        return cls(info, admin_email, page_size)

    @classmethod
    def from_file(cls, path: str, admin_email: str, page_size: int = 50) -> 'GoogleDirectoryClient':
        try:
            with open(path, 'r') as f:
                return cls.from_json(f.read(), admin_email, page_size)
        except OSError as e:
            raise GoogleAuthError(f"Cannot read Google credentials file {path}: {e}")

    @property
    def service(self):
        service = getattr(self._local, 'service', None)
        if service is None:
            service = build('admin', 'directory_v1', credentials=self.credentials, cache_discovery=False)
            self._local.service = service
        return service

    def _drain(self, resource, kind: str, result_key: str, **params) -> List[Dict[str, Any]]:
        """Request every page of a listing; any page error aborts the listing."""
        params['maxResults'] = min(self.page_size, MAX_PAGE_SIZE[kind])
        items = []
        pages = 0
        try:
            request = resource.list(**params)
            while request is not None:
                response = request.execute()
                pages += 1
                items.extend(response.get(result_key, []))
                request = resource.list_next(request, response)
        except (GoogleAPIError, _AuthLibraryError, OSError) as e:
            raise SourceFetchError(f"Failed to list {kind} from Google (page {pages + 1}): {e}")
        logger.debug(f"Retrieved {len(items)} {kind} across {pages} pages")
        return items

    def _query(self, query: str, fetch: Callable[[Optional[str]], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """
        Run a listing for each comma-separated query part.

        An empty query or ``*`` lists everything. Results are de-duplicated
        by id, keeping first-seen order.
        """
        query = (query or '').strip()
        if not query or query == '*':
            return fetch(None)

        seen = set()
        results = []
        for part in (q.strip() for q in query.split(',')):
            if not part:
                continue
            for item in fetch(part):
                key = item.get('id') or item.get('email') or item.get('primaryEmail')
                if key in seen:
                    continue
                seen.add(key)
                results.append(item)
        return results

    def get_users(self, query: str = '') -> List[SourceUser]:
        """
        Retrieve active (and suspended) users matching a Directory API query.

        Args:
            query: e.g. ``name:John* email:admin*``; comma separates independent queries

        Returns:
            Matching source users
        """
        logger.info(f"Retrieving Google users (query={query!r})")

        def fetch(q):
            params = {'customer': CUSTOMER}
            if q:
                params['query'] = q
            return self._drain(self.service.users(), 'users', 'users', **params)

        return [SourceUser.from_api(u) for u in self._query(query, fetch)]

    def get_deleted_users(self) -> List[SourceUser]:
        logger.info("Retrieving recently deleted Google users")
        raw = self._drain(self.service.users(), 'users', 'users', customer=CUSTOMER, showDeleted='true')
        return [SourceUser.from_api(u) for u in raw]

    def get_groups(self, query: str = '') -> List[SourceGroup]:
        logger.info(f"Retrieving Google groups (query={query!r})")

        def fetch(q):
            params = {'customer': CUSTOMER}
            if q:
                params['query'] = q
            return self._drain(self.service.groups(), 'groups', 'groups', **params)

        return [SourceGroup.from_api(g) for g in self._query(query, fetch)]

    def get_group_members(self, group: Optional[SourceGroup]) -> List[SourceMember]:
        """Retrieve members of a group, including nested membership. None yields no members."""
        if group is None:
            return []
        logger.debug(f"Retrieving members of Google group {group.name}")
        raw = self._drain(
            self.service.members(), 'members', 'members',
            groupKey=group.id or group.email,
            includeDerivedMembership=True,
        )
        return [SourceMember.from_api(m) for m in raw]

    def test_connection(self) -> bool:
        """Read a single page of users without raising."""
        try:
            self.service.users().list(customer=CUSTOMER, maxResults=1).execute()
            return True
        except Exception as e:
            logger.debug(f"Google connection test failed: {e}")
            return False
