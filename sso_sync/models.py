"""
Directory entity models shared by the source and target adapters.

Target-side entities (users, groups, memberships) mirror the identity store's
shapes; source-side entities carry only the fields reconciliation reads from
Google Workspace.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Member reference kinds understood by the identity store
MEMBER_KIND_USER_ID = 'UserId'


class IdentityResolutionError(Exception):
    """Raised when a membership's member reference cannot be resolved to a user."""
    pass


@dataclass
class Email:
    value: str
    type: str = 'work'
    primary: bool = False


@dataclass
class ExternalId:
    issuer: str
    id: str


@dataclass
class DirectoryUser:
    """A user in the identity store. ``id`` is assigned by the store on creation."""

    username: str
    display_name: str = ''
    given_name: str = ''
    family_name: str = ''
    emails: List[Email] = field(default_factory=list)
    external_ids: List[ExternalId] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def primary_email(self) -> Optional[str]:
        for email in self.emails:
            if email.primary:
                return email.value
        return None


@dataclass
class DirectoryGroup:
    """A group in the identity store, keyed by display name."""

    display_name: str
    description: str = ''
    id: Optional[str] = None


@dataclass(frozen=True)
class MemberId:
    """
    Tagged reference to a group member.

    The identity store reports a member as a single-key mapping such as
    ``{'UserId': '...'}``. Only ``UserId`` references can be resolved against
    the user index; any other kind is kept so it can be reported.
    """

    kind: str
    value: str

    @classmethod
    def user(cls, user_id: str) -> 'MemberId':
        return cls(MEMBER_KIND_USER_ID, user_id)

    @classmethod
    def from_api(cls, data: Dict[str, str]) -> 'MemberId':
        if not data:
            raise IdentityResolutionError("Membership has no member reference")
        if len(data) != 1:
            raise IdentityResolutionError(f"Ambiguous member reference: {sorted(data)}")
        kind, value = next(iter(data.items()))
        return cls(kind, value)

    def to_api(self) -> Dict[str, str]:
        return {self.kind: self.value}

    def user_id(self) -> str:
        """Return the referenced user id, failing for any other member kind."""
        if self.kind != MEMBER_KIND_USER_ID:
            raise IdentityResolutionError(f"Unsupported member reference kind: {self.kind}")
        return self.value


@dataclass
class GroupMembership:
    group_id: str
    member_id: MemberId
    id: Optional[str] = None


@dataclass
class SourceUser:
    """A Google Workspace user as read from the Directory API."""

    primary_email: str
    given_name: str = ''
    family_name: str = ''
    suspended: bool = False
    id: str = ''

    @classmethod
    def from_api(cls, data: Dict) -> 'SourceUser':
        name = data.get('name') or {}
        return cls(
            primary_email=data.get('primaryEmail', ''),
            given_name=name.get('givenName', ''),
            family_name=name.get('familyName', ''),
            suspended=bool(data.get('suspended', False)),
            id=data.get('id', ''),
        )


@dataclass
class SourceGroup:
    name: str
    email: str = ''
    description: str = ''
    id: str = ''

    @classmethod
    def from_api(cls, data: Dict) -> 'SourceGroup':
        return cls(
            name=data.get('name', ''),
            email=data.get('email', ''),
            description=data.get('description', ''),
            id=data.get('id', ''),
        )


@dataclass
class SourceMember:
    email: str
    type: str = 'USER'

    @classmethod
    def from_api(cls, data: Dict) -> 'SourceMember':
        return cls(email=data.get('email', ''), type=data.get('type', 'USER'))
