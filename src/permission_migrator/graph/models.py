"""Data models for Microsoft Graph drive items, owners and permissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from permission_migrator.graph.client import ResourceClient

# Graph API JSON field names
FIELD_ID = "id"
FIELD_NAME = "name"
FIELD_FOLDER = "folder"
FIELD_FILE = "file"
FIELD_MIME_TYPE = "mimeType"
FIELD_DELETED = "deleted"
FIELD_REMOTE_ITEM = "remoteItem"
FIELD_SHARED = "shared"
FIELD_OWNER = "owner"
FIELD_CREATED_BY = "createdBy"
FIELD_DISPLAY_NAME = "displayName"
FIELD_EMAIL = "email"
FIELD_ROLES = "roles"
FIELD_LINK = "link"
FIELD_SCOPE = "scope"
FIELD_WEB_URL = "webUrl"
FIELD_GRANTED_TO_V2 = "grantedToV2"
FIELD_GRANTED_TO = "grantedTo"
FIELD_INVITATION = "invitation"
FIELD_INHERITED_FROM = "inheritedFrom"
FIELD_EXPIRATION = "expirationDateTime"

# Identity-set keys in the order they are preferred
IDENTITY_KINDS = ("user", "group", "siteUser", "siteGroup", "application", "device")

# OData response keys
ODATA_NEXT_LINK = "@odata.nextLink"
ODATA_VALUE = "value"

PERMISSION_KIND_LINK = "link"
PERMISSION_KIND_DIRECT = "direct"

# Link scopes that let anyone in scope find the item through the link
DISCOVERABLE_LINK_SCOPES = frozenset({"anonymous", "organization"})

T = TypeVar("T")


@dataclass(frozen=True)
class Owner:
    """An identity owning a drive item."""

    display_name: str
    email: str
    id: str = ""
    kind: str = "user"
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "display_name": self.display_name,
            "email": self.email,
            "id": self.id,
            "kind": self.kind,
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class Permission:
    """A sharing grant attached to a drive item."""

    kind: str
    id: str
    grantee_type: str
    grantee_address: str = ""
    grantee_domain: str = ""
    roles: tuple[str, ...] = ()
    discoverable: bool | None = None
    display_name: str = ""
    web_url: str = ""
    expiration: str = ""
    deleted: bool = False
    inherited_from_id: str = ""

    @property
    def role(self) -> str:
        return self.roles[0] if self.roles else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "grantee_type": self.grantee_type,
            "grantee_address": self.grantee_address,
            "grantee_domain": self.grantee_domain,
            "roles": list(self.roles),
            "discoverable": self.discoverable,
            "display_name": self.display_name,
            "web_url": self.web_url,
            "expiration": self.expiration,
            "deleted": self.deleted,
            "inherited_from_id": self.inherited_from_id,
        }


@dataclass(frozen=True)
class ResourceRecord:
    """A single file or folder returned by a listing call."""

    id: str
    name: str
    is_folder: bool
    mime_type: str = ""
    owned_by_me: bool = True
    owners: tuple[Owner, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_folder": self.is_folder,
            "mime_type": self.mime_type,
            "owned_by_me": self.owned_by_me,
            "owners": [o.to_dict() for o in self.owners],
        }


@dataclass(frozen=True)
class Folder:
    """A resolved folder, bound to the client of the account that owns it."""

    client: ResourceClient = field(repr=False, compare=False)
    id: str
    account_id: str
    name: str = ""


@dataclass(frozen=True)
class ResourceQuery:
    """Either a name search or a listing of one folder's children."""

    name: str | None = None
    parent_id: str | None = None

    def __post_init__(self) -> None:
        if (self.name is None) == (self.parent_id is None):
            raise ValueError("ResourceQuery needs exactly one of name or parent_id")

    @classmethod
    def by_name(cls, name: str) -> ResourceQuery:
        return cls(name=name)

    @classmethod
    def children_of(cls, parent_id: str) -> ResourceQuery:
        return cls(parent_id=parent_id)


@dataclass
class Page(Generic[T]):
    """One page of a paginated collection.

    An empty or absent cursor is the only end-of-collection signal.
    """

    items: list[T] = field(default_factory=list)
    cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return bool(self.cursor)
