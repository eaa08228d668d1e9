"""Paginated drive item and permission listing on top of a Graph session."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlencode

from permission_migrator.graph.models import (
    DISCOVERABLE_LINK_SCOPES,
    FIELD_CREATED_BY,
    FIELD_DELETED,
    FIELD_DISPLAY_NAME,
    FIELD_EMAIL,
    FIELD_EXPIRATION,
    FIELD_FILE,
    FIELD_FOLDER,
    FIELD_GRANTED_TO,
    FIELD_GRANTED_TO_V2,
    FIELD_ID,
    FIELD_INHERITED_FROM,
    FIELD_INVITATION,
    FIELD_LINK,
    FIELD_MIME_TYPE,
    FIELD_NAME,
    FIELD_OWNER,
    FIELD_REMOTE_ITEM,
    FIELD_ROLES,
    FIELD_SCOPE,
    FIELD_SHARED,
    FIELD_WEB_URL,
    IDENTITY_KINDS,
    ODATA_NEXT_LINK,
    ODATA_VALUE,
    PERMISSION_KIND_DIRECT,
    PERMISSION_KIND_LINK,
    Owner,
    Page,
    Permission,
    ResourceQuery,
    ResourceRecord,
)
from permission_migrator.graph.session import Session

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200
RESOURCE_SELECT = "id,name,folder,file,remoteItem,shared,createdBy"


class ResourceClient:
    """Issues one Graph page request per call; callers follow the cursor."""

    def __init__(self, session: Session, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._session = session
        self._page_size = page_size

    @property
    def account_id(self) -> str:
        return self._session.account_id

    def list_resources(
        self, query: ResourceQuery, cursor: str | None = None
    ) -> Page[ResourceRecord]:
        """Fetch one page of drive items matching a query.

        Args:
            query: Name search or parent-folder listing.
            cursor: ``@odata.nextLink`` from the previous page, if any.

        Returns:
            Page of parsed ResourceRecord objects and the next cursor.

        Raises:
            GraphApiError: If the API returns a non-2xx status code.
            GraphAuthError: If the session token cannot be refreshed.
        """
        path = cursor or self._resource_path(query)
        response = self._session.get(path)
        items = [_parse_resource(raw) for raw in response.get(ODATA_VALUE, [])]
        logger.debug(
            "[list_resources] fetched page; account:%s;item_count:%d;has_more:%s",
            self.account_id,
            len(items),
            ODATA_NEXT_LINK in response,
        )
        return Page(items=items, cursor=response.get(ODATA_NEXT_LINK) or None)

    def list_permissions(
        self, resource_id: str, cursor: str | None = None
    ) -> Page[Permission]:
        """Fetch one page of permissions for a drive item."""
        path = cursor or f"/me/drive/items/{quote(resource_id, safe='')}/permissions"
        response = self._session.get(path)
        items = [_parse_permission(raw) for raw in response.get(ODATA_VALUE, [])]
        return Page(items=items, cursor=response.get(ODATA_NEXT_LINK) or None)

    def _resource_path(self, query: ResourceQuery) -> str:
        params = urlencode({"$select": RESOURCE_SELECT, "$top": self._page_size}, safe="$,")
        if query.name is not None:
            # OData string literals escape a single quote by doubling it.
            literal = quote(query.name.replace("'", "''"), safe="")
            return f"/me/drive/root/search(q='{literal}')?{params}"
        return f"/me/drive/items/{quote(str(query.parent_id), safe='')}/children?{params}"


# ----------------------------------------------------------------------
# Response parsing
# ----------------------------------------------------------------------


def _first_identity(identity_set: dict[str, Any] | None) -> tuple[str, dict[str, Any]]:
    """Return (kind, identity) for the first populated key of an identity set."""
    if not identity_set:
        return "", {}
    for kind in IDENTITY_KINDS:
        identity = identity_set.get(kind)
        if identity:
            return kind, identity
    return "", {}


def _parse_owner(identity_set: dict[str, Any] | None) -> Owner | None:
    kind, identity = _first_identity(identity_set)
    if not kind:
        return None
    known = {FIELD_DISPLAY_NAME, FIELD_EMAIL, FIELD_ID}
    return Owner(
        display_name=identity.get(FIELD_DISPLAY_NAME, ""),
        email=identity.get(FIELD_EMAIL, ""),
        id=identity.get(FIELD_ID, ""),
        kind=kind,
        attributes={k: v for k, v in identity.items() if k not in known},
    )


def _parse_resource(raw: dict[str, Any]) -> ResourceRecord:
    """Map a raw Graph driveItem dict to a ResourceRecord."""
    owner = _parse_owner(raw.get(FIELD_SHARED, {}).get(FIELD_OWNER))
    if owner is None:
        owner = _parse_owner(raw.get(FIELD_CREATED_BY))
    return ResourceRecord(
        id=raw.get(FIELD_ID, ""),
        name=raw.get(FIELD_NAME, ""),
        is_folder=FIELD_FOLDER in raw,
        mime_type=raw.get(FIELD_FILE, {}).get(FIELD_MIME_TYPE, ""),
        owned_by_me=FIELD_REMOTE_ITEM not in raw,
        owners=(owner,) if owner else (),
    )


def _domain_of(address: str) -> str:
    return address.rpartition("@")[2] if "@" in address else ""


def _parse_permission(raw: dict[str, Any]) -> Permission:
    """Map a raw Graph permission dict to a Permission."""
    link = raw.get(FIELD_LINK)
    grantee = raw.get(FIELD_GRANTED_TO_V2) or raw.get(FIELD_GRANTED_TO)
    kind, identity = _first_identity(grantee)
    address = identity.get(FIELD_EMAIL, "") or raw.get(FIELD_INVITATION, {}).get(FIELD_EMAIL, "")

    if link:
        scope = link.get(FIELD_SCOPE, "")
        grantee_type = scope or kind
        discoverable: bool | None = scope in DISCOVERABLE_LINK_SCOPES
        permission_kind = PERMISSION_KIND_LINK
    else:
        grantee_type = kind or ("user" if address else "")
        discoverable = None
        permission_kind = PERMISSION_KIND_DIRECT

    return Permission(
        kind=permission_kind,
        id=raw.get(FIELD_ID, ""),
        grantee_type=grantee_type,
        grantee_address=address,
        grantee_domain=_domain_of(address),
        roles=tuple(raw.get(FIELD_ROLES, [])),
        discoverable=discoverable,
        display_name=identity.get(FIELD_DISPLAY_NAME, ""),
        web_url=(link or {}).get(FIELD_WEB_URL, ""),
        expiration=raw.get(FIELD_EXPIRATION, ""),
        deleted=FIELD_DELETED in raw,
        inherited_from_id=(raw.get(FIELD_INHERITED_FROM) or {}).get(FIELD_ID, ""),
    )
