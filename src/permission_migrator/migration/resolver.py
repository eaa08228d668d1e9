"""Resolve a human-readable folder name to a drive folder id."""

from __future__ import annotations

import logging

from permission_migrator.graph.client import ResourceClient
from permission_migrator.graph.models import Folder, ResourceQuery
from permission_migrator.graph.session import GraphApiError, GraphAuthError

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Raised when a named folder cannot be found for an account."""


def resolve_folder(client: ResourceClient, name: str, account_id: str) -> Folder:
    """Find the first folder whose name equals ``name`` exactly.

    Pages through the server-side name search and returns as soon as a page
    contains a matching folder; later pages are never fetched. Duplicate names
    are not detected, so listing order decides between them.

    Args:
        client: Resource client bound to the account's session.
        name: Exact folder name to look for.
        account_id: Account the folder belongs to.

    Returns:
        The resolved Folder.

    Raises:
        ResolutionError: If no folder matches or a search page cannot be fetched.
    """
    query = ResourceQuery.by_name(name)
    cursor: str | None = None
    pages = 0
    while True:
        try:
            page = client.list_resources(query, cursor)
        except (GraphApiError, GraphAuthError, OSError) as exc:
            logger.error(
                "[resolve_folder] unable to list folders; account:%s;error:%s", account_id, exc
            )
            raise ResolutionError(f"unable to search for folder {name!r}: {exc}") from exc
        pages += 1

        # The name search is fuzzy, so re-check the type and the exact name.
        for item in page.items:
            if item.is_folder and item.name == name:
                logger.info(
                    "[resolve_folder] folder resolved; account:%s;name:%s;id:%s;pages:%d",
                    account_id,
                    name,
                    item.id,
                    pages,
                )
                return Folder(client=client, id=item.id, account_id=account_id, name=name)

        if not page.cursor:
            break
        cursor = page.cursor

    raise ResolutionError(f"Folder {name} not found for {account_id}")
