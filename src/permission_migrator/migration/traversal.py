"""Single-level traversal of a source folder and its files' permissions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from permission_migrator.graph.client import ResourceClient
from permission_migrator.graph.models import Folder, Permission, ResourceQuery, ResourceRecord
from permission_migrator.graph.session import GraphApiError, GraphAuthError

logger = logging.getLogger(__name__)

_FETCH_ERRORS = (GraphApiError, GraphAuthError, OSError)


class ListingError(Exception):
    """Raised when a page of folder contents cannot be fetched."""


class PermissionListingError(Exception):
    """A page of permissions for one resource could not be fetched."""

    def __init__(self, resource_id: str, pages_read: int, cause: Exception) -> None:
        super().__init__(
            f"unable to list permissions for {resource_id} after {pages_read} page(s): {cause}"
        )
        self.resource_id = resource_id
        self.pages_read = pages_read
        self.cause = cause


@dataclass
class MigrationRecord:
    """Ownership and permissions discovered for one file."""

    resource: ResourceRecord
    permissions: list[Permission] = field(default_factory=list)
    permission_error: PermissionListingError | None = None

    @property
    def complete(self) -> bool:
        return self.permission_error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.resource.to_dict(),
            "permissions": [p.to_dict() for p in self.permissions],
            "complete": self.complete,
            "error": str(self.permission_error) if self.permission_error else None,
        }


@dataclass
class MigrationReport:
    """Outcome of one traversal of a source folder."""

    source: Folder
    destination: Folder
    records: list[MigrationRecord] = field(default_factory=list)
    skipped_folders: list[ResourceRecord] = field(default_factory=list)

    @property
    def incomplete(self) -> list[MigrationRecord]:
        return [r for r in self.records if not r.complete]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": {
                "account": self.source.account_id,
                "folder": self.source.name,
                "id": self.source.id,
            },
            "destination": {
                "account": self.destination.account_id,
                "folder": self.destination.name,
                "id": self.destination.id,
            },
            "files": [r.to_dict() for r in self.records],
            "skipped_folders": [{"id": f.id, "name": f.name} for f in self.skipped_folders],
        }


def log_record(record: MigrationRecord) -> None:
    """Default reporter: log ownership and each permission of a file."""
    resource = record.resource
    logger.info("File: %s, OwnedByMe: %s", resource.name, resource.owned_by_me)
    for owner in resource.owners:
        logger.info("Owner: %s <%s>", owner.display_name, owner.email)
    for permission in record.permissions:
        logger.info(
            "Permission: kind:%s;id:%s;type:%s;address:%s;roles:%s",
            permission.kind,
            permission.id,
            permission.grantee_type,
            permission.grantee_address,
            ",".join(permission.roles),
        )
    if record.permission_error is not None:
        logger.warning("Permissions incomplete for %s: %s", resource.name, record.permission_error)


class TraversalEngine:
    """Enumerates the files of a folder and drains each file's permissions."""

    def __init__(self, reporter: Callable[[MigrationRecord], None] | None = log_record) -> None:
        self._reporter = reporter

    def iter_records(
        self, source: Folder, skipped: list[ResourceRecord] | None = None
    ) -> Iterator[MigrationRecord]:
        """Yield one record per file directly inside ``source``.

        Sub-folders are logged, appended to ``skipped`` when given, and not
        recursed into.

        Raises:
            ListingError: If a page of the folder listing cannot be fetched.
        """
        client = source.client
        query = ResourceQuery.children_of(source.id)
        cursor: str | None = None
        while True:
            try:
                page = client.list_resources(query, cursor)
            except _FETCH_ERRORS as exc:
                logger.error(
                    "[iter_records] unable to list folder; folder_id:%s;error:%s", source.id, exc
                )
                raise ListingError(f"unable to list contents of folder {source.id}: {exc}") from exc

            for item in page.items:
                if item.is_folder:
                    logger.info(
                        "[iter_records] skipping sub-folder; name:%s;id:%s", item.name, item.id
                    )
                    if skipped is not None:
                        skipped.append(item)
                    continue
                yield self._collect(client, item)

            if not page.cursor:
                break
            cursor = page.cursor

    def _collect(self, client: ResourceClient, resource: ResourceRecord) -> MigrationRecord:
        """Drain every permission page for one resource, stopping at the first error."""
        record = MigrationRecord(resource=resource)
        cursor: str | None = None
        pages_read = 0
        while True:
            try:
                page = client.list_permissions(resource.id, cursor)
            except _FETCH_ERRORS as exc:
                record.permission_error = PermissionListingError(resource.id, pages_read, exc)
                logger.error(
                    "[_collect] unable to retrieve permissions; %s", record.permission_error
                )
                break
            pages_read += 1
            record.permissions.extend(page.items)
            if not page.cursor:
                break
            cursor = page.cursor
        return record

    def migrate(self, source: Folder, destination: Folder) -> MigrationReport:
        """Traverse ``source`` and report what would be carried to ``destination``.

        Nothing is written to the destination account.

        Raises:
            ListingError: If the source folder listing fails.
        """
        logger.info(
            "[migrate] starting; source:%s/%s;destination:%s/%s",
            source.account_id,
            source.name,
            destination.account_id,
            destination.name,
        )
        report = MigrationReport(source=source, destination=destination)
        for record in self.iter_records(source, report.skipped_folders):
            if self._reporter is not None:
                self._reporter(record)
            report.records.append(record)
        logger.info(
            "[migrate] folder migrated; file_count:%d;skipped_folders:%d;incomplete:%d",
            len(report.records),
            len(report.skipped_folders),
            len(report.incomplete),
        )
        return report
