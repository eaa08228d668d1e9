"""Migration orchestrator — wires authentication, resolution and traversal."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from permission_migrator.auth.authenticator import (
    Authenticator,
    CodePrompt,
    authenticator_from_config,
)
from permission_migrator.graph.client import DEFAULT_PAGE_SIZE, ResourceClient
from permission_migrator.migration.resolver import resolve_folder
from permission_migrator.migration.traversal import MigrationReport, TraversalEngine

if TYPE_CHECKING:
    from permission_migrator.config import AppConfig

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs one source-to-destination folder migration end to end."""

    def __init__(
        self,
        authenticator: Authenticator,
        engine: TraversalEngine,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            authenticator: Produces one session per account.
            engine: Traversal engine run against the source folder.
            page_size: Items requested per Graph page.
        """
        self._authenticator = authenticator
        self._engine = engine
        self._page_size = page_size

    def _client_for(self, account_id: str) -> ResourceClient:
        session = self._authenticator.authenticate(account_id)
        return ResourceClient(session=session, page_size=self._page_size)

    def run(
        self,
        source_account: str,
        destination_account: str,
        source_folder: str,
        destination_folder: str,
    ) -> MigrationReport:
        """Authenticate both accounts, resolve both folders and traverse the source.

        Steps run strictly one after another:
            1. Authenticate the source account, then the destination account.
            2. Resolve the source folder, then the destination folder.
            3. Traverse the source folder and collect the report.

        Returns:
            MigrationReport for the source folder.

        Raises:
            AuthExchangeError: If a consent exchange fails.
            AuthenticationError: If an account cannot be authenticated.
            ResolutionError: If either folder cannot be found.
            ListingError: If the source folder listing fails.
        """
        logger.info(
            "[run] authenticating accounts; source:%s;destination:%s",
            source_account,
            destination_account,
        )
        source_client = self._client_for(source_account)
        destination_client = self._client_for(destination_account)

        source = resolve_folder(source_client, source_folder, source_account)
        destination = resolve_folder(destination_client, destination_folder, destination_account)
        logger.info(
            "[run] folders resolved; source_id:%s;destination_id:%s", source.id, destination.id
        )

        return self._engine.migrate(source, destination)


def orchestrator_from_config(config: AppConfig, prompt: CodePrompt | None = None) -> Orchestrator:
    """Construct an Orchestrator from application configuration.

    Args:
        config: Application configuration instance.
        prompt: Optional replacement for the console code prompt.

    Returns:
        Configured Orchestrator instance.
    """
    return Orchestrator(
        authenticator=authenticator_from_config(config, prompt=prompt),
        engine=TraversalEngine(),
        page_size=config.page_size,
    )
