"""Local file-per-account persistence for OAuth tokens."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from permission_migrator.auth.models import Token

if TYPE_CHECKING:
    from permission_migrator.config import AppConfig

logger = logging.getLogger(__name__)

TOKEN_FILE_SUFFIX = ".json"
TOKEN_FILE_MODE = 0o600


class StoreError(Exception):
    """Raised when a token file cannot be read, written or deleted."""


class TokenNotFoundError(StoreError):
    """Raised when no token file exists for an account."""


class TokenParseError(StoreError):
    """Raised when a token file exists but does not hold a valid token."""


class CredentialStore:
    """Reads and writes one serialized token per account identifier.

    Each account maps to ``<directory>/<account_id>.json``, readable and
    writable by the owner only.
    """

    def __init__(self, directory: str | Path = ".") -> None:
        self._directory = Path(directory)

    def path_for(self, account_id: str) -> Path:
        """Return the token file path for an account.

        Raises:
            ValueError: If the account id is empty or contains a path separator.
        """
        if not account_id:
            raise ValueError("account id must not be empty")
        if "/" in account_id or os.sep in account_id:
            raise ValueError(f"account id must not contain a path separator: {account_id!r}")
        return self._directory / f"{account_id}{TOKEN_FILE_SUFFIX}"

    def save(self, account_id: str, token: Token) -> None:
        """Atomically write the token for an account.

        Raises:
            StoreError: If the file cannot be written.
        """
        path = self.path_for(account_id)
        payload = json.dumps(token.to_dict())
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".token-", suffix=".tmp")
            try:
                os.chmod(tmp_name, TOKEN_FILE_MODE)
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StoreError(f"unable to save token for {account_id}: {exc}") from exc
        logger.info("[save] token saved; account:%s;path:%s", account_id, path)

    def load(self, account_id: str) -> Token:
        """Read the token for an account.

        Raises:
            TokenNotFoundError: If no token file exists.
            TokenParseError: If the file content is not a serialized token.
            StoreError: If the file exists but cannot be read.
        """
        path = self.path_for(account_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise TokenNotFoundError(f"no token stored for {account_id}") from exc
        except OSError as exc:
            raise StoreError(f"unable to read token for {account_id}: {exc}") from exc

        try:
            data = json.loads(content)
            if not isinstance(data, dict):
                raise ValueError("token file does not contain a JSON object")
            return Token.from_dict(data)
        except ValueError as exc:
            raise TokenParseError(f"unable to parse token for {account_id}: {exc}") from exc

    def remove(self, account_id: str) -> None:
        """Delete the token for an account.

        Raises:
            TokenNotFoundError: If no token file exists.
            StoreError: If the file cannot be deleted.
        """
        path = self.path_for(account_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise TokenNotFoundError(f"no token stored for {account_id}") from exc
        except OSError as exc:
            raise StoreError(f"unable to delete token for {account_id}: {exc}") from exc
        logger.info("[remove] token removed; account:%s", account_id)


def credential_store_from_config(config: AppConfig) -> CredentialStore:
    return CredentialStore(directory=config.token_dir)
