"""Authenticated, auto-refreshing Microsoft Graph transport for one account."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any
from urllib import request as urllib_request
from urllib.error import HTTPError

from permission_migrator.auth.models import Token

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
PROBE_PATH = "/me"
DEFAULT_TIMEOUT = 30.0

TokenRefresher = Callable[[str], Token]
RefreshHook = Callable[[Token], None]


class GraphAuthError(Exception):
    """Raised when the session has no usable access token."""


class GraphApiError(Exception):
    """Raised when the Graph API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Graph API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class Session:
    """Graph transport bound to one account, refreshing its token on expiry."""

    def __init__(
        self,
        account_id: str,
        token: Token,
        refresher: TokenRefresher | None = None,
        on_refresh: RefreshHook | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialise the session.

        Args:
            account_id: Account identifier the token belongs to.
            token: Token obtained from the store or a consent exchange.
            refresher: Callable exchanging a refresh token for a new Token.
            on_refresh: Called with every refreshed Token (e.g. to persist it).
            timeout: Per-request timeout in seconds.
        """
        self._account_id = account_id
        self._token = token
        self._refresher = refresher
        self._on_refresh = on_refresh
        self._timeout = timeout

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def token(self) -> Token:
        return self._token

    def _access_token(self) -> str:
        """Return a valid access token, refreshing it first if necessary.

        Raises:
            GraphAuthError: If the token is expired and cannot be refreshed.
        """
        if self._token.is_valid():
            return self._token.access_token
        if not self._token.refresh_token or self._refresher is None:
            raise GraphAuthError(f"token for {self._account_id} expired and cannot be refreshed")

        logger.info("[_access_token] refreshing expired token; account:%s", self._account_id)
        refreshed = self._refresher(self._token.refresh_token)
        self._token = refreshed.with_fallback_refresh_token(self._token.refresh_token)
        if self._on_refresh is not None:
            self._on_refresh(self._token)
        return self._token.access_token

    def get(self, path: str) -> dict[str, Any]:
        """Perform an authenticated GET request to the Graph API.

        Args:
            path: URL path relative to GRAPH_BASE_URL (starting with '/'), or an
                absolute URL such as an ``@odata.nextLink`` cursor.

        Returns:
            Parsed JSON response body as a dict.

        Raises:
            GraphAuthError: If no valid access token can be obtained.
            GraphApiError: If the API returns a non-2xx status code or a body that
                is not a JSON object.
            OSError: On network failure or timeout.
        """
        token = self._access_token()
        url = path if path.startswith(("https://", "http://")) else f"{GRAPH_BASE_URL}{path}"
        req = urllib_request.Request(
            url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            method="GET",
        )
        logger.debug("[get] GET; account:%s;url:%s", self._account_id, url)
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as resp:
                body = resp.read()
                status = resp.status
        except HTTPError as exc:
            raw = exc.read()
            try:
                detail = json.loads(raw).get("error", {}).get("message", exc.reason)
            except Exception:
                detail = exc.reason
            raise GraphApiError(exc.code, detail) from exc

        # Gateways and proxies can answer 2xx with an HTML page.
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise GraphApiError(status, "invalid JSON response") from exc
        if not isinstance(data, dict):
            raise GraphApiError(status, "unexpected JSON response")
        return data

    def probe(self) -> dict[str, Any]:
        """Issue one lightweight authenticated call to prove the session works."""
        return self.get(PROBE_PATH)
