"""Per-account OAuth2 authentication with msal and bounded self-healing."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import parse_qs, urlparse

import msal

from permission_migrator.auth.models import Token
from permission_migrator.auth.store import (
    CredentialStore,
    StoreError,
    TokenNotFoundError,
    credential_store_from_config,
)
from permission_migrator.graph.session import GraphApiError, GraphAuthError, Session

if TYPE_CHECKING:
    from permission_migrator.config import AppConfig

logger = logging.getLogger(__name__)

AUTHORITY_BASE_URL = "https://login.microsoftonline.com"

# Tokens discarded before giving up: one initial attempt plus one self-healing retry.
MAX_AUTH_ATTEMPTS = 2


class CredentialError(Exception):
    """Raised when a stored token is corrupt or no longer valid."""


class AuthExchangeError(Exception):
    """Raised when the authorization code cannot be exchanged for a token."""


class AuthenticationError(Exception):
    """Raised when no working session can be established for an account."""


class CodePrompt(Protocol):
    """Presents the consent URL and returns what the operator typed back."""

    def __call__(self, account_id: str, auth_url: str) -> str: ...


class ConsolePrompt:
    """Blocking console prompt reading a single line from stdin."""

    def __init__(self, input_func: Callable[[str], str] = input) -> None:
        self._input = input_func

    def __call__(self, account_id: str, auth_url: str) -> str:
        logger.info(
            "Sign in as %s in your browser, then paste the code (or the full redirect URL)",
            account_id,
        )
        logger.info("Authentication URL: %s", auth_url)
        try:
            return self._input("Enter code: ")
        except EOFError:
            return ""


def extract_authorization_code(answer: str) -> tuple[str, str | None]:
    """Pull the authorization code (and state, if any) out of operator input.

    Accepts either the bare code or the whole redirect URL the browser landed on.

    Returns:
        Tuple of (code, state); state is None for a bare code.
    """
    answer = answer.strip()
    if "code=" not in answer:
        return answer, None
    parsed = urlparse(answer)
    params = parse_qs(parsed.query) or parse_qs(parsed.fragment)
    if not params:
        params = parse_qs(answer.split("?", 1)[-1])
    code = params.get("code", [""])[0]
    state = params.get("state", [None])[0]
    return code, state


class Authenticator:
    """Produces a probed, auto-refreshing Graph session for an account id."""

    def __init__(
        self,
        config: AppConfig,
        store: CredentialStore,
        prompt: CodePrompt | None = None,
    ) -> None:
        """Initialise the authenticator.

        Args:
            config: Application configuration (client credentials, scopes, tenant).
            store: Credential store holding one token per account.
            prompt: Interactive step returning the operator's authorization code.
        """
        self._config = config
        self._store = store
        self._prompt: CodePrompt = prompt or ConsolePrompt()
        self._app: msal.ConfidentialClientApplication | None = None

    @property
    def _scopes(self) -> list[str]:
        return list(self._config.scopes)

    def _oauth_app(self, verify: bool = True) -> msal.ConfidentialClientApplication:
        """Return an msal client; a relaxed-TLS client is never cached."""
        if verify and self._app is not None:
            return self._app
        app = msal.ConfidentialClientApplication(
            client_id=self._config.client_id,
            client_credential=self._config.client_secret,
            authority=f"{AUTHORITY_BASE_URL}/{self._config.tenant}",
            verify=verify,
            timeout=self._config.http_timeout,
        )
        if verify:
            self._app = app
        return app

    def authenticate(self, account_id: str) -> Session:
        """Return a session that has passed an authenticated probe call.

        Loads the stored token (purging it if invalid), runs the consent flow
        when no token is available, then probes the session. A failed probe
        purges the stored token and starts over with a fresh consent. At most
        MAX_AUTH_ATTEMPTS purges happen in total, whichever step caused them.

        Raises:
            AuthExchangeError: If the consent exchange fails.
            AuthenticationError: If the purge budget is used up, or a stored
                token could not be deleted.
        """
        purges = 0
        for attempt in range(1, MAX_AUTH_ATTEMPTS + 1):
            token: Token | None = None
            # Later passes follow a purge, so the store holds nothing worth probing.
            if attempt == 1:
                try:
                    token = self._load_token(account_id)
                except CredentialError as exc:
                    logger.warning(
                        "[authenticate] discarding stored token; account:%s;reason:%s",
                        account_id,
                        exc,
                    )
                    self._purge(account_id)
                    purges += 1

            if token is None:
                token = self._consent(account_id)
                self._save_best_effort(account_id, token)

            session = self._build_session(account_id, token)
            try:
                session.probe()
            except (GraphApiError, GraphAuthError, OSError) as exc:
                logger.warning(
                    "[authenticate] unable to validate token, removing it;"
                    " account:%s;attempt:%d;error:%s",
                    account_id,
                    attempt,
                    exc,
                )
                self._purge(account_id)
                purges += 1
                if purges >= MAX_AUTH_ATTEMPTS:
                    break
                continue

            logger.info("[authenticate] authentication successful; account:%s", account_id)
            return session

        raise AuthenticationError(
            f"unable to authenticate {account_id}: {purges} tokens failed validation"
        )

    def _load_token(self, account_id: str) -> Token | None:
        """Return the stored token, or None if there is none.

        Raises:
            CredentialError: If the stored token is unreadable or invalid.
        """
        try:
            token = self._store.load(account_id)
        except TokenNotFoundError:
            logger.info("[_load_token] no stored token; account:%s", account_id)
            return None
        except StoreError as exc:
            raise CredentialError(str(exc)) from exc
        if not token.is_valid():
            raise CredentialError(f"token for {account_id} is expired")
        return token

    def _purge(self, account_id: str) -> None:
        try:
            self._store.remove(account_id)
        except TokenNotFoundError:
            logger.info("[_purge] no stored token to remove; account:%s", account_id)
        except StoreError as exc:
            logger.error(
                "[_purge] unable to delete auth token, exiting; account:%s;error:%s",
                account_id,
                exc,
            )
            raise AuthenticationError(f"unable to delete auth token for {account_id}") from exc

    def _save_best_effort(self, account_id: str, token: Token) -> None:
        try:
            self._store.save(account_id, token)
        except StoreError as exc:
            logger.error(
                "[_save_best_effort] unable to save token, continuing; account:%s;error:%s",
                account_id,
                exc,
            )

    def _consent(self, account_id: str) -> Token:
        """Run the out-of-band authorization code flow for one account.

        Raises:
            AuthExchangeError: If any step of the exchange fails.
        """
        state = secrets.token_urlsafe(16)
        try:
            app = self._oauth_app(verify=self._config.exchange_tls_verify)
            auth_url = app.get_authorization_request_url(
                self._scopes,
                redirect_uri=self._config.redirect_uri,
                state=state,
                prompt="select_account",
                login_hint=account_id,
            )
        except (ValueError, OSError) as exc:
            raise AuthExchangeError(f"unable to start consent for {account_id}: {exc}") from exc

        code, returned_state = extract_authorization_code(self._prompt(account_id, auth_url))
        if not code:
            raise AuthExchangeError(f"no authorization code entered for {account_id}")
        if returned_state is not None and returned_state != state:
            raise AuthExchangeError(f"authorization state mismatch for {account_id}")

        try:
            result: dict[str, Any] = (
                app.acquire_token_by_authorization_code(
                    code, scopes=self._scopes, redirect_uri=self._config.redirect_uri
                )
                or {}
            )
        except (ValueError, OSError) as exc:
            raise AuthExchangeError(f"token exchange failed for {account_id}: {exc}") from exc

        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            description = result.get("error_description", "No description provided")
            logger.error("[_consent] token exchange failed; account:%s;error:%s", account_id, error)
            raise AuthExchangeError(f"Token exchange failed: {error}: {description}")
        return Token.from_msal_result(result)

    def _refresh(self, refresh_token: str) -> Token:
        """Exchange a refresh token for a new access token.

        Raises:
            GraphAuthError: If msal reports an error.
        """
        result: dict[str, Any] = (
            self._oauth_app().acquire_token_by_refresh_token(refresh_token, scopes=self._scopes)
            or {}
        )
        if "access_token" not in result:
            error = result.get("error", "unknown_error")
            logger.error("[_refresh] token refresh failed; error:%s", error)
            raise GraphAuthError(f"Token refresh failed: {error}")
        return Token.from_msal_result(result)

    def _build_session(self, account_id: str, token: Token) -> Session:
        return Session(
            account_id=account_id,
            token=token,
            refresher=self._refresh,
            on_refresh=partial(self._save_best_effort, account_id),
            timeout=self._config.http_timeout,
        )


def authenticator_from_config(config: AppConfig, prompt: CodePrompt | None = None) -> Authenticator:
    """Construct an Authenticator backed by a file credential store.

    Args:
        config: Application configuration instance.
        prompt: Optional replacement for the console code prompt.

    Returns:
        Configured Authenticator instance.
    """
    return Authenticator(config=config, store=credential_store_from_config(config), prompt=prompt)
