"""Unit tests for auth/authenticator.py — consent, persistence and self-healing."""

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from permission_migrator.auth.authenticator import (
    MAX_AUTH_ATTEMPTS,
    AuthenticationError,
    Authenticator,
    AuthExchangeError,
    ConsolePrompt,
    authenticator_from_config,
    extract_authorization_code,
)
from permission_migrator.auth.models import Token
from permission_migrator.auth.store import (
    CredentialStore,
    StoreError,
    TokenNotFoundError,
    TokenParseError,
)
from permission_migrator.config import AppConfig
from permission_migrator.graph.session import GraphApiError, GraphAuthError, Session

ACCOUNT = "alice@example.com"
AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize?client_id=cid"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _valid_token(access_token: str = "stored-at") -> Token:
    return Token(
        access_token=access_token,
        refresh_token="stored-rt",
        expiry=datetime.now(UTC) + timedelta(hours=1),
    )


def _expired_token() -> Token:
    return Token(
        access_token="old-at",
        refresh_token="old-rt",
        expiry=datetime.now(UTC) - timedelta(hours=1),
    )


def _exchange_result(access_token: str = "fresh-at") -> dict[str, Any]:
    return {"access_token": access_token, "refresh_token": "fresh-rt", "expires_in": 3600}


@pytest.fixture
def msal_app() -> Iterator[MagicMock]:
    """Patch msal so every ConfidentialClientApplication is the same mock."""
    with patch(
        "permission_migrator.auth.authenticator.msal.ConfidentialClientApplication"
    ) as mock_cls:
        app = mock_cls.return_value
        app.get_authorization_request_url.return_value = AUTH_URL
        app.acquire_token_by_authorization_code.return_value = _exchange_result()
        yield app


def _http_reply(body: bytes) -> MagicMock:
    reply = MagicMock(status=200)
    reply.read.return_value = body
    reply.__enter__ = lambda s: s
    reply.__exit__ = MagicMock(return_value=False)
    return reply


def _make_authenticator(
    config: AppConfig | None = None,
) -> tuple[Authenticator, MagicMock, MagicMock]:
    """Return (authenticator, mock_store, mock_prompt)."""
    store = MagicMock(spec=CredentialStore)
    prompt = MagicMock(return_value="the-code")
    config = config or AppConfig(client_id="cid", client_secret="csecret")
    return Authenticator(config=config, store=store, prompt=prompt), store, prompt


# ---------------------------------------------------------------------------
# Stored token paths
# ---------------------------------------------------------------------------


class TestStoredToken:
    def test_valid_stored_token_skips_consent(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.return_value = _valid_token()

        with patch.object(Session, "probe") as probe:
            session = auth.authenticate(ACCOUNT)

        assert session.account_id == ACCOUNT
        assert session.token.access_token == "stored-at"
        probe.assert_called_once()
        prompt.assert_not_called()
        store.remove.assert_not_called()
        store.save.assert_not_called()

    def test_expired_stored_token_is_purged_and_replaced(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.return_value = _expired_token()

        with patch.object(Session, "probe"):
            session = auth.authenticate(ACCOUNT)

        store.remove.assert_called_once_with(ACCOUNT)
        prompt.assert_called_once_with(ACCOUNT, AUTH_URL)
        assert session.token.access_token == "fresh-at"

    def test_corrupt_stored_token_is_purged_and_replaced(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = TokenParseError("bad json")

        with patch.object(Session, "probe"):
            session = auth.authenticate(ACCOUNT)

        store.remove.assert_called_once_with(ACCOUNT)
        assert session.token.access_token == "fresh-at"

    def test_failed_purge_of_invalid_token_is_fatal(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.return_value = _expired_token()
        store.remove.side_effect = StoreError("read-only filesystem")

        with pytest.raises(AuthenticationError, match="unable to delete auth token"):
            auth.authenticate(ACCOUNT)

        prompt.assert_not_called()


# ---------------------------------------------------------------------------
# Consent flow
# ---------------------------------------------------------------------------


class TestConsent:
    def test_missing_token_runs_consent_and_persists(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")

        with patch.object(Session, "probe"):
            session = auth.authenticate(ACCOUNT)

        prompt.assert_called_once_with(ACCOUNT, AUTH_URL)
        msal_app.acquire_token_by_authorization_code.assert_called_once_with(
            "the-code",
            scopes=list(AppConfig().scopes),
            redirect_uri=AppConfig().redirect_uri,
        )
        saved_account, saved_token = store.save.call_args[0]
        assert saved_account == ACCOUNT
        assert saved_token.access_token == "fresh-at"
        assert saved_token.refresh_token == "fresh-rt"
        assert session.token == saved_token

    def test_authorization_url_requests_account_and_scopes(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")

        with patch.object(Session, "probe"):
            auth.authenticate(ACCOUNT)

        args, kwargs = msal_app.get_authorization_request_url.call_args
        assert args[0] == list(AppConfig().scopes)
        assert kwargs["login_hint"] == ACCOUNT
        assert kwargs["redirect_uri"] == AppConfig().redirect_uri
        assert kwargs["state"]

    def test_exchange_error_is_fatal(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        msal_app.acquire_token_by_authorization_code.return_value = {
            "error": "invalid_grant",
            "error_description": "Code expired",
        }

        with pytest.raises(AuthExchangeError, match="invalid_grant"):
            auth.authenticate(ACCOUNT)

        store.save.assert_not_called()

    def test_exchange_network_failure_is_fatal(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        msal_app.acquire_token_by_authorization_code.side_effect = ConnectionError("reset")

        with pytest.raises(AuthExchangeError, match="reset"):
            auth.authenticate(ACCOUNT)

    def test_empty_code_is_fatal(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        prompt.return_value = "   \n"

        with pytest.raises(AuthExchangeError, match="no authorization code"):
            auth.authenticate(ACCOUNT)

        msal_app.acquire_token_by_authorization_code.assert_not_called()

    def test_pasted_redirect_url_with_matching_state(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        sent: dict[str, str] = {}

        def _authorize_url(scopes: list[str], **kwargs: Any) -> str:
            sent["state"] = kwargs["state"]
            return AUTH_URL

        msal_app.get_authorization_request_url.side_effect = _authorize_url
        prompt.side_effect = lambda account, url: (
            f"https://login.microsoftonline.com/common/oauth2/nativeclient"
            f"?code=url-code&state={sent['state']}"
        )

        with patch.object(Session, "probe"):
            auth.authenticate(ACCOUNT)

        assert msal_app.acquire_token_by_authorization_code.call_args[0][0] == "url-code"

    def test_pasted_redirect_url_with_wrong_state_is_fatal(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        prompt.return_value = "https://example.invalid/?code=abc&state=forged"

        with pytest.raises(AuthExchangeError, match="state mismatch"):
            auth.authenticate(ACCOUNT)

    def test_save_failure_is_not_fatal(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        store.save.side_effect = StoreError("disk full")

        with patch.object(Session, "probe"):
            session = auth.authenticate(ACCOUNT)

        assert session.token.access_token == "fresh-at"

    def test_tls_override_applies_to_exchange_client_only(self) -> None:
        config = AppConfig(client_id="cid", client_secret="cs", exchange_tls_verify=False)
        auth, store, _ = _make_authenticator(config)
        store.load.side_effect = TokenNotFoundError("none")

        with (
            patch(
                "permission_migrator.auth.authenticator.msal.ConfidentialClientApplication"
            ) as mock_cls,
            patch.object(Session, "probe"),
        ):
            mock_cls.return_value.get_authorization_request_url.return_value = AUTH_URL
            mock_cls.return_value.acquire_token_by_authorization_code.return_value = (
                _exchange_result()
            )
            mock_cls.return_value.acquire_token_by_refresh_token.return_value = _exchange_result()
            auth.authenticate(ACCOUNT)
            auth._refresh("rt")

        verify_flags = [c.kwargs["verify"] for c in mock_cls.call_args_list]
        assert verify_flags == [False, True]
        assert mock_cls.call_args_list[0].kwargs["authority"] == (
            "https://login.microsoftonline.com/common"
        )


# ---------------------------------------------------------------------------
# Probe and self-healing
# ---------------------------------------------------------------------------


class TestSelfHealing:
    def test_probe_failure_on_stored_token_reauthenticates_once(
        self, msal_app: MagicMock
    ) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = [_valid_token(), TokenNotFoundError("purged")]

        with patch.object(
            Session, "probe", side_effect=[GraphApiError(401, "InvalidAuthenticationToken"), {}]
        ):
            session = auth.authenticate(ACCOUNT)

        store.remove.assert_called_once_with(ACCOUNT)
        prompt.assert_called_once()
        assert session.token.access_token == "fresh-at"

    def test_self_heal_is_bounded_to_two_purges(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = [_valid_token(), TokenNotFoundError("purged")]

        with (
            patch.object(Session, "probe", side_effect=GraphApiError(401, "denied")) as probe,
            pytest.raises(AuthenticationError, match="2 tokens failed validation"),
        ):
            auth.authenticate(ACCOUNT)

        assert MAX_AUTH_ATTEMPTS == 2
        assert store.remove.call_count == 2
        assert probe.call_count == 2
        store.load.assert_called_once_with(ACCOUNT)
        prompt.assert_called_once()

    def test_expired_stored_token_then_rejected_consent_token_stops_after_two_purges(
        self, msal_app: MagicMock, tmp_path: Path
    ) -> None:
        store = CredentialStore(tmp_path)
        store.save(ACCOUNT, _expired_token())
        prompt = MagicMock(return_value="the-code")
        auth = Authenticator(
            config=AppConfig(client_id="cid", client_secret="csecret"), store=store, prompt=prompt
        )

        with (
            patch.object(store, "remove", wraps=store.remove) as remove,
            patch.object(Session, "probe", side_effect=GraphApiError(401, "denied")) as probe,
            pytest.raises(AuthenticationError, match="2 tokens failed validation"),
        ):
            auth.authenticate(ACCOUNT)

        assert remove.call_count == 2
        assert probe.call_count == 1
        prompt.assert_called_once()
        assert not store.path_for(ACCOUNT).exists()

    def test_retry_after_rejected_token_does_not_reload_store(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.return_value = _valid_token()

        with patch.object(
            Session, "probe", side_effect=[GraphApiError(401, "denied"), {}]
        ) as probe:
            session = auth.authenticate(ACCOUNT)

        store.load.assert_called_once_with(ACCOUNT)
        prompt.assert_called_once()
        assert probe.call_count == 2
        assert session.token.access_token == "fresh-at"

    def test_non_json_reply_to_validation_call_triggers_self_heal(
        self, msal_app: MagicMock
    ) -> None:
        auth, store, _ = _make_authenticator()
        store.load.return_value = _valid_token()
        answers = iter([_http_reply(b"<html>gateway</html>"), _http_reply(b"{}")])

        with patch(
            "permission_migrator.graph.session.urllib_request.urlopen",
            side_effect=lambda *args, **kwargs: next(answers),
        ):
            session = auth.authenticate(ACCOUNT)

        store.remove.assert_called_once_with(ACCOUNT)
        assert session.token.access_token == "fresh-at"

    def test_network_error_on_probe_triggers_self_heal(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        store.load.side_effect = [_valid_token(), TokenNotFoundError("purged")]

        with patch.object(Session, "probe", side_effect=[TimeoutError("timed out"), {}]):
            auth.authenticate(ACCOUNT)

        store.remove.assert_called_once_with(ACCOUNT)

    def test_refresh_failure_on_probe_triggers_self_heal(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        store.load.side_effect = [_valid_token(), TokenNotFoundError("purged")]

        with patch.object(Session, "probe", side_effect=[GraphAuthError("expired"), {}]):
            auth.authenticate(ACCOUNT)

        store.remove.assert_called_once_with(ACCOUNT)

    def test_purge_of_missing_token_is_tolerated(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.side_effect = TokenNotFoundError("none")
        store.save.side_effect = StoreError("disk full")
        store.remove.side_effect = TokenNotFoundError("never saved")

        with patch.object(Session, "probe", side_effect=[GraphApiError(401, "denied"), {}]):
            auth.authenticate(ACCOUNT)

        assert prompt.call_count == 2

    def test_failed_purge_after_probe_failure_is_fatal(self, msal_app: MagicMock) -> None:
        auth, store, prompt = _make_authenticator()
        store.load.return_value = _valid_token()
        store.remove.side_effect = StoreError("permission denied")

        with (
            patch.object(Session, "probe", side_effect=GraphApiError(401, "denied")),
            pytest.raises(AuthenticationError, match="unable to delete auth token"),
        ):
            auth.authenticate(ACCOUNT)

        prompt.assert_not_called()


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_returns_new_token(self, msal_app: MagicMock) -> None:
        auth, _, _ = _make_authenticator()
        msal_app.acquire_token_by_refresh_token.return_value = _exchange_result("refreshed-at")

        token = auth._refresh("old-rt")

        assert token.access_token == "refreshed-at"
        msal_app.acquire_token_by_refresh_token.assert_called_once_with(
            "old-rt", scopes=list(AppConfig().scopes)
        )

    def test_refresh_error_raises_graph_auth_error(self, msal_app: MagicMock) -> None:
        auth, _, _ = _make_authenticator()
        msal_app.acquire_token_by_refresh_token.return_value = {"error": "invalid_grant"}

        with pytest.raises(GraphAuthError, match="invalid_grant"):
            auth._refresh("old-rt")

    def test_session_refresh_persists_new_token(self, msal_app: MagicMock) -> None:
        auth, store, _ = _make_authenticator()
        msal_app.acquire_token_by_refresh_token.return_value = _exchange_result("refreshed-at")
        session = auth._build_session(ACCOUNT, _expired_token())

        assert session._access_token() == "refreshed-at"
        saved_account, saved_token = store.save.call_args[0]
        assert saved_account == ACCOUNT
        assert saved_token.access_token == "refreshed-at"


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------


class TestExtractAuthorizationCode:
    def test_bare_code(self) -> None:
        assert extract_authorization_code("  M.C507_abc \n") == ("M.C507_abc", None)

    def test_redirect_url(self) -> None:
        answer = "https://login.microsoftonline.com/common/oauth2/nativeclient?code=xyz&state=s1"
        assert extract_authorization_code(answer) == ("xyz", "s1")

    def test_query_string_only(self) -> None:
        assert extract_authorization_code("code=xyz&session_state=abc") == ("xyz", None)


class TestConsolePrompt:
    def test_reads_one_line(self) -> None:
        reader = MagicMock(return_value="typed-code")
        assert ConsolePrompt(input_func=reader)(ACCOUNT, AUTH_URL) == "typed-code"
        reader.assert_called_once_with("Enter code: ")

    def test_eof_returns_empty_string(self) -> None:
        reader = MagicMock(side_effect=EOFError)
        assert ConsolePrompt(input_func=reader)(ACCOUNT, AUTH_URL) == ""


def test_authenticator_from_config_uses_token_dir(tmp_path: Any) -> None:
    auth = authenticator_from_config(AppConfig(token_dir=str(tmp_path)))
    assert auth._store.path_for(ACCOUNT).parent == tmp_path
