"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

NATIVE_CLIENT_REDIRECT_URI = "https://login.microsoftonline.com/common/oauth2/nativeclient"

# identity, full store access, metadata access, per-file access
DEFAULT_SCOPES = ("User.Read", "Files.ReadWrite.All", "Files.Read.All", "Files.ReadWrite")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    OAuth client credentials default to empty strings: a missing value does not
    stop startup, it makes the authorization code exchange fail instead.
    Everything else has a default that can be overridden via the environment.
    """

    client_id: str = ""
    client_secret: str = ""

    tenant: str = "common"
    token_dir: str = "."
    redirect_uri: str = NATIVE_CLIENT_REDIRECT_URI
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    page_size: int = 200
    http_timeout: float = 30.0
    exchange_tls_verify: bool = True
    log_level: str = "INFO"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Environment variables (all optional):
        GRAPH_CLIENT_ID: Azure AD application (client) ID.
        GRAPH_CLIENT_SECRET: Azure AD application client secret.
        PM_TENANT: Tenant used for the authority URL (default: common).
        PM_TOKEN_DIR: Directory holding the per-account token files (default: .).
        PM_REDIRECT_URI: Out-of-band redirect URI registered for the app.
        PM_PAGE_SIZE: Items requested per Graph page (default: 200).
        PM_HTTP_TIMEOUT: Seconds before a Graph request times out (default: 30).
        PM_EXCHANGE_TLS_VERIFY: Set to "false" to trust self-signed certificates
            during the authorization code exchange only (default: true).
        PM_LOG_LEVEL: Root logging level (default: INFO).

    Returns:
        Configured AppConfig instance.

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    return AppConfig(
        client_id=os.environ.get("GRAPH_CLIENT_ID", ""),
        client_secret=os.environ.get("GRAPH_CLIENT_SECRET", ""),
        tenant=os.environ.get("PM_TENANT", "common"),
        token_dir=os.environ.get("PM_TOKEN_DIR", "."),
        redirect_uri=os.environ.get("PM_REDIRECT_URI", NATIVE_CLIENT_REDIRECT_URI),
        page_size=int(os.environ.get("PM_PAGE_SIZE", "200")),
        http_timeout=float(os.environ.get("PM_HTTP_TIMEOUT", "30")),
        exchange_tls_verify=_env_flag("PM_EXCHANGE_TLS_VERIFY", True),
        log_level=os.environ.get("PM_LOG_LEVEL", "INFO").upper(),
    )
