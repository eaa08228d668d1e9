"""OAuth2 token model shared by the credential store and the Graph session."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

# Tokens are treated as expired slightly early so an in-flight request does
# not race the real expiry.
EXPIRY_DELTA = timedelta(seconds=10)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Token:
    """An OAuth2 access/refresh token pair with its expiry."""

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None
    token_type: str = "Bearer"
    scope: str = ""

    def is_valid(self, now: datetime | None = None) -> bool:
        """Return True if the access token is present and not about to expire.

        A token without an expiry never expires.
        """
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        return self.expiry - EXPIRY_DELTA > (now or _utcnow())

    def with_fallback_refresh_token(self, refresh_token: str | None) -> Token:
        """Return a copy carrying ``refresh_token`` if this token has none."""
        if self.refresh_token or not refresh_token:
            return self
        return replace(self, refresh_token=refresh_token)

    @classmethod
    def from_msal_result(cls, result: dict[str, Any], now: datetime | None = None) -> Token:
        """Build a Token from an msal token response.

        Args:
            result: Successful msal response containing at least ``access_token``.
            now: Reference time for ``expires_in`` (defaults to current UTC time).

        Returns:
            New Token instance.
        """
        expiry = None
        expires_in = result.get("expires_in")
        if expires_in is not None:
            expiry = (now or _utcnow()) + timedelta(seconds=int(expires_in))
        return cls(
            access_token=str(result["access_token"]),
            refresh_token=result.get("refresh_token"),
            expiry=expiry,
            token_type=result.get("token_type", "Bearer"),
            scope=result.get("scope", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        """Inverse of ``to_dict``.

        Raises:
            ValueError: If the access token is missing or the expiry is malformed.
        """
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("serialized token has no access_token")
        raw_expiry = data.get("expiry")
        expiry = None
        if raw_expiry:
            expiry = datetime.fromisoformat(raw_expiry)
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=UTC)
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expiry=expiry,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope") or "",
        )

    def __repr__(self) -> str:
        return (
            f"Token(token_type={self.token_type!r}, expiry={self.expiry!r}, "
            f"has_refresh_token={self.refresh_token is not None})"
        )
