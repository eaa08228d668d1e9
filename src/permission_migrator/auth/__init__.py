"""OAuth2 token persistence and per-account authentication."""
