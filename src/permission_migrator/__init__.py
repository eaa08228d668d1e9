"""Discover and report OneDrive folder permissions across two accounts."""

__version__ = "0.1.0"
