"""Folder resolution and permission traversal."""
