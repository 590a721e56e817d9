"""Shared helpers used across commitkeep packages."""
