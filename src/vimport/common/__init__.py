"""Shared helpers: HTTP transport and logging utilities."""
