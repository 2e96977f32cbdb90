"""Shared utilities: logging and timeouts."""
