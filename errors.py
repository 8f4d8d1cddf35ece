"""Exceptions raised by the clients and the configuration loader."""

from typing import Optional


class ApiError(Exception):
    """A Jira or OpenProject request failed (network, auth or HTTP status)."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ConfigError(Exception):
    """Required configuration is missing or invalid; raised before any mutation."""
