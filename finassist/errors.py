"""
Financial Assistant Errors

Exception types raised by the gateway and configuration layers.
"""

from typing import Optional


class FinAssistError(Exception):
    """Base class for all application errors."""


class ConfigError(FinAssistError):
    """Required configuration is missing or invalid."""


class RemoteAPIError(FinAssistError):
    """A call to the remote assistant service failed."""

    def __init__(self, message: str, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.detail = detail
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.detail:
            return f"{message}: {self.detail}"
        return message


class RunTimeoutError(RemoteAPIError):
    """A remote run did not reach a terminal status within the allowed wait."""


class FileIOError(FinAssistError):
    """A local file could not be opened or read."""

    def __init__(self, path, reason: str):
        super().__init__(f"Error reading file {path}: {reason}")
        self.path = path


class NoResponseError(FinAssistError):
    """A completed run produced no assistant text."""

    def __init__(self, message: str = "no response from assistant"):
        super().__init__(message)
