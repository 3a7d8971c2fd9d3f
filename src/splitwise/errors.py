"""
Error taxonomy for calls to the Splitwise API.

Every failure surfaced by SplitwiseClient is a SplitwiseError subclass. The
error_type attribute is the classification reported to MCP clients.
"""

from typing import Any, Optional


class SplitwiseError(Exception):
    """Base class for all Splitwise client failures."""

    error_type = "SplitwiseAPIError"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        """Structured form used as JSON-RPC error data."""
        data = {"error_type": self.error_type}
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.details is not None:
            data["details"] = self.details
        return data


class SplitwiseAPIError(SplitwiseError):
    """The service rejected the request (non-2xx status or an errors payload)."""


class Unauthorized(SplitwiseError):
    """The API key was missing, invalid or lacks access."""

    error_type = "Unauthorized"


class NotFound(SplitwiseError):
    """The requested entity does not exist."""

    error_type = "NotFound"


class RateLimited(SplitwiseError):
    """Splitwise throttled the request."""

    error_type = "RateLimited"

    def __init__(self, message: str, retry_after: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class NetworkFailure(SplitwiseError):
    """The request never produced an HTTP response."""

    error_type = "NetworkFailure"


class MalformedResponse(SplitwiseError):
    """The service answered 2xx with a body of an unexpected shape."""

    error_type = "MalformedResponse"
