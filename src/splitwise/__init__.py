"""
Splitwise API access.

    from src.splitwise import SplitwiseClient

    with SplitwiseClient(api_key) as client:
        categories = client.get_categories()
"""

from .client import SplitwiseClient, DEFAULT_BASE_URL
from .errors import (
    SplitwiseError,
    SplitwiseAPIError,
    Unauthorized,
    NotFound,
    RateLimited,
    NetworkFailure,
    MalformedResponse,
)

__all__ = [
    "SplitwiseClient",
    "DEFAULT_BASE_URL",
    "SplitwiseError",
    "SplitwiseAPIError",
    "Unauthorized",
    "NotFound",
    "RateLimited",
    "NetworkFailure",
    "MalformedResponse",
]
