"""Public interface for the REST provider adapter."""

from __future__ import annotations

from .client import HttpProviderClient, error_for_response, parse_retry_after
from .schema import ErrorResponse, ResourceRequest, ResourceResponse

__all__ = [
    "ErrorResponse",
    "HttpProviderClient",
    "ResourceRequest",
    "ResourceResponse",
    "error_for_response",
    "parse_retry_after",
]
