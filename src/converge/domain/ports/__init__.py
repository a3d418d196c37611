"""Domain port definitions for adapters."""

from __future__ import annotations

from .provider import ProviderClient, ProviderClients
from .state_backend import StateBackend

__all__ = [
    "ProviderClient",
    "ProviderClients",
    "StateBackend",
]
