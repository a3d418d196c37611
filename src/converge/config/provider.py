"""Provider endpoint configuration values."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .errors import ConfigurationError
from .http_resilience import ResilienceConfig, RetryPolicy

PROVIDER_TIMEOUT_SECONDS = 60.0

_BINDING_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Endpoint and credentials for one provider binding."""

    binding: str
    resilience: ResilienceConfig


def _env_prefix(binding: str) -> str:
    return f"CONVERGE_PROVIDER_{binding.upper().replace('-', '_')}"


def get_provider_config(binding: str) -> ProviderConfig:
    if not _BINDING_PATTERN.match(binding):
        raise ConfigurationError(f"Invalid provider binding name: {binding!r}")

    prefix = _env_prefix(binding)
    values = require_env_vars((f"{prefix}_URL",))
    token = optional_env_var(f"{prefix}_TOKEN")

    headers = {"Accept": "application/json"}
    if token is not None:
        headers["Authorization"] = f"Bearer {token}"

    return ProviderConfig(
        binding=binding,
        resilience=ResilienceConfig(
            name=f"provider:{binding}",
            base_url=values[f"{prefix}_URL"],
            timeout_seconds=PROVIDER_TIMEOUT_SECONDS,
            retry=RetryPolicy(),
            default_headers=headers,
        ),
    )
