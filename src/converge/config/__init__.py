"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .execution import BackoffPolicy, ExecutionConfig, get_execution_config
from .http_resilience import ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .provider import ProviderConfig, get_provider_config
from .storage import (
    DatabaseConfig,
    StateConfig,
    StorageConfig,
    get_database_config,
    get_state_config,
    get_storage_config,
)

__all__ = [
    "BackoffPolicy",
    "ConfigurationError",
    "DatabaseConfig",
    "ExecutionConfig",
    "MissingConfigurationError",
    "ProviderConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StateConfig",
    "StorageConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "get_database_config",
    "get_execution_config",
    "get_provider_config",
    "get_state_config",
    "get_storage_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
