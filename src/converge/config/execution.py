"""Apply execution settings: worker pool size, timeouts and action backoff."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import env_float, env_int

DEFAULT_PARALLELISM = 10
DEFAULT_ACTION_TIMEOUT_SECONDS = 300.0
DEFAULT_RETRY_TOTAL = 4
DEFAULT_BACKOFF_FACTOR = 0.5
DEFAULT_MAX_BACKOFF_WAIT = 60.0


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Retry budget for transient provider errors.

    ``total`` counts retries after the first attempt, so a step makes at most
    ``total + 1`` provider calls.
    """

    total: int = DEFAULT_RETRY_TOTAL
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    max_backoff_wait: float = DEFAULT_MAX_BACKOFF_WAIT
    backoff_jitter: float = 1.0
    respect_retry_after: bool = True

    @property
    def max_attempts(self) -> int:
        return self.total + 1


@dataclass(slots=True, frozen=True)
class ExecutionConfig:
    parallelism: int = DEFAULT_PARALLELISM
    default_timeout_seconds: float = DEFAULT_ACTION_TIMEOUT_SECONDS
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)


def get_execution_config() -> ExecutionConfig:
    backoff = BackoffPolicy(
        total=env_int("CONVERGE_RETRY_TOTAL", DEFAULT_RETRY_TOTAL, minimum=0),
        backoff_factor=env_float(
            "CONVERGE_RETRY_BACKOFF_FACTOR", DEFAULT_BACKOFF_FACTOR, minimum=0.0
        ),
        max_backoff_wait=env_float(
            "CONVERGE_RETRY_MAX_WAIT", DEFAULT_MAX_BACKOFF_WAIT, minimum=0.0
        ),
    )
    return ExecutionConfig(
        parallelism=env_int("CONVERGE_PARALLELISM", DEFAULT_PARALLELISM, minimum=1),
        default_timeout_seconds=env_float(
            "CONVERGE_DEFAULT_TIMEOUT", DEFAULT_ACTION_TIMEOUT_SECONDS, minimum=0.0
        ),
        backoff=backoff,
    )
