"""Per-operation attempt loop for provider calls.

Each step owns its own ``Attempts`` instance, so the count lives with the
worker running the step and nothing is shared between threads.
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from converge.config import BackoffPolicy
from converge.domain.errors import OperationCancelledError, ProviderError, RateLimitedError

if TYPE_CHECKING:
    from collections.abc import Callable

log = getLogger(__name__)


def backoff_delay(
    policy: BackoffPolicy,
    attempt: int,
    *,
    jitter: float = 0.0,
    retry_after: float | None = None,
) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based).

    ``jitter`` is a sample in ``[0, 1)`` scaled by ``policy.backoff_jitter``.
    """

    delay = policy.backoff_factor * (2 ** (attempt - 1)) * (1 + policy.backoff_jitter * jitter)
    if policy.respect_retry_after and retry_after is not None:
        delay = max(delay, retry_after)
    return min(delay, policy.max_backoff_wait)


@dataclass(slots=True)
class Attempts:
    policy: BackoffPolicy = field(default_factory=BackoffPolicy)
    cancellation: threading.Event = field(default_factory=threading.Event)
    rng: Callable[[], float] = random.random
    count: int = 0

    def run[T](self, operation: Callable[[], T], *, describe: str) -> T:
        """Call ``operation`` until it succeeds or fails permanently.

        Transient ``ProviderError`` instances are retried up to
        ``policy.total`` times; anything else propagates at once. Raises
        ``OperationCancelledError`` when cancellation is requested before an
        attempt or during a backoff wait.
        """

        while True:
            self._check_cancelled(describe)
            self.count += 1
            try:
                return operation()
            except ProviderError as exc:
                if not exc.transient or self.count >= self.policy.max_attempts:
                    raise
                retry_after = exc.retry_after if isinstance(exc, RateLimitedError) else None
                delay = backoff_delay(
                    self.policy, self.count, jitter=self.rng(), retry_after=retry_after
                )
                log.warning(
                    "%s failed (%s), retrying in %.2fs (attempt %s/%s)",
                    describe,
                    exc,
                    delay,
                    self.count,
                    self.policy.max_attempts,
                )
                self._sleep(delay, describe)

    def _sleep(self, delay: float, describe: str) -> None:
        if self.cancellation.wait(delay):
            raise OperationCancelledError(f"{describe} cancelled during backoff")

    def _check_cancelled(self, describe: str) -> None:
        if self.cancellation.is_set():
            raise OperationCancelledError(f"{describe} cancelled")
