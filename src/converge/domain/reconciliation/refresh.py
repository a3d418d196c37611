"""Refresh recorded state from the providers before planning.

Each recorded resource is read back; resources the provider no longer knows
are dropped from the snapshot, and attributes the provider reports
differently override the recorded inputs so the next diff repairs the drift.
The returned snapshot keeps the prior serial; it is not persisted here.
"""

from __future__ import annotations

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from converge.config import ExecutionConfig
from converge.domain.errors import ResourceNotFoundError, UnknownProviderError
from converge.domain.model import ResourceState, ResourceTypeRegistry

from .retry import Attempts

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from converge.domain.model import ResourceAddress, StateSnapshot
    from converge.domain.ports import ProviderClients


log = getLogger(__name__)


class RefreshState(Protocol):
    def __call__(
        self,
        prior: StateSnapshot,
        providers: ProviderClients,
        *,
        registry: ResourceTypeRegistry | None = None,
        cancellation: threading.Event | None = None,
    ) -> StateSnapshot: ...


@dataclass(slots=True)
class Refresher:
    config: ExecutionConfig = field(default_factory=ExecutionConfig)
    rng: Callable[[], float] = random.random

    def __call__(
        self,
        prior: StateSnapshot,
        providers: ProviderClients,
        *,
        registry: ResourceTypeRegistry | None = None,
        cancellation: threading.Event | None = None,
    ) -> StateSnapshot:
        if not len(prior):
            return prior
        types = registry or ResourceTypeRegistry()
        cancel = cancellation or threading.Event()

        missing = [state for state in prior if state.provider not in providers]
        if missing:
            binding = missing[0].provider
            raise UnknownProviderError(
                binding, [state.address for state in missing if state.provider == binding]
            )

        with ThreadPoolExecutor(
            max_workers=self.config.parallelism,
            thread_name_prefix="converge-refresh",
        ) as pool:
            refreshed = list(
                pool.map(lambda state: self._refresh_one(state, providers, types, cancel), prior)
            )

        resources: dict[ResourceAddress, ResourceState] = {}
        for state in refreshed:
            if state is not None:
                resources[state.address] = state
        dropped = len(prior) - len(resources)
        log.info("Refreshed %s resource(s), %s no longer exist", len(prior), dropped)
        return prior.evolve(resources, serial=prior.serial, lock_token=prior.lock_token)

    def _refresh_one(
        self,
        state: ResourceState,
        providers: ProviderClients,
        types: ResourceTypeRegistry,
        cancellation: threading.Event,
    ) -> ResourceState | None:
        client = providers[state.provider]
        timeout = (
            types.schema_for(state.address.type).timeout_seconds
            or self.config.default_timeout_seconds
        )
        attempts = Attempts(policy=self.config.backoff, cancellation=cancellation, rng=self.rng)
        try:
            outputs = attempts.run(
                lambda: client.read_resource(
                    state.address.type, state.resource_id, timeout=timeout
                ),
                describe=f"read {state.address}",
            )
        except ResourceNotFoundError:
            log.warning("%s (%s) no longer exists; dropping it", state.address, state.resource_id)
            if state.deposed:
                log.warning(
                    "%s: deposed object(s) %s are no longer tracked and must be removed by hand",
                    state.address,
                    [old.resource_id for old in state.deposed],
                )
            return None
        return refreshed_state(state, outputs)


def refreshed_state(state: ResourceState, outputs: Mapping[str, object]) -> ResourceState:
    inputs = dict(state.inputs)
    for name, value in state.inputs.items():
        if name in outputs and outputs[name] != value:
            log.info("%s.%s drifted", state.address, name)
            inputs[name] = outputs[name]
    return ResourceState(
        address=state.address,
        provider=state.provider,
        resource_id=state.resource_id,
        inputs=inputs,
        outputs=dict(outputs),
        dependencies=state.dependencies,
        deposed=state.deposed,
    )
