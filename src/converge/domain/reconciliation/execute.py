"""Apply executor: run an execution plan against provider clients.

Batches run in order; steps inside a batch run concurrently on a thread
pool. Scheduling decisions (skip, resolve, cancel) are made in the
coordinating thread, so the only state workers touch is their own step.

Results are yielded as steps finish. A step is skipped without a provider
call when any step it waits on did not succeed; everything independent of
the failure keeps going.

Delete and purge steps first delete the deposed objects recorded for their
address.
"""

from __future__ import annotations

import random
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING

from converge.config import ExecutionConfig
from converge.domain.errors import (
    OperationCancelledError,
    PermanentProviderError,
    ProviderError,
    ResourceNotFoundError,
)
from converge.domain.model import (
    ID_ATTRIBUTE,
    UNKNOWN,
    ResourceState,
    ResourceTypeRegistry,
    contains_unknown,
    resolve_attributes,
)

from .retry import Attempts
from .schedule import StepAction

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from converge.domain.model import (
        DeposedObject,
        Reference,
        ResourceAddress,
        StateSnapshot,
    )
    from converge.domain.ports import ProviderClient, ProviderClients

    from .schedule import ExecutionPlan, PlanStep, StepKey

log = getLogger(__name__)

_POLL_SECONDS = 0.1


class Outcome(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class ApplyError:
    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: ProviderError) -> ApplyError:
        return cls(kind=exc.kind, message=str(exc))


@dataclass(frozen=True, slots=True, kw_only=True)
class ApplyResult:
    """Outcome of one plan step.

    ``state`` is set for a succeeded create or update; ``resource_id`` names
    the provider object the step acted on (for deletes, the removed one).
    ``purged`` lists the deposed objects the step deleted, even when the step
    failed afterwards; ``attempts`` counts calls for the step's own resource.
    """

    address: ResourceAddress
    action: StepAction
    outcome: Outcome
    error: ApplyError | None = None
    state: ResourceState | None = None
    resource_id: str | None = None
    attempts: int = 0
    replacing: bool = False
    purged: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCEEDED

    @property
    def key(self) -> StepKey:
        return (self.address, self.action)


@dataclass(frozen=True, slots=True, kw_only=True)
class _PreparedStep:
    step: PlanStep
    client: ProviderClient
    attributes: Mapping[str, object]
    resource_id: str | None
    timeout: float
    deposed: tuple[tuple[DeposedObject, ProviderClient], ...] = ()


@dataclass(slots=True)
class ApplyExecutor:
    config: ExecutionConfig = field(default_factory=ExecutionConfig)
    rng: Callable[[], float] = random.random

    def execute(
        self,
        plan: ExecutionPlan,
        providers: ProviderClients,
        *,
        prior: StateSnapshot,
        registry: ResourceTypeRegistry | None = None,
        cancellation: threading.Event | None = None,
    ) -> Iterator[ApplyResult]:
        cancel = cancellation or threading.Event()
        types = registry or ResourceTypeRegistry()
        known: dict[ResourceAddress, ResourceState] = dict(prior.resources)
        outcomes: dict[StepKey, Outcome] = {}

        def record(result: ApplyResult) -> ApplyResult:
            outcomes[result.key] = result.outcome
            if result.succeeded:
                _track(known, result)
            return result

        with ThreadPoolExecutor(
            max_workers=self.config.parallelism,
            thread_name_prefix="converge-apply",
        ) as pool:
            for index, batch in enumerate(plan.batches, start=1):
                if cancel.is_set():
                    for step in batch:
                        yield record(_cancelled(step))
                    continue

                log.info("Starting batch %s/%s (%s step(s))", index, len(plan.batches), len(batch))
                futures: dict[Future[ApplyResult], PlanStep] = {}
                for step in batch:
                    blocked = sorted(
                        f"{action} {address}"
                        for address, action in plan.upstream_of(step)
                        if outcomes.get((address, action)) is not Outcome.SUCCEEDED
                    )
                    if blocked:
                        log.info("Skipping %s: upstream did not succeed (%s)", step, blocked)
                        yield record(
                            _result(
                                step,
                                Outcome.SKIPPED,
                                error=ApplyError(
                                    "upstream", f"Upstream step(s) did not succeed: {blocked}"
                                ),
                            )
                        )
                        continue

                    prepared = self._prepare(step, providers, known, types)
                    if isinstance(prepared, ApplyResult):
                        yield record(prepared)
                        continue
                    futures[pool.submit(self._run, prepared, cancel)] = step

                pending = set(futures)
                while pending:
                    done, pending = wait(
                        pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED
                    )
                    for future in done:
                        yield record(future.result())
                    if cancel.is_set():
                        for future in list(pending):
                            if future.cancel():
                                pending.discard(future)
                                yield record(_cancelled(futures[future]))

    def _prepare(
        self,
        step: PlanStep,
        providers: ProviderClients,
        known: Mapping[ResourceAddress, ResourceState],
        types: ResourceTypeRegistry,
    ) -> _PreparedStep | ApplyResult:
        client = providers.get(step.provider)
        if client is None:
            return _result(
                step,
                Outcome.FAILED,
                error=ApplyError("unknown_provider", f"No provider client for {step.provider!r}"),
            )

        schema = types.schema_for(step.address.type)
        timeout = schema.timeout_seconds or self.config.default_timeout_seconds
        change = step.change

        deposed: list[tuple[DeposedObject, ProviderClient]] = []
        for old in step.deposed:
            old_client = providers.get(old.provider)
            if old_client is None:
                return _result(
                    step,
                    Outcome.FAILED,
                    error=ApplyError(
                        "unknown_provider", f"No provider client for {old.provider!r}"
                    ),
                )
            deposed.append((old, old_client))

        if step.action in {StepAction.DELETE, StepAction.PURGE}:
            if change.prior is None:
                raise ValueError(f"{step.action} step for {step.address} has no prior state")
            return _PreparedStep(
                step=step,
                client=client,
                attributes={},
                resource_id=change.prior.resource_id,
                timeout=timeout,
                deposed=tuple(deposed),
            )

        if change.desired is None:
            raise ValueError(f"{step.action} step for {step.address} has no desired node")

        def lookup(reference: Reference) -> object:
            state = known.get(reference.address)
            if state is None:
                return UNKNOWN
            try:
                return state.attribute(reference.attribute)
            except KeyError:
                return UNKNOWN

        attributes = resolve_attributes(change.desired.attributes, lookup)
        unresolved = sorted(name for name, value in attributes.items() if contains_unknown(value))
        if unresolved:
            return _result(
                step,
                Outcome.FAILED,
                error=ApplyError(
                    "unresolved", f"Attributes {unresolved} reference values that are not known"
                ),
            )

        resource_id = None
        if step.action is StepAction.UPDATE and change.prior is not None:
            resource_id = change.prior.resource_id
        return _PreparedStep(
            step=step,
            client=client,
            attributes=attributes,
            resource_id=resource_id,
            timeout=timeout,
        )

    def _run(self, prepared: _PreparedStep, cancellation: threading.Event) -> ApplyResult:
        step = prepared.step
        attempts = Attempts(policy=self.config.backoff, cancellation=cancellation, rng=self.rng)
        purged: list[str] = []
        try:
            match step.action:
                case StepAction.CREATE:
                    outputs = attempts.run(
                        lambda: prepared.client.create_resource(
                            step.address.type, prepared.attributes, timeout=prepared.timeout
                        ),
                        describe=str(step),
                    )
                    state = _state_for(prepared, outputs)
                    return _result(
                        step,
                        Outcome.SUCCEEDED,
                        state=state,
                        resource_id=state.resource_id,
                        attempts=attempts.count,
                    )
                case StepAction.UPDATE:
                    outputs = attempts.run(
                        lambda: prepared.client.update_resource(
                            step.address.type,
                            _require_id(prepared),
                            prepared.attributes,
                            timeout=prepared.timeout,
                        ),
                        describe=str(step),
                    )
                    state = _state_for(prepared, outputs)
                    return _result(
                        step,
                        Outcome.SUCCEEDED,
                        state=state,
                        resource_id=state.resource_id,
                        attempts=attempts.count,
                    )
                case StepAction.PURGE:
                    self._purge(prepared, cancellation, purged)
                    return _result(step, Outcome.SUCCEEDED, purged=tuple(purged))
                case StepAction.DELETE:
                    self._purge(prepared, cancellation, purged)
                    resource_id = _require_id(prepared)
                    try:
                        attempts.run(
                            lambda: prepared.client.delete_resource(
                                step.address.type, resource_id, timeout=prepared.timeout
                            ),
                            describe=str(step),
                        )
                    except ResourceNotFoundError:
                        log.warning("%s: resource %s is already gone", step, resource_id)
                    return _result(
                        step,
                        Outcome.SUCCEEDED,
                        resource_id=resource_id,
                        attempts=attempts.count,
                        purged=tuple(purged),
                    )
        except OperationCancelledError:
            return _cancelled(step, attempts=attempts.count, purged=tuple(purged))
        except ProviderError as exc:
            log.warning("%s failed after %s attempt(s): %s", step, attempts.count, exc)
            return _result(
                step,
                Outcome.FAILED,
                error=ApplyError.from_exception(exc),
                attempts=attempts.count,
                purged=tuple(purged),
            )
        except Exception as exc:  # noqa: BLE001
            log.exception("%s raised an unexpected error", step)
            return _result(
                step,
                Outcome.FAILED,
                error=ApplyError("unexpected", f"{type(exc).__name__}: {exc}"),
                attempts=attempts.count,
                purged=tuple(purged),
            )

    def _purge(
        self,
        prepared: _PreparedStep,
        cancellation: threading.Event,
        purged: list[str],
    ) -> None:
        """Delete the deposed objects of ``prepared``, appending each removed id to ``purged``."""

        resource_type = prepared.step.address.type
        for old, client in prepared.deposed:
            attempts = Attempts(policy=self.config.backoff, cancellation=cancellation, rng=self.rng)
            describe = f"delete deposed {prepared.step.address} ({old.resource_id})"
            try:
                attempts.run(
                    partial(
                        client.delete_resource,
                        resource_type,
                        old.resource_id,
                        timeout=prepared.timeout,
                    ),
                    describe=describe,
                )
            except ResourceNotFoundError:
                log.warning("%s: already gone", describe)
            else:
                log.info("%s: deleted", describe)
            purged.append(old.resource_id)


def _require_id(prepared: _PreparedStep) -> str:
    if prepared.resource_id is None:
        raise ValueError(f"{prepared.step} has no resource id")
    return prepared.resource_id


def _state_for(prepared: _PreparedStep, outputs: Mapping[str, object]) -> ResourceState:
    step = prepared.step
    returned_id = outputs.get(ID_ATTRIBUTE)
    if returned_id is None:
        returned_id = prepared.resource_id
    if returned_id is None:
        raise PermanentProviderError(f"Provider returned no {ID_ATTRIBUTE!r} for {step}")
    return ResourceState(
        address=step.address,
        provider=step.provider,
        resource_id=str(returned_id),
        inputs=prepared.attributes,
        outputs=dict(outputs),
        dependencies=step.dependencies,
    )


def _track(known: dict[ResourceAddress, ResourceState], result: ApplyResult) -> None:
    if result.state is not None:
        known[result.address] = result.state
        return
    if result.action is StepAction.DELETE:
        current = known.get(result.address)
        if current is not None and current.resource_id == result.resource_id:
            del known[result.address]


def _result(
    step: PlanStep,
    outcome: Outcome,
    *,
    error: ApplyError | None = None,
    state: ResourceState | None = None,
    resource_id: str | None = None,
    attempts: int = 0,
    purged: tuple[str, ...] = (),
) -> ApplyResult:
    return ApplyResult(
        address=step.address,
        action=step.action,
        outcome=outcome,
        error=error,
        state=state,
        resource_id=resource_id,
        attempts=attempts,
        replacing=step.replacing,
        purged=purged,
    )


def _cancelled(
    step: PlanStep, *, attempts: int = 0, purged: tuple[str, ...] = ()
) -> ApplyResult:
    return _result(
        step,
        Outcome.SKIPPED,
        error=ApplyError("cancelled", "Run was cancelled before the step completed"),
        attempts=attempts,
        purged=purged,
    )
