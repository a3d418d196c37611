from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from converge.domain.errors import (
    PermanentProviderError,
    ProviderTimeoutError,
    TransientProviderError,
)
from converge.domain.model import ResourceTypeRegistry, StateSnapshot
from converge.domain.reconciliation import ApplyExecutor, Outcome, StepAction
from tests.helpers.documents import declare, plan_for, replace_on
from tests.helpers.providers import FakeProvider, ProviderCall
from tests.helpers.state import address, make_snapshot, make_state

if TYPE_CHECKING:
    from converge.config import ExecutionConfig
    from converge.domain.reconciliation import ApplyResult, ExecutionPlan


def _run(
    executor: ApplyExecutor,
    plan: ExecutionPlan,
    provider: FakeProvider,
    *,
    prior: StateSnapshot | None = None,
    registry: ResourceTypeRegistry | None = None,
    cancellation: threading.Event | None = None,
) -> dict[str, ApplyResult]:
    results = executor.execute(
        plan,
        {"default": provider},
        prior=prior or StateSnapshot.empty(),
        registry=registry,
        cancellation=cancellation,
    )
    return {f"{result.action} {result.address}": result for result in results}


def test_references_resolve_to_outputs_of_earlier_batches(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    plan = plan_for(
        declare("network.main", cidr="10.0.0.0/16"),
        declare("subnet.a", network_id="${network.main.id}", name="sub-${network.main.cidr}"),
    )

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    assert all(result.outcome is Outcome.SUCCEEDED for result in results.values())
    subnet_call = provider.calls[-1]
    assert subnet_call.attributes == {"network_id": "network-1", "name": "sub-10.0.0.0/16"}
    subnet = results["create subnet.a"].state
    assert subnet is not None
    assert subnet.resource_id == "subnet-1"
    assert subnet.inputs == {"network_id": "network-1", "name": "sub-10.0.0.0/16"}
    assert subnet.dependencies == (address("network.main"),)


def test_failure_skips_dependents_but_not_independent_steps(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.always_fail[("create", "network")] = PermanentProviderError("quota exceeded")
    plan = plan_for(
        declare("network.main"),
        declare("subnet.a", network_id="${network.main.id}"),
        declare("vm.web", subnet="${subnet.a.id}"),
        declare("bucket.logs"),
    )

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    assert results["create network.main"].outcome is Outcome.FAILED
    error = results["create network.main"].error
    assert error is not None and error.kind == "permanent"
    for key in ("create subnet.a", "create vm.web"):
        skipped = results[key]
        assert skipped.outcome is Outcome.SKIPPED
        assert skipped.error is not None and skipped.error.kind == "upstream"
    assert results["create bucket.logs"].outcome is Outcome.SUCCEEDED
    assert ("create", "subnet") not in provider.actions()
    assert ("create", "vm") not in provider.actions()


def test_transient_errors_are_retried(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.failures[("create", "network")] = [TransientProviderError("503")]
    plan = plan_for(declare("network.main"))

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    result = results["create network.main"]
    assert result.outcome is Outcome.SUCCEEDED
    assert result.attempts == 2


def test_timeouts_fail_the_step_once_attempts_run_out(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.always_fail[("create", "network")] = ProviderTimeoutError("timed out after 5s")
    plan = plan_for(declare("network.main"), declare("subnet.a", network_id="${network.main.id}"))

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    network = results["create network.main"]
    assert network.outcome is Outcome.FAILED
    assert network.attempts == fast_execution.backoff.max_attempts == 3
    assert network.error is not None and network.error.kind == "timeout"
    assert provider.actions() == [("create", "network")] * 3
    assert results["create subnet.a"].outcome is Outcome.SKIPPED


def test_unknown_provider_binding_fails_without_calls(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    plan = plan_for(declare("network.main", provider="elsewhere"))

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    error = results["create network.main"].error
    assert error is not None and error.kind == "unknown_provider"
    assert provider.calls == []


def test_unresolvable_reference_fails_the_step(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    plan = plan_for(
        declare("network.main"),
        declare("subnet.a", arn="${network.main.arn}"),
    )

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    assert results["create network.main"].succeeded
    error = results["create subnet.a"].error
    assert error is not None and error.kind == "unresolved"
    assert ("create", "subnet") not in provider.actions()


def test_delete_of_missing_resource_counts_as_success(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    prior = make_snapshot(make_state("network.main", resource_id="net-gone"))
    plan = plan_for(prior=prior)

    results = _run(ApplyExecutor(config=fast_execution), plan, provider, prior=prior)

    result = results["delete network.main"]
    assert result.outcome is Outcome.SUCCEEDED
    assert result.resource_id == "net-gone"
    assert result.action is StepAction.DELETE


def test_update_targets_recorded_resource_id(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.resources["net-7"] = ("network", {"id": "net-7", "cidr": "10.0.0.0/16"})
    prior = make_snapshot(
        make_state("network.main", resource_id="net-7", inputs={"cidr": "10.0.0.0/16"})
    )
    plan = plan_for(declare("network.main", cidr="10.1.0.0/16"), prior=prior)

    results = _run(ApplyExecutor(config=fast_execution), plan, provider, prior=prior)

    state = results["update network.main"].state
    assert state is not None
    assert state.resource_id == "net-7"
    assert state.outputs["cidr"] == "10.1.0.0/16"
    assert provider.calls[0].resource_id == "net-7"


def test_unexpected_exceptions_fail_only_their_step(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.always_fail[("create", "network")] = RuntimeError("driver crashed")
    plan = plan_for(declare("network.main"), declare("bucket.logs"))

    results = _run(ApplyExecutor(config=fast_execution), plan, provider)

    error = results["create network.main"].error
    assert error is not None
    assert error.kind == "unexpected"
    assert "driver crashed" in error.message
    assert results["create bucket.logs"].succeeded


def test_type_timeout_overrides_default(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    registry = ResourceTypeRegistry.of(replace_on("network", timeout_seconds=12.0))
    plan = plan_for(declare("network.main"), declare("bucket.logs"), registry=registry)

    _run(ApplyExecutor(config=fast_execution), plan, provider, registry=registry)

    timeouts = {call.resource_type: call.timeout for call in provider.calls}
    assert timeouts == {"network": 12.0, "bucket": fast_execution.default_timeout_seconds}


def test_cancelled_run_makes_no_calls(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    cancellation = threading.Event()
    cancellation.set()
    plan = plan_for(declare("network.main"), declare("bucket.logs"))

    results = _run(
        ApplyExecutor(config=fast_execution), plan, provider, cancellation=cancellation
    )

    assert {result.outcome for result in results.values()} == {Outcome.SKIPPED}
    assert all(
        result.error is not None and result.error.kind == "cancelled"
        for result in results.values()
    )
    assert provider.calls == []


def test_cancellation_lets_in_flight_steps_finish(fast_execution: ExecutionConfig) -> None:
    cancellation = threading.Event()

    def cancel_on_first_call(call: ProviderCall) -> None:
        _ = call
        cancellation.set()

    provider = FakeProvider(on_call=cancel_on_first_call)
    plan = plan_for(
        declare("network.main"),
        declare("subnet.a", network_id="${network.main.id}"),
    )

    results = _run(
        ApplyExecutor(config=fast_execution), plan, provider, cancellation=cancellation
    )

    assert results["create network.main"].outcome is Outcome.SUCCEEDED
    subnet = results["create subnet.a"]
    assert subnet.outcome is Outcome.SKIPPED
    assert subnet.error is not None and subnet.error.kind == "cancelled"
    assert provider.actions() == [("create", "network")]


def test_create_before_destroy_deletes_the_old_instance(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.resources["net-old"] = ("network", {"id": "net-old", "cidr": "10.0.0.0/16"})
    registry = ResourceTypeRegistry.of(replace_on("network", "cidr"))
    prior = make_snapshot(
        make_state("network.main", resource_id="net-old", inputs={"cidr": "10.0.0.0/16"})
    )
    plan = plan_for(declare("network.main", cidr="10.1.0.0/16"), prior=prior, registry=registry)

    results = _run(
        ApplyExecutor(config=fast_execution), plan, provider, prior=prior, registry=registry
    )

    assert provider.actions() == [("create", "network"), ("delete", "network")]
    assert results["delete network.main"].resource_id == "net-old"
    assert results["delete network.main"].replacing
    created = results["create network.main"].state
    assert created is not None and created.resource_id == "network-1"
    assert "net-old" not in provider.resources


def test_delete_removes_deposed_objects_before_the_current_instance(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.resources["net-1"] = ("network", {"id": "net-1"})
    provider.resources["net-2"] = ("network", {"id": "net-2"})
    prior = make_snapshot(
        make_state("network.main", resource_id="net-2", deposed=("net-0", "net-1"))
    )
    plan = plan_for(prior=prior)

    results = _run(ApplyExecutor(config=fast_execution), plan, provider, prior=prior)

    result = results["delete network.main"]
    assert result.outcome is Outcome.SUCCEEDED
    assert result.purged == ("net-0", "net-1")
    assert [call.resource_id for call in provider.calls] == ["net-0", "net-1", "net-2"]
    assert provider.resources == {}


def test_purge_stops_at_the_first_permanent_failure(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.failures[("delete", "network")] = [
        TransientProviderError("busy"),
        PermanentProviderError("locked"),
    ]
    prior = make_snapshot(
        make_state("network.main", resource_id="net-2", deposed=("net-0", "net-1"))
    )
    plan = plan_for(declare("network.main"), prior=prior)

    results = _run(ApplyExecutor(config=fast_execution), plan, provider, prior=prior)

    result = results["purge network.main"]
    assert result.outcome is Outcome.FAILED
    assert result.error is not None and result.error.kind == "permanent"
    assert result.purged == ()
    assert [call.resource_id for call in provider.calls] == ["net-0", "net-0"]
