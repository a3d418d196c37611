from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from converge.domain.errors import UnknownProviderError
from converge.domain.model import StateSnapshot
from converge.domain.reconciliation import ChangeAction, Refresher, diff, refreshed_state
from tests.helpers.documents import declare, graph_of
from tests.helpers.state import address, make_snapshot, make_state

if TYPE_CHECKING:
    from converge.config import ExecutionConfig
    from tests.helpers.providers import FakeProvider


def test_refresh_drops_vanished_resources_and_records_drift(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.resources["net-1"] = ("network", {"id": "net-1", "cidr": "10.9.0.0/16"})
    prior = make_snapshot(
        make_state("network.main", resource_id="net-1", inputs={"cidr": "10.0.0.0/16"}),
        make_state("subnet.a", resource_id="sub-gone", dependencies=("network.main",)),
        serial=4,
    )

    refreshed = Refresher(config=fast_execution)(prior, {"default": provider})

    assert refreshed.serial == 4
    assert refreshed.lineage == prior.lineage
    assert refreshed.addresses == (address("network.main"),)
    network = refreshed.get(address("network.main"))
    assert network is not None
    assert network.inputs["cidr"] == "10.9.0.0/16"
    assert sorted(call.action for call in provider.calls) == ["read", "read"]


def test_refreshed_drift_is_planned_as_an_update(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    provider.resources["net-1"] = ("network", {"id": "net-1", "cidr": "10.9.0.0/16"})
    prior = make_snapshot(
        make_state("network.main", resource_id="net-1", inputs={"cidr": "10.0.0.0/16"})
    )

    refreshed = Refresher(config=fast_execution)(prior, {"default": provider})
    changeset = diff(graph_of(declare("network.main", cidr="10.0.0.0/16")), refreshed)

    entry = changeset.entry_for(address("network.main"))
    assert entry is not None
    assert entry.action is ChangeAction.UPDATE
    assert entry.changed_attributes == ("cidr",)


def test_refresh_requires_every_binding(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    prior = make_snapshot(make_state("network.main", provider="other"))

    with pytest.raises(UnknownProviderError) as excinfo:
        Refresher(config=fast_execution)(prior, {"default": provider})

    assert excinfo.value.binding == "other"
    assert provider.calls == []


def test_refresh_of_empty_state_makes_no_calls(
    provider: FakeProvider, fast_execution: ExecutionConfig
) -> None:
    prior = StateSnapshot.empty()

    assert Refresher(config=fast_execution)(prior, {"default": provider}) is prior


def test_refreshed_state_keeps_inputs_the_provider_does_not_report() -> None:
    state = make_state(
        "vm.web",
        resource_id="vm-1",
        inputs={"size": "small", "user_data": "#!/bin/sh"},
        dependencies=("subnet.a",),
    )

    refreshed = refreshed_state(state, {"id": "vm-1", "size": "large"})

    assert refreshed.inputs == {"size": "large", "user_data": "#!/bin/sh"}
    assert refreshed.outputs == {"id": "vm-1", "size": "large"}
    assert refreshed.dependencies == state.dependencies
