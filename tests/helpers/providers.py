"""Reusable fake provider client for reconciliation tests."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from converge.domain.errors import ResourceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from converge.domain.ports import ProviderClient

type CallAction = Literal["create", "update", "delete", "read"]


@dataclass(frozen=True, slots=True)
class ProviderCall:
    action: CallAction
    resource_type: str
    resource_id: str | None
    attributes: Mapping[str, object] | None = None
    timeout: float | None = None


@dataclass(slots=True)
class FakeProvider:
    """In-memory provider that records every call.

    ``failures`` maps ``(action, resource_type)`` to exceptions raised in
    order, one per call, before the call is allowed to succeed.
    ``always_fail`` raises on every matching call. ``on_call`` runs before
    each call is handled. ``computed`` returns extra outputs the provider
    reports on create and update, given the type and the sent attributes.
    """

    failures: dict[tuple[str, str], list[Exception]] = field(
        default_factory=dict[tuple[str, str], list[Exception]]
    )
    always_fail: dict[tuple[str, str], Exception] = field(
        default_factory=dict[tuple[str, str], Exception]
    )
    on_call: Callable[[ProviderCall], None] | None = None
    computed: Callable[[str, Mapping[str, object]], Mapping[str, object]] | None = None
    resources: dict[str, tuple[str, dict[str, object]]] = field(
        default_factory=dict[str, tuple[str, dict[str, object]]]
    )
    calls: list[ProviderCall] = field(default_factory=list[ProviderCall])
    _counters: defaultdict[str, int] = field(
        default_factory=lambda: defaultdict(int), repr=False
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create_resource(
        self,
        resource_type: str,
        attributes: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]:
        self._record(ProviderCall("create", resource_type, None, dict(attributes), timeout))
        with self._lock:
            self._counters[resource_type] += 1
            resource_id = f"{resource_type}-{self._counters[resource_type]}"
            outputs: dict[str, object] = {
                **attributes,
                **self._computed(resource_type, attributes),
                "id": resource_id,
            }
            self.resources[resource_id] = (resource_type, outputs)
        return dict(outputs)

    def update_resource(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]:
        self._record(ProviderCall("update", resource_type, resource_id, dict(attributes), timeout))
        with self._lock:
            if resource_id not in self.resources:
                raise ResourceNotFoundError(f"{resource_type} {resource_id} not found")
            outputs: dict[str, object] = {
                **attributes,
                **self._computed(resource_type, attributes),
                "id": resource_id,
            }
            self.resources[resource_id] = (resource_type, outputs)
        return dict(outputs)

    def delete_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        timeout: float | None = None,
    ) -> None:
        self._record(ProviderCall("delete", resource_type, resource_id, None, timeout))
        with self._lock:
            if self.resources.pop(resource_id, None) is None:
                raise ResourceNotFoundError(f"{resource_type} {resource_id} not found")

    def read_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]:
        self._record(ProviderCall("read", resource_type, resource_id, None, timeout))
        with self._lock:
            stored = self.resources.get(resource_id)
        if stored is None:
            raise ResourceNotFoundError(f"{resource_type} {resource_id} not found")
        return dict(stored[1])

    def _computed(
        self, resource_type: str, attributes: Mapping[str, object]
    ) -> Mapping[str, object]:
        if self.computed is None:
            return {}
        return self.computed(resource_type, attributes)

    def actions(self) -> list[tuple[str, str]]:
        """``(action, resource_type)`` for every call, in call order."""

        return [(call.action, call.resource_type) for call in self.calls]

    def _record(self, call: ProviderCall) -> None:
        with self._lock:
            self.calls.append(call)
        if self.on_call is not None:
            self.on_call(call)
        key = (call.action, call.resource_type)
        with self._lock:
            pending = self.failures.get(key)
            error = pending.pop(0) if pending else self.always_fail.get(key)
        if error is not None:
            raise error


if TYPE_CHECKING:
    _provider_check: ProviderClient = FakeProvider()
