"""JSON codec for state snapshots.

Snapshots are persisted as one JSON document per serial. The pydantic models
below are the on-disk shape; ``encode_snapshot``/``decode_snapshot`` convert
between them and the domain types.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from converge.domain.errors import ParseError, PersistenceError
from converge.domain.model import DeposedObject, ResourceAddress, ResourceState, StateSnapshot

FORMAT_VERSION = 1


class DeposedObjectPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resource_id: str
    provider: str


class ResourceStatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    address: str
    provider: str
    resource_id: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    deposed: list[DeposedObjectPayload] = Field(default_factory=list)


class SnapshotPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = FORMAT_VERSION
    serial: int
    lineage: str
    lock_token: str | None = None
    resources: list[ResourceStatePayload] = Field(default_factory=list)


def snapshot_to_payload(snapshot: StateSnapshot) -> SnapshotPayload:
    return SnapshotPayload(
        serial=snapshot.serial,
        lineage=snapshot.lineage,
        lock_token=snapshot.lock_token,
        resources=[
            ResourceStatePayload(
                address=str(state.address),
                provider=state.provider,
                resource_id=state.resource_id,
                inputs=_plain(state.inputs),
                outputs=_plain(state.outputs),
                dependencies=[str(address) for address in state.dependencies],
                deposed=[
                    DeposedObjectPayload(resource_id=item.resource_id, provider=item.provider)
                    for item in state.deposed
                ],
            )
            for state in snapshot
        ],
    )


def payload_to_snapshot(payload: SnapshotPayload) -> StateSnapshot:
    if payload.version != FORMAT_VERSION:
        raise PersistenceError(f"Unsupported state format version {payload.version}")
    try:
        states = [
            ResourceState(
                address=ResourceAddress.parse(item.address),
                provider=item.provider,
                resource_id=item.resource_id,
                inputs=item.inputs,
                outputs=item.outputs,
                dependencies=tuple(ResourceAddress.parse(text) for text in item.dependencies),
                deposed=tuple(
                    DeposedObject(resource_id=old.resource_id, provider=old.provider)
                    for old in item.deposed
                ),
            )
            for item in payload.resources
        ]
    except ParseError as exc:
        raise PersistenceError(f"Stored state is corrupt: {exc}") from exc
    return StateSnapshot(
        serial=payload.serial,
        lineage=payload.lineage,
        lock_token=payload.lock_token,
        resources={state.address: state for state in states},
    )


def encode_snapshot(snapshot: StateSnapshot) -> str:
    return snapshot_to_payload(snapshot).model_dump_json()


def decode_snapshot(document: str | bytes) -> StateSnapshot:
    try:
        payload = SnapshotPayload.model_validate_json(document)
    except ValidationError as exc:
        raise PersistenceError(f"Stored state is corrupt: {exc}") from exc
    return payload_to_snapshot(payload)


def _plain(values: Mapping[str, object]) -> dict[str, Any]:
    return {name: _plain_value(value) for name, value in values.items()}


def _plain_value(value: object) -> Any:
    if isinstance(value, Mapping):
        mapping = cast(Mapping[object, object], value)
        return {str(key): _plain_value(item) for key, item in mapping.items()}
    if isinstance(value, list | tuple):
        return [_plain_value(item) for item in cast(list[object], value)]
    return value

