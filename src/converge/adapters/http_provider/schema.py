"""Pydantic models describing the REST provider payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ResourceRequest(ProviderBaseModel):
    attributes: dict[str, Any] = Field(default_factory=dict)


class ResourceResponse(ProviderBaseModel):
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    def outputs(self) -> dict[str, Any]:
        return {**self.attributes, "id": self.id}


class ErrorResponse(ProviderBaseModel):
    message: str | None = Field(default=None, alias="error")
    detail: str | None = None

    def describe(self) -> str | None:
        return self.detail or self.message
