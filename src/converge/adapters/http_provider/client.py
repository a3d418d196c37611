"""REST provider client.

Maps the provider port onto a small REST surface::

    POST   /resources/{type}        create
    PUT    /resources/{type}/{id}   update
    GET    /resources/{type}/{id}   read
    DELETE /resources/{type}/{id}   delete

and translates HTTP failures into the provider error taxonomy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from converge.adapters.http_resilience import ResilientClient
from converge.domain.errors import (
    ConflictError,
    PermanentProviderError,
    PermissionDeniedError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    ResourceNotFoundError,
    TransientProviderError,
    ValidationRejectedError,
)

from .schema import ErrorResponse, ResourceRequest, ResourceResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from converge.config import ProviderConfig, ResilienceConfig

log = getLogger(__name__)

_TRANSIENT_STATUSES = frozenset(
    {
        httpx.codes.INTERNAL_SERVER_ERROR,
        httpx.codes.BAD_GATEWAY,
        httpx.codes.SERVICE_UNAVAILABLE,
        httpx.codes.GATEWAY_TIMEOUT,
    }
)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class HttpProviderClient:
    config: ProviderConfig
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    @property
    def client(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.config.resilience)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def create_resource(
        self,
        resource_type: str,
        attributes: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]:
        response = self._send(
            "POST",
            f"/resources/{resource_type}",
            json=ResourceRequest(attributes=dict(attributes)).model_dump(),
            timeout=timeout,
        )
        return self._parse_resource(response)

    def update_resource(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]:
        response = self._send(
            "PUT",
            f"/resources/{resource_type}/{resource_id}",
            json=ResourceRequest(attributes=dict(attributes)).model_dump(),
            timeout=timeout,
        )
        return self._parse_resource(response)

    def delete_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        timeout: float | None = None,
    ) -> None:
        self._send("DELETE", f"/resources/{resource_type}/{resource_id}", timeout=timeout)

    def read_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]:
        response = self._send("GET", f"/resources/{resource_type}/{resource_id}", timeout=timeout)
        return self._parse_resource(response)

    def _send(
        self,
        method: str,
        url: str,
        *,
        json: object = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        try:
            if timeout is None:
                response = self.client.request(method, url, json=json)
            else:
                response = self.client.request(method, url, json=json, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{method} {url} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(f"{method} {url} failed: {exc}") from exc

        if response.is_success:
            return response
        raise error_for_response(response)

    def _parse_resource(self, response: httpx.Response) -> dict[str, object]:
        try:
            return ResourceResponse.model_validate(response.json()).outputs()
        except (ValueError, ValidationError) as exc:
            raise PermanentProviderError(
                f"{self.config.binding}: unexpected response payload: {exc}"
            ) from exc


def error_for_response(response: httpx.Response) -> ProviderError:
    """Translate a non-2xx response into the matching ``ProviderError``."""

    status = response.status_code
    request = response.request
    message = f"{request.method} {request.url.path} returned {status}"
    detail = _error_detail(response)
    if detail:
        message = f"{message}: {detail}"

    if status == httpx.codes.TOO_MANY_REQUESTS:
        return RateLimitedError(message, retry_after=parse_retry_after(response))
    if status == httpx.codes.REQUEST_TIMEOUT:
        return ProviderTimeoutError(message)
    if status in _TRANSIENT_STATUSES:
        return TransientProviderError(message)
    if status in {httpx.codes.BAD_REQUEST, httpx.codes.UNPROCESSABLE_ENTITY}:
        return ValidationRejectedError(message)
    if status in {httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN}:
        return PermissionDeniedError(message)
    if status == httpx.codes.NOT_FOUND:
        return ResourceNotFoundError(message)
    if status == httpx.codes.CONFLICT:
        return ConflictError(message)
    return PermanentProviderError(message)


def parse_retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        log.debug("Ignoring non-numeric Retry-After header %r", raw)
        return None


def _error_detail(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or None
    if not isinstance(payload, dict):
        return None
    try:
        return ErrorResponse.model_validate(payload).describe()
    except ValidationError:
        return None
