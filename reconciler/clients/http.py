"""HTTP control-plane client driven by per-type path templates."""
from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Dict, Mapping, Optional, Set, Tuple

import httpx

from ..constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_RETRIES, DEFAULT_REQUEST_TIMEOUT
from ..engine.cancellation import CancelToken
from ..errors import InvalidRequest
from ..identity import ResourceIdentity
from ..models import ApiConfig, Intent, ReconcilerConfig, ResourceTypeConfig
from .base import FetchResult, MutationResult
from .retry import retry_request
from .util import expand_path, lookup, to_camel, to_snake, unwrap

log = logging.getLogger(__name__)


class HttpControlPlaneClient(AbstractContextManager):
    """Thin ``httpx`` wrapper speaking the REST shape described by ``ApiConfig``.

    Transport failures are returned inside ``MutationResult`` and
    ``FetchResult`` rather than raised, so the engine can classify them.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        read_retries: int = DEFAULT_READ_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self.timeout = timeout
        self.read_retries = read_retries
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=DEFAULT_CONNECT_TIMEOUT),
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: ReconcilerConfig, transport: Optional[httpx.BaseTransport] = None
    ) -> "HttpControlPlaneClient":
        return cls(
            config.endpoint,
            api_token=config.api_token,
            timeout=config.request_timeout,
            read_retries=config.read_retries,
            transport=transport,
        )

    def __enter__(self) -> "HttpControlPlaneClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------ protocol

    def mutate(
        self,
        intent: Intent,
        kind: str,
        resource_type: ResourceTypeConfig,
        fields: Mapping[str, Any],
        token: CancelToken,
    ) -> MutationResult:
        try:
            method, path, used = self._route(intent, kind, resource_type, fields)
        except InvalidRequest as exc:
            return MutationResult(error=exc)
        timeout = self._timeout(token)
        if timeout is None:
            return MutationResult(error=TimeoutError(f"Deadline passed before {intent.value} {kind}"))

        request: Dict[str, Any] = {"timeout": timeout}
        if intent is not Intent.delete:
            request["json"] = self._to_wire(resource_type, fields, skip=used)
        log.debug("%s %s", method, path)
        try:
            response = self._client.request(method, path, **request)
        except httpx.HTTPError as exc:
            log.debug("%s %s failed: %s", method, path, exc)
            return MutationResult(error=exc)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return MutationResult(status_code=response.status_code, error=exc)

        payload = _json_or_none(response)
        identity_fields, response_fields = self._split(resource_type, payload)
        return MutationResult(
            status_code=response.status_code,
            identity_fields=identity_fields,
            response_fields=response_fields,
        )

    def fetch_status(
        self,
        kind: str,
        resource_type: ResourceTypeConfig,
        identity: ResourceIdentity,
        token: CancelToken,
    ) -> FetchResult:
        try:
            path, _ = expand_path(self._api(kind, resource_type).item, identity.fields)
        except InvalidRequest as exc:
            return FetchResult(error=exc)
        except KeyError as exc:
            return FetchResult(error=InvalidRequest(f"Missing path parameter {exc.args[0]} for {kind}"))
        timeout = self._timeout(token)
        if timeout is None:
            return FetchResult(error=TimeoutError(f"Deadline passed before reading {identity}"))

        try:
            response = retry_request(
                self._client.get,
                path,
                token=token,
                max_retries=self.read_retries,
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            return FetchResult(error=exc)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return FetchResult(status_code=response.status_code, error=exc)

        payload = _json_or_none(response)
        _, snapshot = self._split(resource_type, payload)
        remote_status = lookup(snapshot, resource_type.status_field)
        return FetchResult(
            snapshot=snapshot,
            status_code=response.status_code,
            remote_status=str(remote_status) if remote_status is not None else None,
        )

    # ------------------------------------------------------------- helpers

    @staticmethod
    def _api(kind: str, resource_type: ResourceTypeConfig) -> ApiConfig:
        if resource_type.api is None:
            raise InvalidRequest(f"No API paths configured for {kind}")
        return resource_type.api

    def _route(
        self,
        intent: Intent,
        kind: str,
        resource_type: ResourceTypeConfig,
        fields: Mapping[str, Any],
    ) -> Tuple[str, str, Set[str]]:
        api = self._api(kind, resource_type)
        if intent is Intent.create:
            method, template = api.create_method, api.create_path or api.collection
        elif intent is Intent.update:
            if api.update_method is None:
                raise InvalidRequest(f"{kind} does not support in-place updates")
            method, template = api.update_method, api.item
        elif intent is Intent.delete:
            method, template = "DELETE", api.item
        else:
            raise InvalidRequest(f"Reads of {kind} go through fetch_status")
        try:
            path, used = expand_path(template, fields)
        except KeyError as exc:
            raise InvalidRequest(f"Missing path parameter {exc.args[0]} for {kind}") from None
        return method, path, used

    def _timeout(self, token: CancelToken) -> Optional[float]:
        if token.done:
            return None
        remaining = token.remaining()
        return self.timeout if remaining is None else min(self.timeout, remaining)

    @staticmethod
    def _to_wire(
        resource_type: ResourceTypeConfig, fields: Mapping[str, Any], skip: Set[str]
    ) -> Dict[str, Any]:
        field_map = resource_type.api.field_map if resource_type.api else {}
        return {
            field_map.get(name, to_camel(name)): value
            for name, value in fields.items()
            if name not in skip and value is not None
        }

    @staticmethod
    def _split(
        resource_type: ResourceTypeConfig, payload: Any
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Separate identity values from the remaining snake_case fields.

        Identity wire keys are looked up in the unwrapped object first and then
        at the top level of the payload, where some APIs put the id.
        """
        if not isinstance(payload, dict):
            return {}, {}
        api = resource_type.api
        body = unwrap(payload, api.envelope if api else None)
        if not isinstance(body, dict):
            body = {}
        reverse = {wire: name for name, wire in (api.field_map if api else {}).items()}

        identity_fields: Dict[str, Any] = {}
        identity_wires = set()
        for key in resource_type.identity:
            wire = key.wire or to_camel(key.name)
            identity_wires.add(wire)
            value = body.get(wire, payload.get(wire))
            if value is not None:
                identity_fields[key.name] = value

        fields = {
            reverse.get(wire, to_snake(wire)): value
            for wire, value in body.items()
            if wire not in identity_wires
        }
        return identity_fields, fields


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        log.debug("Non-JSON response body from %s", response.request.url)
        return None
