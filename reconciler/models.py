"""Pydantic models for reconciler configuration, runs and API payloads."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    BUILTIN_RESOURCE_TYPES,
    DEFAULT_ENDPOINT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_READ_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TIMEOUT,
)


class Intent(str, Enum):
    create = "create"
    read = "read"
    update = "update"
    delete = "delete"


class StatusTable(BaseModel):
    """Remote status values that end a wait, per resource type."""

    success: frozenset[str] = frozenset()
    failure: frozenset[str] = frozenset()
    absent: frozenset[str] = frozenset()

    @model_validator(mode="after")
    def check_disjoint(self) -> "StatusTable":
        overlap = (self.success & self.failure) | (self.success & self.absent) | (
            self.failure & self.absent
        )
        if overlap:
            raise ValueError(f"Status values listed twice: {', '.join(sorted(overlap))}")
        return self


class IdentityKey(BaseModel):
    name: str
    optional: bool = False
    default_region: bool = False
    # Wire key carrying this value in the create response
    wire: Optional[str] = None


class ApiConfig(BaseModel):
    collection: str
    item: str
    create_method: Literal["POST", "PUT"] = "POST"
    create_path: Optional[str] = None
    update_method: Optional[Literal["PUT", "PATCH"]] = "PATCH"
    envelope: Optional[str] = None
    field_map: Dict[str, str] = Field(default_factory=dict)


class ResourceTypeConfig(BaseModel):
    identity: List[IdentityKey]
    status_field: Optional[str] = "status"
    statuses: StatusTable = Field(default_factory=StatusTable)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    fields: List[str] = Field(default_factory=list)
    write_once_fields: List[str] = Field(default_factory=list)
    unordered_fields: List[str] = Field(default_factory=list)
    api: Optional[ApiConfig] = None

    @field_validator("identity")
    def ensure_identity(cls, value: List[IdentityKey]) -> List[IdentityKey]:
        if not value:
            raise ValueError("At least one identity key is required")
        if all(key.optional for key in value):
            raise ValueError("At least one identity key must be required")
        names = [key.name for key in value]
        if len(set(names)) != len(names):
            raise ValueError("Identity keys must be unique")
        return value

    @model_validator(mode="after")
    def check_fields(self) -> "ResourceTypeConfig":
        unknown = set(self.unordered_fields) - set(self.fields)
        if unknown:
            raise ValueError(
                f"Unordered fields must be remote fields: {', '.join(sorted(unknown))}"
            )
        return self

    @property
    def identity_names(self) -> List[str]:
        return [key.name for key in self.identity]

    @property
    def supports_update(self) -> bool:
        return self.api is None or self.api.update_method is not None


class ReconcilerConfig(BaseModel):
    endpoint: str = DEFAULT_ENDPOINT
    api_token: Optional[str] = None
    default_region: Optional[str] = None
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    read_retries: int = Field(default=DEFAULT_READ_RETRIES, ge=0)
    resources: Dict[str, ResourceTypeConfig] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "ReconcilerConfig":
        """Build a config from user data layered over the built-in resource types.

        A resource entry in ``data`` replaces individual keys of the built-in
        entry with the same name; unknown names add new resource types.
        """
        payload: Dict[str, Any] = dict(data or {})
        resources: Dict[str, Any] = {
            name: dict(entry) for name, entry in BUILTIN_RESOURCE_TYPES.items()
        }
        for name, overrides in (payload.pop("resources", None) or {}).items():
            resources[name] = {**resources.get(name, {}), **(overrides or {})}
        payload["resources"] = resources
        return cls.model_validate(payload)

    def resource_type(self, kind: str) -> ResourceTypeConfig:
        try:
            return self.resources[kind]
        except KeyError:
            raise KeyError(f"Unknown resource type: {kind}") from None


class StageEvent(BaseModel):
    stage: str
    status: Literal["started", "ok", "failed"]
    detail: Optional[str] = None


class RunRecord(BaseModel):
    run_id: str
    ok: Optional[bool] = None
    events: List[StageEvent] = Field(default_factory=list)
    summary: Optional[str] = None


class ReconcileRequest(BaseModel):
    plan: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0)


class ImportRequest(BaseModel):
    id: str = Field(..., min_length=1)
    timeout: Optional[float] = Field(default=None, gt=0)


class ErrorDetail(BaseModel):
    kind: str
    message: str
    retryable: bool = False
    status_code: Optional[int] = None
    remote_status: Optional[str] = None


class ReconcileResponse(BaseModel):
    ok: bool
    run_id: str
    intent: Intent
    resource_id: Optional[str] = None
    state: Optional[Dict[str, Any]] = None
    removed: bool = False
    error: Optional[ErrorDetail] = None
    warnings: List[str] = Field(default_factory=list)
    events: List[StageEvent] = Field(default_factory=list)


class ResourceTypeSummary(BaseModel):
    """Describes a configured resource type for ``GET /api/resource-types``."""

    name: str
    identity: List[str]
    fields: List[str]
    poll_interval: float
    timeout: float
    supports_update: bool
