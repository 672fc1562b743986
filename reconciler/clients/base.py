"""Contracts between the reconciliation engine and control-plane clients."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Protocol

from ..models import Intent, ResourceTypeConfig

if TYPE_CHECKING:
    from ..engine.cancellation import CancelToken
    from ..identity import ResourceIdentity


@dataclass
class MutationResult:
    """Result of a create, update or delete call.

    ``identity_fields`` holds whatever scoping keys the call revealed (for a
    create, the server-assigned id); ``response_fields`` everything else the
    response carried.
    """

    status_code: Optional[int] = None
    identity_fields: Dict[str, Any] = field(default_factory=dict)
    response_fields: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and (
            self.status_code is None or 200 <= self.status_code < 300
        )


@dataclass
class FetchResult:
    """One observation of a remote object."""

    snapshot: Optional[Dict[str, Any]] = None
    status_code: Optional[int] = None
    remote_status: Optional[str] = None
    error: Optional[BaseException] = None


class ControlPlaneClient(Protocol):
    """Protocol for clients that mutate and observe remote objects."""

    def mutate(
        self,
        intent: Intent,
        kind: str,
        resource_type: ResourceTypeConfig,
        fields: Mapping[str, Any],
        token: "CancelToken",
    ) -> MutationResult:
        ...

    def fetch_status(
        self,
        kind: str,
        resource_type: ResourceTypeConfig,
        identity: "ResourceIdentity",
        token: "CancelToken",
    ) -> FetchResult:
        ...
