"""Commit a freshly accepted object's identity before waiting on it."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from ..clients.base import MutationResult
from ..errors import InvalidRequest, MutationRejected
from ..identity import ResourceIdentity
from ..models import ResourceTypeConfig
from ..storage import StateRepository
from .normalize import strip_unknown

log = logging.getLogger(__name__)


class IdentityPersister:
    """Writes the minimal durable identity the instant a mutation is accepted.

    Only the identity and the fields the mutating call itself returned are
    written; planned values stay out of the store until a wait confirms them.
    """

    def __init__(self, repo: StateRepository) -> None:
        self.repo = repo

    def persist(
        self,
        kind: str,
        resource_type: ResourceTypeConfig,
        scope: Mapping[str, Any],
        mutation: MutationResult,
    ) -> Tuple[ResourceIdentity, Dict[str, Any]]:
        identity = self.identify(kind, resource_type, scope, mutation)
        fields = self.initial_fields(resource_type, identity, mutation.response_fields)
        state = self.repo.store(kind, identity.key).commit(fields, replace=True)
        log.info("Persisted identity for %s before waiting", identity)
        return identity, state

    @staticmethod
    def identify(
        kind: str,
        resource_type: ResourceTypeConfig,
        scope: Mapping[str, Any],
        mutation: MutationResult,
    ) -> ResourceIdentity:
        merged: Dict[str, Any] = {
            name: scope.get(name) for name in resource_type.identity_names
        }
        for name, value in mutation.identity_fields.items():
            if value is not None:
                merged[name] = value
        try:
            return ResourceIdentity.from_fields(kind, resource_type.identity, merged)
        except InvalidRequest as exc:
            log.warning(
                "Accepted %s mutation returned unusable identity %r (status %s)",
                kind,
                mutation.identity_fields,
                mutation.status_code,
            )
            raise MutationRejected(
                f"Mutation for {kind} was accepted without a usable identity: {exc.message}",
                status_code=mutation.status_code,
            ) from exc

    @staticmethod
    def initial_fields(
        resource_type: ResourceTypeConfig,
        identity: ResourceIdentity,
        response_fields: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        identity_names = set(resource_type.identity_names)
        fields: Dict[str, Any] = {
            name: value
            for name, value in (response_fields or {}).items()
            if name not in identity_names
        }
        fields.update(identity.state_fields())
        return strip_unknown(fields)
