"""Fold a wait outcome into durable state without leaking planned values."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..constants import ID_FIELD
from ..errors import ReconcileError, RemoteFailure, WaitCanceled, WaitTimedOut
from ..identity import ResourceIdentity
from ..models import Intent, ResourceTypeConfig
from ..storage import StateStore
from .normalize import keep_prior_order, strip_unknown
from .waiter import WaitKind, WaitOutcome

log = logging.getLogger(__name__)

_GOALS = {
    Intent.create: "become ready",
    Intent.update: "apply the update",
    Intent.delete: "be deleted",
    Intent.read: "be read",
}


@dataclass
class Reconciliation:
    state: Optional[Dict[str, Any]] = None
    removed: bool = False
    error: Optional[ReconcileError] = None
    warnings: List[str] = field(default_factory=list)


def config_only_fields(resource_type: ResourceTypeConfig, plan: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Planned inputs the control plane never reports back."""
    excluded = set(resource_type.identity_names) | set(resource_type.fields)
    excluded |= set(resource_type.write_once_fields)
    excluded.add(ID_FIELD)
    return {name: value for name, value in (plan or {}).items() if name not in excluded}


def project_snapshot(
    resource_type: ResourceTypeConfig,
    identity: ResourceIdentity,
    base: Mapping[str, Any],
    snapshot: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Overwrite every remote-sourced field of ``base`` from ``snapshot``.

    Declared fields missing from the snapshot become ``None``; fields the
    remote does not own are carried over from ``base``.
    """
    snapshot = snapshot or {}
    unordered = set(resource_type.unordered_fields)
    state: Dict[str, Any] = dict(base)
    for name in resource_type.fields:
        value = snapshot.get(name)
        if name in unordered:
            value = keep_prior_order(base.get(name), value)
        state[name] = value
    for name in resource_type.write_once_fields:
        if snapshot.get(name) is not None:
            state[name] = snapshot[name]
    state.update(identity.state_fields())
    return strip_unknown(state)


def outcome_error(
    intent: Intent, kind: str, identity: ResourceIdentity, outcome: WaitOutcome
) -> ReconcileError:
    goal = _GOALS[intent]
    context = dict(
        resource_id=identity.key,
        status_code=outcome.last_status_code,
        remote_status=outcome.last_remote_status,
        cause=outcome.error,
    )
    if outcome.kind is WaitKind.TIMED_OUT:
        return WaitTimedOut(f"Timed out waiting for {kind} {identity.key} to {goal}", **context)
    if outcome.kind is WaitKind.CANCELED:
        return WaitCanceled(f"Canceled while waiting for {kind} {identity.key} to {goal}", **context)
    if outcome.kind is WaitKind.ALREADY_ABSENT:
        return RemoteFailure(f"{kind} {identity.key} disappeared before it could {goal}", **context)
    return RemoteFailure(f"{kind} {identity.key} failed to {goal}", **context)


class StateReconciler:
    """Applies a wait outcome to a resource's durable state, per intent."""

    def apply(
        self,
        intent: Intent,
        kind: str,
        resource_type: ResourceTypeConfig,
        store: StateStore,
        identity: ResourceIdentity,
        outcome: WaitOutcome,
        prior: Optional[Mapping[str, Any]] = None,
        plan: Optional[Mapping[str, Any]] = None,
        response_fields: Optional[Mapping[str, Any]] = None,
    ) -> Reconciliation:
        if intent is Intent.create:
            return self._after_create(kind, resource_type, store, identity, outcome, prior, plan)
        if intent is Intent.update:
            return self._after_update(
                kind, resource_type, store, identity, outcome, prior, plan, response_fields
            )
        if intent is Intent.delete:
            return self._after_delete(kind, store, identity, outcome, prior)
        raise ValueError(f"Nothing to reconcile for intent {intent.value}")

    def _after_create(self, kind, resource_type, store, identity, outcome, persisted, plan) -> Reconciliation:
        if outcome.kind is not WaitKind.SUCCEEDED:
            log.warning("Create of %s did not complete (%s); keeping partial state", identity, outcome.kind.value)
            return Reconciliation(
                state=dict(persisted) if persisted is not None else None,
                error=outcome_error(Intent.create, kind, identity, outcome),
            )
        base = {**config_only_fields(resource_type, plan), **(persisted or {})}
        state = store.commit(project_snapshot(resource_type, identity, base, outcome.snapshot), replace=True)
        log.info("Created %s", identity)
        return Reconciliation(state=state)

    def _after_update(
        self, kind, resource_type, store, identity, outcome, prior, plan, response_fields
    ) -> Reconciliation:
        if outcome.kind is WaitKind.ALREADY_ABSENT:
            store.remove()
            message = f"{kind} {identity.key} no longer exists remotely; removed from state"
            log.warning(message)
            return Reconciliation(removed=True, warnings=[message])
        if outcome.kind is not WaitKind.SUCCEEDED:
            log.warning("Update of %s did not complete (%s); state left unchanged", identity, outcome.kind.value)
            return Reconciliation(
                state=dict(prior) if prior is not None else None,
                error=outcome_error(Intent.update, kind, identity, outcome),
            )
        base = {
            **(prior or {}),
            **config_only_fields(resource_type, plan),
            **(response_fields or {}),
        }
        state = store.commit(project_snapshot(resource_type, identity, base, outcome.snapshot), replace=True)
        log.info("Updated %s", identity)
        return Reconciliation(state=state)

    def _after_delete(self, kind, store, identity, outcome, prior) -> Reconciliation:
        if outcome.completed:
            store.remove()
            log.info("Deleted %s", identity)
            return Reconciliation(removed=True)
        log.warning("Delete of %s did not complete (%s); state left unchanged", identity, outcome.kind.value)
        return Reconciliation(
            state=dict(prior) if prior is not None else None,
            error=outcome_error(Intent.delete, kind, identity, outcome),
        )
