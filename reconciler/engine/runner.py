"""Lifecycle orchestrator sequencing mutate, persist, wait and reconcile."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from ..clients.base import ControlPlaneClient, MutationResult
from ..constants import ABSENT_STATUS_CODES, FETCH_WAIT_SLICE, UPDATE_MISSING_STATUS_CODE
from ..errors import InvalidRequest, MutationRejected, NotTracked, ReconcileError
from ..identity import ResourceIdentity
from ..models import Intent, ReconcilerConfig, ResourceTypeConfig, StageEvent
from ..storage import StateRepository
from .cancellation import CancelToken
from .drift import DriftCorrector
from .normalize import strip_unknown
from .persister import IdentityPersister
from .reconcile import Reconciliation, StateReconciler
from .waiter import Fetcher, PollWaiter, WaitOutcome

log = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """What a lifecycle call left behind: the committed state and any error."""

    intent: Intent
    kind: str
    resource_id: Optional[str] = None
    state: Optional[Dict[str, Any]] = None
    removed: bool = False
    error: Optional[ReconcileError] = None
    warnings: List[str] = field(default_factory=list)
    events: List[StageEvent] = field(default_factory=list)
    run_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "ReconcileResult":
        if self.error is not None:
            raise self.error
        return self


class LifecycleOrchestrator:
    """Single entry point for create, read, update, delete and import.

    Every call is recorded as a run in the repository so its stage events can
    be inspected or streamed afterwards.
    """

    def __init__(
        self,
        repo: StateRepository,
        config: ReconcilerConfig,
        client: ControlPlaneClient,
        fetch_slice: float = FETCH_WAIT_SLICE,
    ) -> None:
        self.repo = repo
        self.config = config
        self.client = client
        self.fetch_slice = fetch_slice
        self.persister = IdentityPersister(repo)
        self.reconciler = StateReconciler()
        self.drift = DriftCorrector()

    # ------------------------------------------------------------ public API

    def create(self, kind: str, plan: Mapping[str, Any], **kwargs) -> ReconcileResult:
        return self.reconcile(Intent.create, kind, plan=plan, **kwargs)

    def read(self, kind: str, resource_id: str, **kwargs) -> ReconcileResult:
        return self.reconcile(Intent.read, kind, resource_id=resource_id, **kwargs)

    def update(
        self, kind: str, resource_id: str, plan: Mapping[str, Any], **kwargs
    ) -> ReconcileResult:
        return self.reconcile(Intent.update, kind, plan=plan, resource_id=resource_id, **kwargs)

    def delete(self, kind: str, resource_id: str, **kwargs) -> ReconcileResult:
        return self.reconcile(Intent.delete, kind, resource_id=resource_id, **kwargs)

    def reconcile(
        self,
        intent: Intent,
        kind: str,
        *,
        plan: Optional[Mapping[str, Any]] = None,
        resource_id: Optional[str] = None,
        timeout: Optional[float] = None,
        token: Optional[CancelToken] = None,
        run_id: Optional[str] = None,
    ) -> ReconcileResult:
        result = ReconcileResult(intent=intent, kind=kind, run_id=run_id or str(uuid4()))
        self.repo.start_run(result.run_id)
        try:
            self._record(result, "validate", "started", f"{intent.value} {kind}")
            resource_type = self._resource_type(kind)
            self._record(result, "validate", "ok")
            call_timeout = resource_type.timeout if timeout is None else timeout
            with (token or CancelToken.never()).child(call_timeout) as call_token:
                if intent is Intent.create:
                    self._create(result, resource_type, plan or {}, call_token)
                elif intent is Intent.update:
                    self._update(result, resource_type, self._require(resource_id), plan or {}, call_token)
                elif intent is Intent.delete:
                    self._delete(result, resource_type, self._require(resource_id), call_token)
                else:
                    self._read(result, resource_type, self._require(resource_id), call_token)
        except InvalidRequest as exc:
            result.error = exc
            self._record(result, "validate", "failed", exc.message)
        self._finish(result)
        return result

    def import_state(
        self,
        kind: str,
        resource_id: str,
        *,
        timeout: Optional[float] = None,
        token: Optional[CancelToken] = None,
        run_id: Optional[str] = None,
    ) -> ReconcileResult:
        """Start tracking an existing object by its composite id, then read it."""
        result = ReconcileResult(intent=Intent.read, kind=kind, run_id=run_id or str(uuid4()))
        self.repo.start_run(result.run_id)
        try:
            self._record(result, "validate", "started", f"import {kind}")
            resource_type = self._resource_type(kind)
            identity = self._identity_from_id(kind, resource_type, resource_id)
            self._record(result, "validate", "ok", identity.key)
        except InvalidRequest as exc:
            result.error = exc
            self._record(result, "validate", "failed", exc.message)
            self._finish(result)
            return result

        store = self.repo.store(kind, identity.key)
        if store.load() is None:
            store.commit(identity.state_fields(), replace=True)
            self._record(result, "persist.identity", "ok", identity.key)
        else:
            self._record(result, "persist.identity", "ok", "already tracked")
        call_timeout = resource_type.timeout if timeout is None else timeout
        with (token or CancelToken.never()).child(call_timeout) as call_token:
            try:
                self._read(result, resource_type, identity.key, call_token)
            except InvalidRequest as exc:
                result.error = exc
                self._record(result, "read", "failed", exc.message)
        self._finish(result)
        return result

    # ------------------------------------------------------------- intents

    def _create(
        self,
        result: ReconcileResult,
        resource_type: ResourceTypeConfig,
        plan: Mapping[str, Any],
        token: CancelToken,
    ) -> None:
        kind = result.kind
        scope = self._with_region_default(resource_type, strip_unknown(dict(plan)))
        mutation = self._mutate(result, Intent.create, resource_type, scope, token)
        if not mutation.ok:
            result.error = MutationRejected(
                f"Creating {kind} failed",
                status_code=mutation.status_code,
                cause=mutation.error,
            )
            return

        try:
            identity, state = self.persister.persist(kind, resource_type, scope, mutation)
        except MutationRejected as exc:
            result.error = exc
            self._record(result, "persist.identity", "failed", exc.message)
            return
        result.resource_id = identity.key
        result.state = state
        self._record(result, "persist.identity", "ok", identity.key)

        outcome = self._wait(result, Intent.create, resource_type, identity, token)
        self._apply(
            result,
            self.reconciler.apply(
                Intent.create,
                kind,
                resource_type,
                self.repo.store(kind, identity.key),
                identity,
                outcome,
                prior=state,
                plan=plan,
            ),
        )

    def _update(
        self,
        result: ReconcileResult,
        resource_type: ResourceTypeConfig,
        resource_id: str,
        plan: Mapping[str, Any],
        token: CancelToken,
    ) -> None:
        kind = result.kind
        if not resource_type.supports_update:
            raise InvalidRequest(f"{kind} does not support in-place updates")
        identity = self._identity_from_id(kind, resource_type, resource_id)
        result.resource_id = identity.key
        store = self.repo.store(kind, identity.key)
        prior = store.load()
        if prior is None:
            raise NotTracked(f"{kind} {identity.key} is not tracked", resource_id=identity.key)
        result.state = prior

        fields = {**strip_unknown(dict(plan)), **identity.fields}
        mutation = self._mutate(result, Intent.update, resource_type, fields, token)
        if mutation.status_code == UPDATE_MISSING_STATUS_CODE:
            store.remove()
            message = f"{kind} {identity.key} was not found remotely; removed from state"
            log.warning(message)
            result.state = None
            result.removed = True
            result.warnings.append(message)
            return
        if not mutation.ok:
            result.error = MutationRejected(
                f"Updating {kind} {identity.key} failed",
                resource_id=identity.key,
                status_code=mutation.status_code,
                cause=mutation.error,
            )
            return

        outcome = self._wait(result, Intent.update, resource_type, identity, token)
        response_fields = {
            name: value
            for name, value in mutation.response_fields.items()
            if name not in resource_type.identity_names
        }
        self._apply(
            result,
            self.reconciler.apply(
                Intent.update,
                kind,
                resource_type,
                store,
                identity,
                outcome,
                prior=prior,
                plan=plan,
                response_fields=response_fields,
            ),
        )

    def _delete(
        self,
        result: ReconcileResult,
        resource_type: ResourceTypeConfig,
        resource_id: str,
        token: CancelToken,
    ) -> None:
        kind = result.kind
        identity = self._identity_from_id(kind, resource_type, resource_id)
        result.resource_id = identity.key
        store = self.repo.store(kind, identity.key)
        prior = store.load()
        result.state = prior

        mutation = self._mutate(result, Intent.delete, resource_type, identity.fields, token)
        if mutation.status_code in ABSENT_STATUS_CODES:
            store.remove()
            log.info("%s already absent (code %s); removed from state", identity, mutation.status_code)
            result.state = None
            result.removed = True
            return
        if not mutation.ok:
            result.error = MutationRejected(
                f"Deleting {kind} {identity.key} failed",
                resource_id=identity.key,
                status_code=mutation.status_code,
                cause=mutation.error,
            )
            return

        outcome = self._wait(result, Intent.delete, resource_type, identity, token)
        self._apply(
            result,
            self.reconciler.apply(
                Intent.delete, kind, resource_type, store, identity, outcome, prior=prior
            ),
        )

    def _read(
        self,
        result: ReconcileResult,
        resource_type: ResourceTypeConfig,
        resource_id: str,
        token: CancelToken,
    ) -> None:
        kind = result.kind
        identity = self._identity_from_id(kind, resource_type, resource_id)
        result.resource_id = identity.key
        store = self.repo.store(kind, identity.key)
        prior = store.load()
        if prior is None:
            raise NotTracked(f"{kind} {identity.key} is not tracked", resource_id=identity.key)
        result.state = prior

        self._record(result, "read", "started")
        reconciliation = self.drift.refresh(
            kind, resource_type, store, identity, self._fetcher(kind, resource_type, identity), token, prior
        )
        self._apply(result, reconciliation, stage="read")

    # ------------------------------------------------------------- helpers

    def _resource_type(self, kind: str) -> ResourceTypeConfig:
        try:
            return self.config.resource_type(kind)
        except KeyError as exc:
            raise InvalidRequest(exc.args[0]) from None

    @staticmethod
    def _require(resource_id: Optional[str]) -> str:
        if not resource_id:
            raise InvalidRequest("A resource id is required")
        return resource_id

    def _with_region_default(
        self, resource_type: ResourceTypeConfig, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        for key in resource_type.identity:
            if not key.default_region or fields.get(key.name) not in (None, ""):
                continue
            if not self.config.default_region:
                raise InvalidRequest(
                    f"{key.name} must be set explicitly when no default region is configured"
                )
            fields[key.name] = self.config.default_region
        return fields

    def _identity_from_id(
        self, kind: str, resource_type: ResourceTypeConfig, resource_id: str
    ) -> ResourceIdentity:
        parsed = ResourceIdentity.parse(kind, resource_type.identity, resource_id)
        fields = self._with_region_default(resource_type, dict(parsed.keys))
        return ResourceIdentity.from_fields(kind, resource_type.identity, fields)

    def _fetcher(
        self, kind: str, resource_type: ResourceTypeConfig, identity: ResourceIdentity
    ) -> Fetcher:
        def fetch(token: CancelToken):
            return self.client.fetch_status(kind, resource_type, identity, token)

        return fetch

    def _mutate(
        self,
        result: ReconcileResult,
        intent: Intent,
        resource_type: ResourceTypeConfig,
        fields: Mapping[str, Any],
        token: CancelToken,
    ) -> MutationResult:
        self._record(result, "mutate", "started", intent.value)
        mutation = self.client.mutate(intent, result.kind, resource_type, fields, token)
        detail = f"code={mutation.status_code}"
        if mutation.error is not None:
            detail += f" error={mutation.error}"
        gone = intent is Intent.delete and mutation.status_code in ABSENT_STATUS_CODES
        self._record(result, "mutate", "ok" if mutation.ok or gone else "failed", detail)
        return mutation

    def _wait(
        self,
        result: ReconcileResult,
        intent: Intent,
        resource_type: ResourceTypeConfig,
        identity: ResourceIdentity,
        token: CancelToken,
    ) -> WaitOutcome:
        self._record(result, "wait", "started", f"every {resource_type.poll_interval}s")
        waiter = PollWaiter(resource_type.poll_interval, self.fetch_slice)
        outcome = waiter.wait(
            self._fetcher(result.kind, resource_type, identity), token, intent, resource_type.statuses
        )
        detail = f"{outcome.kind.value} after {outcome.attempts} polls"
        self._record(result, "wait", "ok" if outcome.completed else "failed", detail)
        return outcome

    def _apply(
        self, result: ReconcileResult, reconciliation: Reconciliation, stage: str = "reconcile"
    ) -> None:
        result.state = reconciliation.state
        result.removed = reconciliation.removed
        result.error = reconciliation.error
        result.warnings.extend(reconciliation.warnings)
        if reconciliation.error is not None:
            self._record(result, stage, "failed", str(reconciliation.error))
        elif reconciliation.removed:
            self._record(result, stage, "ok", "removed")
        else:
            self._record(result, stage, "ok")

    def _finish(self, result: ReconcileResult) -> None:
        if result.error is not None:
            summary = str(result.error)
        elif result.removed:
            summary = f"{result.kind} {result.resource_id} removed"
        else:
            summary = f"{result.intent.value} {result.kind} {result.resource_id}"
        if result.warnings:
            summary += f" ({len(result.warnings)} warnings)"
        self.repo.finalize_run(result.run_id, ok=result.ok, summary=summary)

    def _record(
        self,
        result: ReconcileResult,
        stage: str,
        status: str,
        detail: str | None = None,
    ) -> None:
        event = StageEvent(stage=stage, status=status, detail=detail)
        result.events.append(event)
        self.repo.append_run_event(result.run_id, event)
