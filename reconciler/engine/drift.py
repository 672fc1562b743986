"""Read path: refresh local state from the current remote snapshot."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from ..errors import FetchFailed, WaitCanceled, WaitTimedOut
from ..identity import ResourceIdentity
from ..models import Intent, ResourceTypeConfig
from ..storage import StateStore
from .cancellation import CancelToken
from .classifier import Classification, classify, is_retryable
from .reconcile import Reconciliation, project_snapshot
from .waiter import Fetcher, fetch_within

log = logging.getLogger(__name__)


class DriftCorrector:
    """Overwrites every remote-sourced field from a fresh fetch.

    There is no selective merge: a field changed outside this system is always
    surfaced. An absent object is dropped from state; a failed fetch leaves
    state untouched.
    """

    def refresh(
        self,
        kind: str,
        resource_type: ResourceTypeConfig,
        store: StateStore,
        identity: ResourceIdentity,
        fetch: Fetcher,
        token: CancelToken,
        prior: Optional[Mapping[str, Any]] = None,
    ) -> Reconciliation:
        if prior is None:
            prior = store.load() or {}
        result = fetch_within(fetch, token)
        if result is None:
            error_cls = WaitCanceled if token.cancelled else WaitTimedOut
            log.warning("Reading %s abandoned (%s)", identity, token.reason)
            return Reconciliation(
                state=dict(prior) if prior else None,
                error=error_cls(
                    f"Reading {kind} {identity.key} ended by {token.reason}",
                    resource_id=identity.key,
                ),
            )
        classification = classify(
            Intent.read,
            result.status_code,
            result.remote_status,
            resource_type.statuses,
            error=result.error,
        )

        if classification is Classification.ALREADY_ABSENT:
            store.remove()
            reconciliation = Reconciliation(removed=True)
            if result.remote_status is not None and result.remote_status in resource_type.statuses.absent:
                message = (
                    f"{kind} {identity.key} is {result.remote_status} remotely; removed from state"
                )
                log.warning(message)
                reconciliation.warnings.append(message)
            else:
                log.info("%s not found remotely (code %s); removed from state", identity, result.status_code)
            return reconciliation

        if classification is not Classification.SUCCEEDED:
            retryable = is_retryable(result.status_code, result.error)
            log.warning("Reading %s failed (code %s)", identity, result.status_code)
            return Reconciliation(
                state=dict(prior) if prior else None,
                error=FetchFailed(
                    f"Reading {kind} {identity.key} failed",
                    retryable=retryable,
                    resource_id=identity.key,
                    status_code=result.status_code,
                    remote_status=result.remote_status,
                    cause=result.error,
                ),
            )

        state: Dict[str, Any] = store.commit(
            project_snapshot(resource_type, identity, prior, result.snapshot), replace=True
        )
        log.debug("Refreshed %s", identity)
        return Reconciliation(state=state)
