"""Error taxonomy surfaced by lifecycle reconciliation."""
from __future__ import annotations

from typing import Optional


class ReconcileError(Exception):
    """Base class for failures returned from a lifecycle call.

    Carries the last transport status and remote status observed so the
    caller can decide whether re-invoking the same intent is worthwhile.
    """

    kind = "reconcile_error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        resource_id: Optional[str] = None,
        status_code: Optional[int] = None,
        remote_status: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id
        self.status_code = status_code
        self.remote_status = remote_status
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status code {self.status_code}")
        if self.remote_status:
            parts.append(f"remote status {self.remote_status!r}")
        if self.cause is not None and str(self.cause) not in self.message:
            parts.append(str(self.cause))
        return "; ".join(parts)


class InvalidRequest(ReconcileError):
    """The request could not be turned into a lifecycle call."""

    kind = "invalid_request"


class NotTracked(InvalidRequest):
    """The resource id names nothing in durable state."""

    kind = "not_tracked"


class MutationRejected(ReconcileError):
    """The mutating call failed before any identity was known."""

    kind = "mutation_rejected"


class WaitTimedOut(ReconcileError):
    kind = "wait_timed_out"
    retryable = True


class WaitCanceled(ReconcileError):
    kind = "wait_canceled"
    retryable = True


class RemoteFailure(ReconcileError):
    """The control plane reported a terminal failure for the object."""

    kind = "remote_failure"


class FetchFailed(ReconcileError):
    """Reading the object failed outside of any mutation."""

    kind = "fetch_failed"

    def __init__(self, message: str, *, retryable: bool = False, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable
