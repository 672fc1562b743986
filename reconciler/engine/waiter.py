"""Poll a remote object until it reaches a terminal condition or the token fires."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from ..clients.base import FetchResult
from ..constants import FETCH_WAIT_SLICE
from ..models import Intent, StatusTable
from .cancellation import CancelToken
from .classifier import Classification, classify

log = logging.getLogger(__name__)

Fetcher = Callable[[CancelToken], FetchResult]


class WaitKind(str, Enum):
    SUCCEEDED = "succeeded"
    ALREADY_ABSENT = "already_absent"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"
    FAILED = "failed"


@dataclass(frozen=True)
class WaitOutcome:
    kind: WaitKind
    snapshot: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    last_status_code: Optional[int] = None
    last_remote_status: Optional[str] = None
    attempts: int = 0

    @property
    def completed(self) -> bool:
        """True when the object reached a terminal state the caller asked for."""
        return self.kind in (WaitKind.SUCCEEDED, WaitKind.ALREADY_ABSENT)


_TERMINAL_KINDS = {
    Classification.SUCCEEDED: WaitKind.SUCCEEDED,
    Classification.ALREADY_ABSENT: WaitKind.ALREADY_ABSENT,
    Classification.REMOTE_FAILURE: WaitKind.FAILED,
}


class PollWaiter:
    """Fixed-interval poll loop bounded by a ``CancelToken``.

    Each fetch runs on a worker thread so that a deadline firing while the
    fetch is in flight ends the wait immediately; the late result of such a
    fetch is discarded.
    """

    def __init__(self, poll_interval: float, fetch_slice: float = FETCH_WAIT_SLICE) -> None:
        self.poll_interval = poll_interval
        self.fetch_slice = fetch_slice

    def wait(
        self,
        fetch: Fetcher,
        token: CancelToken,
        intent: Intent,
        table: StatusTable,
    ) -> WaitOutcome:
        attempts = 0
        last = FetchResult()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reconciler-fetch")
        try:
            while not token.done:
                attempts += 1
                result = self._fetch(executor, fetch, token)
                if result is None:
                    break
                last = result
                classification = classify(
                    intent, result.status_code, result.remote_status, table, error=result.error
                )
                log.debug(
                    "Poll %d for %s: code=%s status=%s -> %s",
                    attempts,
                    intent.value,
                    result.status_code,
                    result.remote_status,
                    classification.value,
                )
                if classification.terminal:
                    return WaitOutcome(
                        kind=_TERMINAL_KINDS[classification],
                        snapshot=result.snapshot,
                        error=result.error,
                        last_status_code=result.status_code,
                        last_remote_status=result.remote_status,
                        attempts=attempts,
                    )
                if not token.sleep(self.poll_interval):
                    break
        finally:
            executor.shutdown(wait=False)

        kind = WaitKind.CANCELED if token.cancelled else WaitKind.TIMED_OUT
        log.debug("Wait for %s ended by %s after %d attempts", intent.value, kind.value, attempts)
        return WaitOutcome(
            kind=kind,
            error=last.error,
            last_status_code=last.status_code,
            last_remote_status=last.remote_status,
            attempts=attempts,
        )

    def _fetch(
        self, executor: ThreadPoolExecutor, fetch: Fetcher, token: CancelToken
    ) -> Optional[FetchResult]:
        return fetch_within(fetch, token, executor, self.fetch_slice)


def fetch_within(
    fetch: Fetcher,
    token: CancelToken,
    executor: Optional[ThreadPoolExecutor] = None,
    fetch_slice: float = FETCH_WAIT_SLICE,
) -> Optional[FetchResult]:
    """Run one fetch, giving up on it as soon as the token fires.

    Returns ``None`` when the fetch was abandoned.
    """
    if token.done:
        return None
    owned = executor is None
    if executor is None:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reconciler-fetch")
    try:
        future: Future = executor.submit(guarded_fetch, fetch, token)
        while True:
            remaining = token.remaining()
            timeout = fetch_slice if remaining is None else min(fetch_slice, remaining)
            try:
                return future.result(timeout=timeout)
            except FutureTimeout:
                if token.done:
                    future.cancel()
                    log.debug("Abandoning in-flight fetch (%s)", token.reason)
                    return None
    finally:
        if owned:
            executor.shutdown(wait=False)


def guarded_fetch(fetch: Fetcher, token: CancelToken) -> FetchResult:
    try:
        return fetch(token)
    except Exception as exc:
        log.debug("Fetch raised %s", exc.__class__.__name__, exc_info=True)
        return FetchResult(status_code=status_code_of(exc), error=exc)


def status_code_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None
