"""Tests for the cancel token and the poll-based wait engine."""
from __future__ import annotations

import threading
import time
from pathlib import Path

import httpx

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from reconciler.clients.base import FetchResult
from reconciler.engine.cancellation import CancelToken
from reconciler.engine.waiter import PollWaiter, WaitKind, fetch_within, guarded_fetch
from reconciler.models import Intent, StatusTable

TABLE = StatusTable(
    success=frozenset({"READY"}),
    failure=frozenset({"ERROR"}),
    absent=frozenset({"GONE"}),
)


def sequence(*results: FetchResult):
    """Fetcher returning ``results`` in order, repeating the last one."""
    queue = list(results)
    calls = []

    def fetch(token: CancelToken) -> FetchResult:
        calls.append(time.monotonic())
        return queue.pop(0) if len(queue) > 1 else queue[0]

    fetch.calls = calls
    return fetch


class TestCancelToken:
    """Deadline and cancel semantics."""

    def test_never_is_unbounded(self):
        token = CancelToken.never()
        assert token.remaining() is None
        assert not token.done
        assert token.reason is None

    def test_timeout_expires(self):
        token = CancelToken.with_timeout(0.01)
        time.sleep(0.02)
        assert token.expired
        assert token.done
        assert token.reason == "timeout"

    def test_cancel_sets_reason(self):
        token = CancelToken.never()
        token.cancel()
        assert token.cancelled
        assert token.reason == "canceled"

    def test_child_inherits_earlier_deadline(self):
        parent = CancelToken.with_timeout(0.05)
        child = parent.child(10)
        assert child.deadline == parent.deadline

    def test_child_takes_own_shorter_deadline(self):
        parent = CancelToken.with_timeout(10)
        child = parent.child(0.05)
        assert child.deadline < parent.deadline

    def test_cancel_cascades_to_children(self):
        parent = CancelToken.never()
        child = parent.child(None)
        grandchild = child.child(5)
        parent.cancel()
        assert child.cancelled
        assert grandchild.cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self):
        parent = CancelToken.never()
        parent.cancel()
        assert parent.child(5).cancelled

    def test_released_child_is_detached(self):
        parent = CancelToken.never()
        with parent.child(5) as child:
            assert parent._children == [child]
        assert parent._children == []
        parent.cancel()
        assert not child.cancelled

    def test_release_after_parent_cancel(self):
        parent = CancelToken.never()
        child = parent.child(5)
        parent.cancel()
        child.release()
        assert child.cancelled
        child.release()

    def test_sleep_is_interrupted_by_cancel(self):
        token = CancelToken.never()
        threading.Timer(0.02, token.cancel).start()
        started = time.monotonic()
        assert token.sleep(5) is False
        assert time.monotonic() - started < 1

    def test_sleep_stops_at_deadline(self):
        token = CancelToken.with_timeout(0.03)
        started = time.monotonic()
        assert token.sleep(5) is False
        assert time.monotonic() - started < 1

    def test_sleep_completes(self):
        assert CancelToken.never().sleep(0.01) is True


class TestPollWaiter:
    """Poll loop outcomes."""

    def test_succeeds_after_pending(self):
        fetch = sequence(
            FetchResult(snapshot={"status": "CREATING"}, status_code=200, remote_status="CREATING"),
            FetchResult(snapshot={"status": "READY"}, status_code=200, remote_status="READY"),
        )
        outcome = PollWaiter(0.01).wait(fetch, CancelToken.with_timeout(5), Intent.create, TABLE)
        assert outcome.kind is WaitKind.SUCCEEDED
        assert outcome.snapshot == {"status": "READY"}
        assert outcome.attempts == 2
        assert outcome.completed

    def test_failure_status_is_terminal(self):
        fetch = sequence(FetchResult(snapshot={}, status_code=200, remote_status="ERROR"))
        outcome = PollWaiter(0.01).wait(fetch, CancelToken.with_timeout(5), Intent.create, TABLE)
        assert outcome.kind is WaitKind.FAILED
        assert outcome.last_remote_status == "ERROR"
        assert not outcome.completed

    def test_delete_confirmed_by_not_found(self):
        fetch = sequence(
            FetchResult(snapshot={}, status_code=200, remote_status="DELETING"),
            FetchResult(status_code=404),
        )
        outcome = PollWaiter(0.01).wait(fetch, CancelToken.with_timeout(5), Intent.delete, TABLE)
        assert outcome.kind is WaitKind.ALREADY_ABSENT
        assert outcome.completed

    def test_timeout_carries_last_error(self):
        error = httpx.ConnectError("refused")
        fetch = sequence(FetchResult(error=error))
        outcome = PollWaiter(0.01).wait(fetch, CancelToken.with_timeout(0.05), Intent.create, TABLE)
        assert outcome.kind is WaitKind.TIMED_OUT
        assert outcome.error is error
        assert outcome.attempts >= 1

    def test_cancel_ends_wait(self):
        token = CancelToken.with_timeout(5)
        fetch = sequence(FetchResult(snapshot={}, status_code=200, remote_status="CREATING"))
        threading.Timer(0.05, token.cancel).start()
        started = time.monotonic()
        outcome = PollWaiter(0.01).wait(fetch, token, Intent.create, TABLE)
        assert outcome.kind is WaitKind.CANCELED
        assert time.monotonic() - started < 1

    def test_already_done_token_never_fetches(self):
        token = CancelToken.never()
        token.cancel()
        fetch = sequence(FetchResult(status_code=200, remote_status="READY"))
        outcome = PollWaiter(0.01).wait(fetch, token, Intent.create, TABLE)
        assert outcome.kind is WaitKind.CANCELED
        assert fetch.calls == []

    def test_fixed_interval_between_polls(self):
        fetch = sequence(
            FetchResult(snapshot={}, status_code=200, remote_status="CREATING"),
            FetchResult(snapshot={}, status_code=200, remote_status="CREATING"),
            FetchResult(snapshot={}, status_code=200, remote_status="READY"),
        )
        PollWaiter(0.05).wait(fetch, CancelToken.with_timeout(5), Intent.create, TABLE)
        gaps = [later - earlier for earlier, later in zip(fetch.calls, fetch.calls[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.045 for gap in gaps)

    def test_in_flight_fetch_is_abandoned_at_deadline(self):
        """The wait ends at the deadline, not when the slow fetch returns."""

        def slow_fetch(token: CancelToken) -> FetchResult:
            time.sleep(0.5)
            return FetchResult(snapshot={}, status_code=200, remote_status="READY")

        started = time.monotonic()
        outcome = PollWaiter(1.0).wait(slow_fetch, CancelToken.with_timeout(0.1), Intent.create, TABLE)
        elapsed = time.monotonic() - started
        assert outcome.kind is WaitKind.TIMED_OUT
        assert outcome.snapshot is None
        assert elapsed < 0.3


class TestFetchHelpers:
    """Exceptions raised by a fetch become result values."""

    def test_guarded_fetch_captures_http_status(self):
        request = httpx.Request("GET", "https://api.example.test/thing")
        response = httpx.Response(503, request=request)

        def failing(token: CancelToken) -> FetchResult:
            raise httpx.HTTPStatusError("unavailable", request=request, response=response)

        result = guarded_fetch(failing, CancelToken.never())
        assert result.status_code == 503
        assert isinstance(result.error, httpx.HTTPStatusError)

    def test_guarded_fetch_captures_plain_errors(self):
        def failing(token: CancelToken) -> FetchResult:
            raise RuntimeError("boom")

        result = guarded_fetch(failing, CancelToken.never())
        assert result.status_code is None
        assert isinstance(result.error, RuntimeError)

    def test_fetch_within_returns_result(self):
        result = fetch_within(sequence(FetchResult(status_code=200)), CancelToken.with_timeout(1))
        assert result is not None
        assert result.status_code == 200

    def test_fetch_within_gives_up_on_cancel(self):
        token = CancelToken.never()

        def hanging(t: CancelToken) -> FetchResult:
            time.sleep(0.5)
            return FetchResult(status_code=200)

        threading.Timer(0.05, token.cancel).start()
        assert fetch_within(hanging, token) is None
