"""Deadline and cancellation signal threaded through every fetch and sleep."""
from __future__ import annotations

import threading
import time
from typing import List, Optional


class CancelToken:
    """A single deadline plus an explicit cancel switch.

    Tokens are cheap to create and safe to share between threads. A child
    token never outlives its parent: it inherits the earlier deadline and is
    cancelled together with the parent.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self._deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["CancelToken"] = []
        self._parent: Optional["CancelToken"] = None
        self._reason: Optional[str] = None

    @classmethod
    def never(cls) -> "CancelToken":
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        return cls(deadline=time.monotonic() + max(seconds, 0.0))

    def child(self, timeout: Optional[float] = None) -> "CancelToken":
        deadline = self._deadline
        if timeout is not None:
            candidate = time.monotonic() + max(timeout, 0.0)
            deadline = candidate if deadline is None else min(deadline, candidate)
        child = CancelToken(deadline)
        child._parent = self
        with self._lock:
            if self._event.is_set():
                child.cancel()
            else:
                self._children.append(child)
        return child

    # ------------------------------------------------------------------ state

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    @property
    def reason(self) -> Optional[str]:
        if self.cancelled:
            return "canceled"
        if self.expired:
            return "timeout"
        return None

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when unbounded."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    # --------------------------------------------------------------- actions

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return False if the token fired first."""
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return False
        if self._event.wait(seconds):
            return False
        return not self.done

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return True if cancelled."""
        return self._event.wait(timeout)

    def release(self) -> None:
        """Detach from the parent; the parent stops cancelling this token."""
        parent, self._parent = self._parent, None
        if parent is None:
            return
        with parent._lock:
            if self in parent._children:
                parent._children.remove(self)

    def __enter__(self) -> "CancelToken":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
