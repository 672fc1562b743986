"""Map a transport result and remote status onto a small outcome set."""
from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple, Type

import httpx

from ..constants import ABSENT_STATUS_CODES, READ_ABSENT_STATUS_CODES, RETRYABLE_STATUS_CODES
from ..models import Intent, StatusTable

# Transport exceptions that are worth polling through
RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)


class Classification(str, Enum):
    SUCCEEDED = "succeeded"
    ALREADY_ABSENT = "already_absent"
    STILL_PENDING = "still_pending"
    REMOTE_FAILURE = "remote_failure"

    @property
    def terminal(self) -> bool:
        return self is not Classification.STILL_PENDING


def is_retryable(status_code: Optional[int], error: Optional[BaseException] = None) -> bool:
    """Whether a failed call is transient rather than a verdict on the object."""
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES
    return isinstance(error, RETRYABLE_EXCEPTIONS)


def is_success_code(status_code: Optional[int]) -> bool:
    return status_code is not None and 200 <= status_code < 300


def classify(
    intent: Intent,
    status_code: Optional[int],
    remote_status: Optional[str],
    table: StatusTable,
    error: Optional[BaseException] = None,
) -> Classification:
    if intent is Intent.delete and status_code in ABSENT_STATUS_CODES:
        return Classification.ALREADY_ABSENT
    if intent is Intent.read and status_code in READ_ABSENT_STATUS_CODES:
        return Classification.ALREADY_ABSENT
    if status_code in ABSENT_STATUS_CODES:
        # A freshly accepted object may not be visible yet; one that vanishes
        # mid-update is a failure of the update.
        if intent is Intent.create:
            return Classification.STILL_PENDING
        return Classification.REMOTE_FAILURE

    if error is not None or (status_code is not None and not is_success_code(status_code)):
        if is_retryable(status_code, error):
            return Classification.STILL_PENDING
        return Classification.REMOTE_FAILURE

    if remote_status is not None and remote_status in table.absent:
        return Classification.ALREADY_ABSENT
    # A read reports whatever exists, failed objects included.
    if intent is Intent.read:
        return Classification.SUCCEEDED
    if remote_status is not None and remote_status in table.failure:
        return Classification.REMOTE_FAILURE
    if intent is Intent.delete:
        return Classification.STILL_PENDING
    if not table.success or remote_status in table.success:
        return Classification.SUCCEEDED
    return Classification.STILL_PENDING
