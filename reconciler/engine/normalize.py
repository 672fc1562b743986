"""Value normalisation applied to everything written into durable state."""
from __future__ import annotations

import json
from collections import Counter
from typing import Any


class _Unknown:
    """Placeholder for a planned value the control plane has not decided yet."""

    _instance = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


def strip_unknown(value: Any) -> Any:
    """Replace every ``UNKNOWN`` with ``None``, descending into dicts and lists."""
    if value is UNKNOWN:
        return None
    if isinstance(value, dict):
        return {key: strip_unknown(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [strip_unknown(item) for item in value]
    return value


def contains_unknown(value: Any) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(item) for item in value)
    return False


def keep_prior_order(prior: Any, remote: Any) -> Any:
    """Return ``prior`` when both are lists holding the same elements."""
    if not isinstance(prior, list) or not isinstance(remote, list):
        return remote
    if len(prior) != len(remote):
        return remote
    if Counter(map(_fingerprint, prior)) == Counter(map(_fingerprint, remote)):
        return prior
    return remote


def _fingerprint(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)
