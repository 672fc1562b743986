"""Helpers for reading configuration and writing durable resource state."""
from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol

import yaml

from .constants import MAX_RUN_HISTORY
from .models import ReconcilerConfig, RunRecord, StageEvent


def load_config(path: Path, required: bool = False) -> ReconcilerConfig:
    """Load a YAML config layered over the built-in resource types."""
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Missing reconciler configuration at {path}")
        return ReconcilerConfig.from_mapping()
    data = yaml.safe_load(path.read_text()) or {}
    return ReconcilerConfig.from_mapping(data)


class StateStore(Protocol):
    """Persistence boundary for a single resource's durable state."""

    def load(self) -> Optional[Dict[str, Any]]:
        ...

    def commit(self, fields: Mapping[str, Any], replace: bool = False) -> Dict[str, Any]:
        ...

    def remove(self) -> bool:
        ...


class StateRepository:
    """File-backed persistence for resource state and run history.

    Every read-modify-write of ``state.json`` happens under one lock and the
    file is replaced atomically, so a crash never leaves a half-written state.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.state_path = root / "state.json"
        self._lock = threading.RLock()

    def load_state(self) -> dict[str, Any]:
        with self._lock:
            if not self.state_path.exists():
                return {}
            return json.loads(self.state_path.read_text())

    def save_state(self, state: dict[str, Any]) -> None:
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".state-", suffix=".json")
            try:
                with os.fdopen(fd, "w") as handle:
                    json.dump(state, handle, indent=2, default=str)
                os.replace(tmp_name, self.state_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

    # Resource helpers -----------------------------------------------------

    def store(self, kind: str, key: str) -> "ResourceStateStore":
        return ResourceStateStore(self, kind, key)

    def get_resource(self, kind: str, key: str) -> Optional[Dict[str, Any]]:
        state = self.load_state()
        record = state.get("resources", {}).get(kind, {}).get(key)
        return deepcopy(record) if record is not None else None

    def put_resource(
        self, kind: str, key: str, fields: Mapping[str, Any], replace: bool = False
    ) -> Dict[str, Any]:
        with self._lock:
            state = self.load_state()
            resources = state.setdefault("resources", {}).setdefault(kind, {})
            record = {} if replace else resources.get(key, {})
            record.update(deepcopy(dict(fields)))
            resources[key] = record
            self.save_state(state)
            return deepcopy(record)

    def delete_resource(self, kind: str, key: str) -> bool:
        with self._lock:
            state = self.load_state()
            resources = state.get("resources", {}).get(kind, {})
            if key not in resources:
                return False
            del resources[key]
            if not resources:
                del state["resources"][kind]
            self.save_state(state)
            return True

    def list_resources(self, kind: str) -> Dict[str, Dict[str, Any]]:
        state = self.load_state()
        return deepcopy(state.get("resources", {}).get(kind, {}))

    # Run history helpers -------------------------------------------------

    @contextmanager
    def _edit_run(self, run_id: str) -> Iterator[Dict[str, Any]]:
        """Yield the stored record for ``run_id`` for in-place edits.

        A missing record is appended, trimming history to ``MAX_RUN_HISTORY``.
        The edited state is saved when the block exits without raising.
        """
        with self._lock:
            state = self.load_state()
            runs = state.setdefault("runs", [])
            record = next((item for item in runs if item.get("run_id") == run_id), None)
            if record is None:
                record = {"run_id": run_id, "ok": None, "events": []}
                runs.append(record)
                del runs[:-MAX_RUN_HISTORY]
            yield record
            self.save_state(state)

    def start_run(self, run_id: str) -> None:
        with self._edit_run(run_id):
            pass

    def append_run_event(self, run_id: str, event: StageEvent) -> None:
        with self._edit_run(run_id) as record:
            record.setdefault("events", []).append(event.model_dump(mode="json"))

    def finalize_run(self, run_id: str, ok: bool, summary: str | None = None) -> None:
        with self._edit_run(run_id) as record:
            record["ok"] = ok
            if summary:
                record["summary"] = summary

    def get_run(self, run_id: str) -> RunRecord | None:
        for record in self.load_state().get("runs", []):
            if record.get("run_id") == run_id:
                return RunRecord.model_validate(record)
        return None


class ResourceStateStore:
    """``StateStore`` bound to one resource in a ``StateRepository``."""

    def __init__(self, repo: StateRepository, kind: str, key: str) -> None:
        self.repo = repo
        self.kind = kind
        self.key = key

    def load(self) -> Optional[Dict[str, Any]]:
        return self.repo.get_resource(self.kind, self.key)

    def commit(self, fields: Mapping[str, Any], replace: bool = False) -> Dict[str, Any]:
        return self.repo.put_resource(self.kind, self.key, fields, replace=replace)

    def remove(self) -> bool:
        return self.repo.delete_resource(self.kind, self.key)
