"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Union
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconciler.app import app
from reconciler.clients.base import FetchResult, MutationResult
from reconciler.constants import BUILTIN_RESOURCE_TYPES
from reconciler.engine.cancellation import CancelToken
from reconciler.engine.runner import LifecycleOrchestrator
from reconciler.models import Intent, ReconcilerConfig
from reconciler.storage import StateRepository

ScriptedFetch = Union[FetchResult, Callable[[CancelToken], FetchResult]]


class FakeControlPlane:
    """Scripted in-memory control plane.

    Each queue hands out its entries in order and keeps repeating the last
    one, so a script of ``[pending, ready]`` polls pending once and then
    stays ready.
    """

    def __init__(self) -> None:
        self.mutations: Dict[Intent, List[MutationResult]] = {}
        self.fetches: List[ScriptedFetch] = []
        self.mutate_calls: List[Dict[str, Any]] = []
        self.fetch_calls = 0

    def script_mutation(self, intent: Intent, *results: MutationResult) -> None:
        self.mutations[intent] = list(results)

    def script_fetch(self, *results: ScriptedFetch) -> None:
        self.fetches = list(results)

    def mutate(self, intent, kind, resource_type, fields, token) -> MutationResult:
        self.mutate_calls.append({"intent": intent, "kind": kind, "fields": dict(fields)})
        queue = self.mutations.get(intent) or [MutationResult(status_code=200)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def fetch_status(self, kind, resource_type, identity, token) -> FetchResult:
        self.fetch_calls += 1
        if not self.fetches:
            return FetchResult(status_code=404)
        item = self.fetches.pop(0) if len(self.fetches) > 1 else self.fetches[0]
        return item(token) if callable(item) else item


def observed(remote_status: Optional[str] = None, status_code: int = 200, **fields: Any) -> FetchResult:
    """Build a successful fetch whose snapshot carries ``fields``."""
    snapshot = dict(fields)
    if remote_status is not None:
        snapshot.setdefault("status", remote_status)
        snapshot.setdefault("state", remote_status)
    return FetchResult(snapshot=snapshot, status_code=status_code, remote_status=remote_status)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config() -> ReconcilerConfig:
    """Built-in resource types with fast polling and a default region."""
    return ReconcilerConfig.from_mapping(
        {
            "default_region": "eu01",
            "resources": {name: {"poll_interval": 0.01} for name in BUILTIN_RESOURCE_TYPES},
        }
    )


@pytest.fixture
def repo(temp_dir: Path) -> StateRepository:
    """Create a StateRepository rooted in a temp directory."""
    return StateRepository(temp_dir / "state")


@pytest.fixture
def plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def orchestrator(repo: StateRepository, config: ReconcilerConfig, plane: FakeControlPlane) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(repo=repo, config=config, client=plane)


@pytest.fixture
def api_client(
    repo: StateRepository, orchestrator: LifecycleOrchestrator
) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    # Patch the module-level wiring used by app routes
    with patch("reconciler.app.repo", repo), patch("reconciler.app.orchestrator", orchestrator):
        with TestClient(app) as client:
            yield client
