"""FastAPI entrypoint for the lifecycle reconciler."""
from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

from .clients.http import HttpControlPlaneClient
from .constants import RUN_EVENT_POLL_INTERVAL
from .engine.runner import LifecycleOrchestrator, ReconcileResult
from .errors import InvalidRequest, NotTracked
from .models import (
    ErrorDetail,
    ImportRequest,
    ReconcileRequest,
    ReconcileResponse,
    ResourceTypeSummary,
)
from .storage import StateRepository, load_config

log = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]
CONFIG_PATH = Path(os.environ.get("RECONCILER_CONFIG", ROOT_DIR / "reconciler.yaml"))
STATE_DIR = Path(os.environ.get("RECONCILER_STATE_DIR", ROOT_DIR / "state"))

app = FastAPI(title="Lifecycle Reconciler", version="0.1.0")
config = load_config(CONFIG_PATH)
repo = StateRepository(STATE_DIR)
client = HttpControlPlaneClient.from_config(config)
orchestrator = LifecycleOrchestrator(repo=repo, config=config, client=client)


@app.get("/api/resource-types", response_model=List[ResourceTypeSummary])
def list_resource_types() -> List[ResourceTypeSummary]:
    """Return every configured resource type."""
    return [
        ResourceTypeSummary(
            name=name,
            identity=resource_type.identity_names,
            fields=resource_type.fields,
            poll_interval=resource_type.poll_interval,
            timeout=resource_type.timeout,
            supports_update=resource_type.supports_update,
        )
        for name, resource_type in sorted(orchestrator.config.resources.items())
    ]


@app.post("/api/resources/{kind}", response_model=ReconcileResponse)
def create_resource(kind: str, request: ReconcileRequest) -> ReconcileResponse:
    """Create a remote object and wait until it is ready."""
    _require_kind(kind)
    result = orchestrator.create(kind, request.plan, timeout=request.timeout)
    return _respond(result)


@app.post("/api/resources/{kind}/import", response_model=ReconcileResponse)
def import_resource(kind: str, request: ImportRequest) -> ReconcileResponse:
    """Start tracking an existing object by its composite id."""
    _require_kind(kind)
    result = orchestrator.import_state(kind, request.id, timeout=request.timeout)
    return _respond(result)


@app.get("/api/resources/{kind}/{resource_id}", response_model=ReconcileResponse)
def read_resource(
    kind: str,
    resource_id: str,
    timeout: Optional[float] = Query(default=None, gt=0),
) -> ReconcileResponse:
    """Refresh stored state from the control plane."""
    _require_kind(kind)
    return _respond(orchestrator.read(kind, resource_id, timeout=timeout))


@app.put("/api/resources/{kind}/{resource_id}", response_model=ReconcileResponse)
def update_resource(kind: str, resource_id: str, request: ReconcileRequest) -> ReconcileResponse:
    """Apply an in-place update and wait until it takes effect."""
    _require_kind(kind)
    result = orchestrator.update(kind, resource_id, request.plan, timeout=request.timeout)
    return _respond(result)


@app.delete("/api/resources/{kind}/{resource_id}", response_model=ReconcileResponse)
def delete_resource(
    kind: str,
    resource_id: str,
    timeout: Optional[float] = Query(default=None, gt=0),
) -> ReconcileResponse:
    """Delete a remote object; deleting an absent object succeeds."""
    _require_kind(kind)
    return _respond(orchestrator.delete(kind, resource_id, timeout=timeout))


@app.get("/api/state/{kind}")
def list_state(kind: str) -> Dict[str, Dict]:
    """Return stored state for every tracked object of a type."""
    _require_kind(kind)
    return repo.list_resources(kind)


@app.get("/api/state/{kind}/{resource_id}")
def get_state(kind: str, resource_id: str) -> Dict:
    """Return stored state without contacting the control plane."""
    _require_kind(kind)
    state = repo.get_resource(kind, resource_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"{kind} {resource_id} is not tracked")
    return state


@app.get("/api/runs/{run_id}/events")
async def stream_run_events(run_id: str) -> EventSourceResponse:
    """Stream stage events of a run, ending with its final status."""

    async def event_generator():
        sent = 0
        record = repo.get_run(run_id)
        while record is not None:
            for event in record.events[sent:]:
                yield {"event": "stage", "data": event.model_dump_json()}
            sent = len(record.events)
            if record.ok is not None:
                status = {"ok": record.ok, "summary": record.summary or ""}
                yield {"event": "status", "data": json.dumps(status)}
                return
            await asyncio.sleep(RUN_EVENT_POLL_INTERVAL)
            record = repo.get_run(run_id)
        yield {"event": "error", "data": json.dumps({"message": "run_not_found"})}

    return EventSourceResponse(event_generator())


# ---------------------------------------------------------------- helpers


def _require_kind(kind: str) -> None:
    if kind not in orchestrator.config.resources:
        raise HTTPException(status_code=404, detail=f"Unknown resource type: {kind}")


def _respond(result: ReconcileResult) -> ReconcileResponse:
    error = result.error
    if isinstance(error, NotTracked):
        raise HTTPException(status_code=404, detail=error.message)
    if isinstance(error, InvalidRequest):
        raise HTTPException(status_code=422, detail=error.message)

    detail = None
    if error is not None:
        log.info("%s %s finished with %s: %s", result.intent.value, result.kind, error.kind, error)
        detail = ErrorDetail(
            kind=error.kind,
            message=str(error),
            retryable=error.retryable,
            status_code=error.status_code,
            remote_status=error.remote_status,
        )
    return ReconcileResponse(
        ok=result.ok,
        run_id=result.run_id,
        intent=result.intent,
        resource_id=result.resource_id,
        state=result.state,
        removed=result.removed,
        error=detail,
        warnings=result.warnings,
        events=result.events,
    )
