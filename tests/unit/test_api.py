"""Tests for FastAPI endpoints."""
from __future__ import annotations

import json
import pytest
from pathlib import Path
from fastapi.testclient import TestClient

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from conftest import FakeControlPlane, observed
from reconciler.clients.base import MutationResult
from reconciler.models import Intent
from reconciler.storage import StateRepository

LB_PLAN = {"project_id": "p1", "name": "my-lb", "plan_id": "p10"}
LB_KEY = "p1,eu01,my-lb"


@pytest.fixture
def tracked_lb(api_client: TestClient, plane: FakeControlPlane) -> str:
    plane.script_mutation(Intent.create, MutationResult(status_code=202, identity_fields={"name": "my-lb"}))
    plane.script_fetch(observed("STATUS_READY", external_address="10.0.0.1"))
    response = api_client.post("/api/resources/load_balancer", json={"plan": LB_PLAN})
    assert response.json()["ok"] is True
    return LB_KEY


class TestResourceTypes:
    """Tests for the resource type listing."""

    def test_lists_builtin_types(self, api_client: TestClient):
        response = api_client.get("/api/resource-types")
        assert response.status_code == 200
        names = {item["name"] for item in response.json()}
        assert {"load_balancer", "dns_zone", "model_serving_token"} <= names

    def test_summary_fields(self, api_client: TestClient):
        data = {item["name"]: item for item in api_client.get("/api/resource-types").json()}
        assert data["load_balancer"]["identity"] == ["project_id", "region", "name"]
        assert data["mariadb_credential"]["supports_update"] is False


class TestLifecycleEndpoints:
    """Create, read, update and delete over HTTP."""

    def test_create(self, api_client: TestClient, plane: FakeControlPlane):
        plane.script_mutation(Intent.create, MutationResult(status_code=202, identity_fields={"name": "my-lb"}))
        plane.script_fetch(observed("STATUS_READY", external_address="10.0.0.1"))
        response = api_client.post("/api/resources/load_balancer", json={"plan": LB_PLAN, "timeout": 5})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["intent"] == "create"
        assert data["resource_id"] == LB_KEY
        assert data["state"]["external_address"] == "10.0.0.1"
        assert data["events"][0]["stage"] == "validate"

    def test_create_failure_reported_in_body(self, api_client: TestClient, plane: FakeControlPlane):
        plane.script_mutation(Intent.create, MutationResult(status_code=202, identity_fields={"name": "my-lb"}))
        plane.script_fetch(observed("STATUS_ERROR"))
        response = api_client.post("/api/resources/load_balancer", json={"plan": LB_PLAN})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["error"]["kind"] == "remote_failure"
        assert data["error"]["remote_status"] == "STATUS_ERROR"
        assert data["state"]["id"] == LB_KEY

    def test_create_unknown_kind(self, api_client: TestClient):
        response = api_client.post("/api/resources/nope", json={"plan": {}})
        assert response.status_code == 404

    def test_create_invalid_timeout(self, api_client: TestClient):
        response = api_client.post("/api/resources/load_balancer", json={"plan": LB_PLAN, "timeout": 0})
        assert response.status_code == 422

    def test_read(self, api_client: TestClient, plane: FakeControlPlane, tracked_lb: str):
        plane.script_fetch(observed("STATUS_READY", external_address="10.9.9.9"))
        response = api_client.get(f"/api/resources/load_balancer/{tracked_lb}")
        assert response.status_code == 200
        assert response.json()["state"]["external_address"] == "10.9.9.9"

    def test_read_untracked(self, api_client: TestClient):
        response = api_client.get(f"/api/resources/load_balancer/{LB_KEY}")
        assert response.status_code == 404

    def test_read_malformed_id(self, api_client: TestClient):
        response = api_client.get("/api/resources/load_balancer/only-one-part")
        assert response.status_code == 422

    def test_update(self, api_client: TestClient, plane: FakeControlPlane, tracked_lb: str):
        plane.script_mutation(Intent.update, MutationResult(status_code=202))
        plane.script_fetch(observed("STATUS_READY", plan_id="p50"))
        response = api_client.put(
            f"/api/resources/load_balancer/{tracked_lb}", json={"plan": {"plan_id": "p50"}}
        )
        assert response.status_code == 200
        assert response.json()["state"]["plan_id"] == "p50"

    def test_update_unsupported(self, api_client: TestClient):
        response = api_client.put("/api/resources/mariadb_credential/p1,i1,c1", json={"plan": {}})
        assert response.status_code == 422

    def test_delete(self, api_client: TestClient, plane: FakeControlPlane, repo: StateRepository, tracked_lb: str):
        plane.script_mutation(Intent.delete, MutationResult(status_code=410))
        response = api_client.delete(f"/api/resources/load_balancer/{tracked_lb}")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["removed"] is True
        assert repo.get_resource("load_balancer", tracked_lb) is None

    def test_import(self, api_client: TestClient, plane: FakeControlPlane):
        plane.script_fetch(observed("CREATE_SUCCEEDED", dns_name="example.com."))
        response = api_client.post("/api/resources/dns_zone/import", json={"id": "p1,z1"})
        assert response.status_code == 200
        assert response.json()["state"]["dns_name"] == "example.com."

    def test_import_empty_id(self, api_client: TestClient):
        response = api_client.post("/api/resources/dns_zone/import", json={"id": ""})
        assert response.status_code == 422


class TestStateEndpoints:
    """Stored state without remote calls."""

    def test_get_state(self, api_client: TestClient, plane: FakeControlPlane, tracked_lb: str):
        calls = plane.fetch_calls
        response = api_client.get(f"/api/state/load_balancer/{tracked_lb}")
        assert response.status_code == 200
        assert response.json()["id"] == tracked_lb
        assert plane.fetch_calls == calls

    def test_get_state_missing(self, api_client: TestClient):
        response = api_client.get("/api/state/load_balancer/p1,eu01,none")
        assert response.status_code == 404

    def test_list_state(self, api_client: TestClient, tracked_lb: str):
        response = api_client.get("/api/state/load_balancer")
        assert response.status_code == 200
        assert list(response.json()) == [tracked_lb]


class TestRunEvents:
    """Server-sent events for recorded runs."""

    def test_stream_finished_run(self, api_client: TestClient, plane: FakeControlPlane):
        plane.script_mutation(Intent.delete, MutationResult(status_code=404))
        run_id = api_client.delete(f"/api/resources/load_balancer/{LB_KEY}").json()["run_id"]
        response = api_client.get(f"/api/runs/{run_id}/events")
        assert response.status_code == 200
        payloads = [
            json.loads(line[len("data:"):].strip())
            for line in response.text.splitlines()
            if line.startswith("data:")
        ]
        assert payloads[0]["stage"] == "validate"
        assert payloads[-1]["ok"] is True

        missing = api_client.get("/api/runs/missing/events")
        assert "run_not_found" in missing.text
