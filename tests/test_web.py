"""Tests for the HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from vigil.core.engine import Orchestrator
from vigil.core.templates import seed_default_templates
from vigil.database.db import Database
from vigil.web.main import create_app


@pytest.fixture
def client(settings, runners, sink):
    """API client over an orchestrator with fake runners."""
    registry, _ = runners
    orchestrator = Orchestrator(settings=settings, registry=registry, notifier=sink)
    with TestClient(create_app(orchestrator)) as client:
        yield client


def _create(client, **fields):
    body = {
        "user_id": "alice",
        "name": "scan",
        "type": "security-scan",
        "frequency": "hourly",
        "config": {"urls": ["https://example.com"]},
    }
    body.update(fields)
    return client.post("/api/tasks/", json=body)


def test_root(client):
    assert client.get("/").json()["docs"] == "/docs"


def test_create_get_and_list(client):
    response = _create(client)
    assert response.status_code == 201
    task = response.json()
    assert task["status"] == "active"

    assert client.get(f"/api/tasks/{task['id']}").json()["name"] == "scan"
    listed = client.get("/api/tasks/", params={"user_id": "alice"}).json()
    assert [t["id"] for t in listed] == [task["id"]]


@pytest.mark.parametrize(
    "fields",
    [
        {"type": "teleport"},
        {"type": "wallet-monitor", "config": {}},
        {"cron_expression": "bogus"},
        {"dependencies": [{"task_id": "missing", "condition": "success"}]},
    ],
)
def test_invalid_tasks_are_rejected(client, fields):
    response = _create(client, **fields)
    assert response.status_code in (400, 404)
    assert "detail" in response.json()


def test_execute_and_history(client):
    task = _create(client).json()

    response = client.post(f"/api/tasks/{task['id']}/execute")
    assert response.status_code == 200
    body = response.json()
    assert body["blocked"] is False
    assert body["execution"]["success"] is True
    assert body["execution"]["execution_context"]["triggered_by"] == "api"

    history = client.get(f"/api/tasks/{task['id']}/executions").json()
    assert [e["id"] for e in history] == [body["execution"]["id"]]


def test_blocked_execution(client):
    parent = _create(client, name="parent").json()
    child = _create(
        client,
        name="child",
        dependencies=[{"task_id": parent["id"], "condition": "success"}],
    ).json()

    body = client.post(f"/api/tasks/{child['id']}/execute").json()

    assert body == {"blocked": True, "execution": None}


def test_error_status_codes(client):
    assert client.get("/api/tasks/missing").status_code == 404
    assert client.post("/api/tasks/missing/execute").status_code == 404

    task = _create(client).json()
    assert client.post(f"/api/tasks/{task['id']}/pause").json()["status"] == "paused"
    assert client.post(f"/api/tasks/{task['id']}/execute").status_code == 409

    client.post(f"/api/tasks/{task['id']}/resume")
    assert client.post(f"/api/tasks/{task['id']}/resume").status_code == 409

    assert client.delete(f"/api/tasks/{task['id']}").status_code == 204
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 404


def test_batch_and_due(client):
    ids = [_create(client, name=f"scan {i}").json()["id"] for i in range(3)]

    batch = client.post("/api/tasks/batch", json={"task_ids": ids, "max_parallel": 2}).json()
    assert batch["status"] == "completed"
    assert batch["successful_tasks"] == 3

    assert client.post("/api/tasks/batch", json={"task_ids": []}).status_code == 422
    assert client.post("/api/tasks/due").json() == {"executed": 0, "successful": 0, "failed": 0}


def test_templates(client, settings):
    templates = client.get("/api/templates/").json()
    assert templates == []

    asyncio.run(seed_default_templates(Database(settings.database)))
    templates = client.get("/api/templates/", params={"type": "wallet-monitor"}).json()
    template_id = templates[0]["id"]

    schema = client.get(f"/api/templates/{template_id}/schema").json()
    assert schema["required"][0]["field"] == "wallet_address"

    missing = client.post(f"/api/templates/{template_id}/tasks", json={"user_id": "alice"}).json()
    assert missing["task"] is None
    assert missing["missing_required_fields"] == ["wallet_address"]

    created = client.post(
        f"/api/templates/{template_id}/tasks",
        json={"user_id": "alice", "config": {"wallet_address": "W" * 40}},
    ).json()
    assert created["task"]["template_id"] == template_id

    assert client.get("/api/templates/missing/schema").status_code == 404


def test_analytics_and_health(client):
    task = _create(client).json()
    client.post(f"/api/tasks/{task['id']}/execute")

    report = client.get("/api/analytics/alice").json()
    assert report["summary"]["total_executions"] == 1
    assert client.get("/api/analytics/alice", params={"start_date": "March"}).status_code == 422

    stats = client.get("/api/analytics/alice/statistics").json()
    assert stats["total_tasks"] == 1

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["memory"]["rss"] > 0

    scheduler = client.get("/health/scheduler").json()
    assert scheduler["cron_running"] is True


def test_task_logs(client):
    task = _create(client).json()
    client.post(f"/api/tasks/{task['id']}/execute")

    logs = client.get(f"/api/tasks/{task['id']}/logs").json()

    assert logs
    assert {entry["level"] for entry in logs} <= {"DEBUG", "INFO", "WARNING", "ERROR"}
    assert client.get("/api/tasks/missing/logs").status_code == 404
