"""Integration tests exercising the full API against a temp-database service."""

from __future__ import annotations

import pytest

from script_runner.auth import key_matches
from script_runner.config import settings
from script_runner.main import app
from script_runner.models.command import CommandStatus
from script_runner.services.command_service import get_command_service
from tests.helpers import wait_for_pid, wait_for_status


@pytest.fixture
async def parked_service(make_service, client):
    """A service that queues everything, wired into the running client."""
    svc = await make_service(runner_max_concurrent=0)
    app.dependency_overrides[get_command_service] = lambda: svc
    return svc


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["max_concurrent"] == settings.runner_max_concurrent


@pytest.mark.asyncio
async def test_submit_and_get(client, service):
    resp = await client.post("/api/commands/", json={"script": "echo hi"})
    assert resp.status_code == 202
    data = resp.json()
    assert data["status"] == "executing"
    assert data["message"] == "Command is being executed"

    await wait_for_status(service.store, data["id"], CommandStatus.completed)
    resp = await client.get(f"/api/commands/{data['id']}")
    assert resp.status_code == 200
    cmd = resp.json()
    assert cmd["status"] == "completed"
    assert cmd["output"] == "hi\n"
    assert cmd["script"] == "echo hi"


@pytest.mark.asyncio
async def test_submit_sudo_denied(client):
    resp = await client.post("/api/commands/", json={"script": "sudo reboot"})
    assert resp.status_code == 400
    assert "sudo" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_submit_sudo_endpoint(client):
    resp = await client.post("/api/commands/sudo", json={"script": "echo sudo"})
    assert resp.status_code == 202


@pytest.mark.asyncio
async def test_submit_empty_script(client):
    resp = await client.post("/api/commands/", json={"script": "  "})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Script is required"


@pytest.mark.asyncio
async def test_submit_nul_byte_rejected(client, service):
    resp = await client.post("/api/commands/", json={"script": "echo a\u0000b"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Script cannot contain NUL bytes"
    assert await service.list_commands() == []


@pytest.mark.asyncio
async def test_submit_missing_body_field(client):
    resp = await client.post("/api/commands/", json={})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_commands(client):
    for i in range(2):
        await client.post("/api/commands/", json={"script": f"echo {i}"})
    resp = await client.get("/api/commands/")
    assert resp.status_code == 200
    assert [c["script"] for c in resp.json()] == ["echo 0", "echo 1"]


@pytest.mark.asyncio
async def test_get_unknown(client):
    resp = await client.get("/api/commands/9999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_get_malformed_id(client):
    resp = await client.get("/api/commands/abc")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_queue_listing(client, parked_service):
    resp = await client.post("/api/commands/", json={"script": "echo parked"})
    assert resp.status_code == 202
    data = resp.json()
    assert data["status"] == "queued"

    resp = await client.get("/api/commands/queue")
    assert resp.status_code == 200
    queue = resp.json()
    assert [e["command_id"] for e in queue] == [data["id"]]
    assert queue[0]["status"] == "waiting"


@pytest.mark.asyncio
async def test_stop_unknown(client):
    resp = await client.post("/api/commands/9999/stop")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stop_not_started(client, parked_service):
    resp = await client.post("/api/commands/", json={"script": "echo parked"})
    cid = resp.json()["id"]
    resp = await client.post(f"/api/commands/{cid}/stop")
    assert resp.status_code == 404
    assert "No PID found" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_stop_running(client, service):
    resp = await client.post("/api/commands/", json={"script": "sleep 30"})
    cid = resp.json()["id"]
    await wait_for_pid(service.store, cid)

    resp = await client.post(f"/api/commands/{cid}/stop")
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "Command stopped successfully"
    assert data["signal_delivered"] is True

    resp = await client.get(f"/api/commands/{cid}")
    assert resp.json()["status"] == "stopped"


@pytest.mark.asyncio
async def test_force_start_queued(client, parked_service):
    resp = await client.post("/api/commands/", json={"script": "echo forced"})
    cid = resp.json()["id"]

    resp = await client.post(f"/api/commands/{cid}/fstart")
    assert resp.status_code == 200
    data = resp.json()
    assert data["started"] is True
    assert data["message"] == "Command is being forcibly started"

    cmd = await wait_for_status(parked_service.store, cid, CommandStatus.completed)
    assert cmd.output == "forced\n"


@pytest.mark.asyncio
async def test_force_start_completed_is_noop(client, service):
    resp = await client.post("/api/commands/", json={"script": "true"})
    cid = resp.json()["id"]
    await wait_for_status(service.store, cid, CommandStatus.completed)

    resp = await client.post(f"/api/commands/{cid}/fstart")
    assert resp.status_code == 200
    assert resp.json() == {
        "id": cid,
        "message": "Command is already completed",
        "started": False,
    }


@pytest.mark.asyncio
async def test_force_start_unknown(client):
    resp = await client.post("/api/commands/9999/fstart")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "runner_api_key", "secret")

    resp = await client.get("/api/commands/")
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "APIKey"
    resp = await client.get("/api/commands/", headers={"X-API-Key": "wrong"})
    assert resp.status_code == 401
    resp = await client.get("/api/commands/", headers={"X-API-Key": "secret"})
    assert resp.status_code == 200
    # liveness stays open
    resp = await client.get("/health")
    assert resp.status_code == 200


@pytest.mark.parametrize(
    ("presented", "expected", "ok"),
    [("secret", "secret", True), ("secre", "secret", False), (None, "secret", False)],
)
def test_key_matches(presented, expected, ok):
    assert key_matches(presented, expected) is ok
