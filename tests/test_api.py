import json
import time

import pytest
from fastapi.testclient import TestClient

from mcpanel.api import create_app
from mcpanel.config import Settings
from mcpanel.providers.aws import AwsProvider
from mcpanel.providers.base import SERVER_ACTION_PARAM
from mcpanel.providers.simulated_state import SimParameter


@pytest.fixture
def client(settings, sim):
    app = create_app(settings=settings, provider=sim)
    with TestClient(app) as c:
        yield c


def _hold_lock(sim, action):
    value = json.dumps({"action": action, "timestamp": int(time.time() * 1000)})
    sim.state.parameters[SERVER_ACTION_PARAM] = SimParameter(value)


def test_status(client):
    response = client.get("/api/status")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["state"] == "stopped"
    assert body["data"]["instance_id"] == "i-mock1234567890abcdef"
    assert "timestamp" in body


def test_start_then_start_again(client):
    response = client.post("/api/start")
    assert response.status_code == 200
    assert response.json()["data"]["public_address"].startswith("203.0.113.")

    response = client.post("/api/start")
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Server is already running",
        "timestamp": response.json()["timestamp"],
    }


def test_conflict_is_409(client, sim):
    _hold_lock(sim, "backup")
    response = client.post("/api/start")
    assert response.status_code == 409
    assert response.json()["error"] == "Cannot start server. Another operation is in progress: backup"


def test_status_shows_held_action(client, sim):
    _hold_lock(sim, "hibernate")
    data = client.get("/api/status").json()["data"]
    assert data["server_action"]["action"] == "hibernate"


def test_invalid_backup_name_is_400(client, sim):
    client.post("/api/mock/scenario", json={"scenario": "running"})
    response = client.post("/api/backup", json={"name": "world; rm -rf /"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Backup name contains invalid characters")


def test_backup_and_list(client):
    client.post("/api/mock/scenario", json={"scenario": "running"})
    response = client.post("/api/backup", json={"name": "pre-update"})
    assert response.status_code == 200
    assert response.json()["data"]["backup_name"] == "pre-update"

    data = client.get("/api/backups").json()["data"]
    assert data["count"] == 4
    assert data["backups"][0]["name"] == "pre-update"


def test_backup_without_body(client):
    client.post("/api/mock/scenario", json={"scenario": "running"})
    response = client.post("/api/backup")
    assert response.status_code == 200
    assert response.json()["data"]["message"] == "Backup completed successfully"


def test_restore_accepts_either_name_field(client, sim):
    client.post("/api/mock/scenario", json={"scenario": "running"})
    name = sim.state.backups[1].name
    response = client.post("/api/restore", json={"backupName": name})
    assert response.status_code == 200
    assert response.json()["data"]["backup_name"] == name

    response = client.post("/api/restore", json={"name": name})
    assert response.json()["data"]["backup_name"] == name


def test_resume_from_hibernation(client):
    client.post("/api/mock/scenario", json={"scenario": "hibernated"})
    assert client.get("/api/status").json()["data"]["state"] == "hibernating"
    response = client.post("/api/resume", json={})
    assert response.status_code == 200
    assert client.get("/api/status").json()["data"]["state"] == "running"


def test_backend_failure_is_generic_500(client):
    response = client.post("/api/mock/fault", json={
        "operation": "getCosts", "errorCode": "AccessDenied", "errorMessage": "secret detail",
    })
    assert response.status_code == 200
    assert response.json()["data"]["fault"]["fail_next"] is True

    response = client.get("/api/costs")
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to fetch cost data"

    response = client.get("/api/costs")
    assert response.status_code == 200
    assert response.json()["data"]["total_cost"] == "15.50"


def test_unknown_cost_period(client):
    response = client.get("/api/costs", params={"period": "forever"})
    assert response.status_code == 400
    assert response.json()["error"] == "Unknown cost period: forever"


def test_players_and_stack_status(client):
    client.post("/api/mock/scenario", json={"scenario": "many-players"})
    assert client.get("/api/players").json()["data"]["count"] == 18
    data = client.get("/api/stack-status").json()["data"]
    assert data["exists"] is True
    assert data["stack"]["status"] == "CREATE_COMPLETE"


def test_mock_scenarios(client):
    data = client.get("/api/mock/scenario").json()["data"]
    assert data["current"] == "default"
    assert "hibernated" in [s["name"] for s in data["scenarios"]]

    response = client.post("/api/mock/scenario", json={"scenario": "nope"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Scenario not found: nope")


def test_mock_fault_clear_all(client, sim):
    client.post("/api/mock/fault", json={"operation": "startInstance", "alwaysFail": True})
    client.post("/api/mock/fault", json={"operation": "stopInstance"})
    assert set(sim.state.faults) == {"startInstance", "stopInstance"}
    assert sim.state.faults["startInstance"].fail_next is False

    client.delete("/api/mock/fault/startInstance")
    assert set(sim.state.faults) == {"stopInstance"}

    client.delete("/api/mock/fault/all")
    assert sim.state.faults == {}


def test_mock_latency_validation(client, sim):
    assert client.post("/api/mock/latency", json={"latencyMs": 5}).status_code == 200
    assert sim.state.latency_ms == 5
    response = client.post("/api/mock/latency", json={"latencyMs": -5})
    assert response.status_code == 400


def test_mock_state_and_reset(client):
    client.post("/api/mock/scenario", json={"scenario": "running"})
    state = client.get("/api/mock/state").json()["data"]
    assert state["instance"]["state"] == "running"
    assert state["scenario"] == "running"

    client.post("/api/mock/reset")
    state = client.get("/api/mock/state").json()["data"]
    assert state["instance"]["state"] == "stopped"


def test_mock_routes_absent_for_aws_backend():
    settings = Settings(_env_file=None)
    app = create_app(settings=settings, provider=AwsProvider(settings))
    with TestClient(app) as client:
        assert client.get("/api/mock/state").status_code == 404
        assert client.post("/api/mock/reset").status_code == 404
