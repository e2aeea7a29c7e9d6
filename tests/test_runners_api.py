from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from runnerhub.api.app import create_app
from runnerhub.config.load_config import AppConfig
from runnerhub.runtime.lifecycle import RunnerLifecycleManager


ALICE = {"X-Caller-Id": "alice", "X-Caller-Role": "user"}
BOB = {"X-Caller-Id": "bob", "X-Caller-Role": "user"}
ROOT = {"X-Caller-Id": "root", "X-Caller-Role": "admin"}

BODY = {"url": "https://ci.example.org", "registration_token": "GR1348941secret", "name": "build-1"}


@pytest.fixture
def client(fake_binary, app_config: AppConfig, monkeypatch: pytest.MonkeyPatch):  # noqa: ANN001, ANN201
    monkeypatch.setenv("RUNNERHUB_ENABLE_SCHEDULER", "0")
    manager = RunnerLifecycleManager(invoker=fake_binary, config=app_config)
    with TestClient(create_app(manager)) as c:
        yield c


def test_healthz(client: TestClient) -> None:
    assert client.get("/api/v1/healthz").json() == {"status": "ok"}


def test_missing_caller_headers_is_unauthenticated(client: TestClient) -> None:
    resp = client.get("/api/v1/runners")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"

    resp = client.get("/api/v1/runners", headers={"X-Caller-Id": "x", "X-Caller-Role": "root"})
    assert resp.status_code == 401


def test_register_list_delete_flow(client: TestClient, fake_binary) -> None:  # noqa: ANN001
    resp = client.post("/api/v1/runners", json={**BODY, "tags": ["docker", " linux "]}, headers=ALICE)
    assert resp.status_code == 200
    runner = resp.json()["runner"]
    assert runner["owner_id"] == "alice"
    assert runner["name"] == "build-1"

    items = client.get("/api/v1/runners", headers=ALICE).json()["items"]
    assert [(i["runner_id"], i["status"]) for i in items] == [(runner["runner_id"], "shell")]
    assert client.get("/api/v1/runners", headers=BOB).json()["items"] == []

    forbidden = client.delete(f"/api/v1/runners/{runner['runner_id']}", headers=BOB)
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "forbidden"

    ok = client.delete(f"/api/v1/runners/{runner['runner_id']}", headers=ALICE)
    assert ok.status_code == 200
    assert ok.json() == {"deleted": True, "runner_id": runner["runner_id"]}
    assert fake_binary.registered == {}

    missing = client.delete(f"/api/v1/runners/{runner['runner_id']}", headers=ALICE)
    assert missing.status_code == 404


def test_register_failure_maps_to_502(client: TestClient, fake_binary) -> None:  # noqa: ANN001
    fake_binary.fail_register = True
    resp = client.post("/api/v1/runners", json=BODY, headers=ALICE)
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "registration_failed"


def test_register_validation_error(client: TestClient) -> None:
    resp = client.post("/api/v1/runners", json={**BODY, "name": ""}, headers=ALICE)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_argument"


def test_blank_name_is_invalid_argument(client: TestClient, fake_binary) -> None:  # noqa: ANN001
    resp = client.post("/api/v1/runners", json={**BODY, "name": "   "}, headers=ALICE)
    assert resp.status_code == 400
    assert fake_binary.calls == []


def test_delete_failure_keeps_runner(client: TestClient, fake_binary) -> None:  # noqa: ANN001
    runner = client.post("/api/v1/runners", json=BODY, headers=ALICE).json()["runner"]
    fake_binary.fail_unregister_tokens.add(runner["token"])
    resp = client.delete(f"/api/v1/runners/{runner['runner_id']}", headers=ALICE)
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "execution_failed"
    assert len(client.get("/api/v1/runners", headers=ALICE).json()["items"]) == 1


def test_admin_endpoints_require_admin(client: TestClient) -> None:
    assert client.get("/api/v1/runners", params={"scope": "admin"}, headers=ALICE).status_code == 403
    assert client.get("/api/v1/runners/live", headers=ALICE).status_code == 403
    assert client.post("/api/v1/runners/gc", headers=ALICE).status_code == 403
    assert client.get("/api/v1/events", headers=ALICE).status_code == 403


def test_admin_views(client: TestClient, fake_binary) -> None:  # noqa: ANN001
    client.post("/api/v1/runners", json=BODY, headers=ALICE)
    fake_binary.add_live(description="manual", token="manual-1")

    items = client.get("/api/v1/runners", params={"scope": "admin"}, headers=ROOT).json()["items"]
    assert [(i["owner_id"], i["owner_role"]) for i in items] == [("alice", "user")]

    live = client.get("/api/v1/runners/live", headers=ROOT).json()["items"]
    assert {i["token"]: i["managed"] for i in live}["manual-1"] is False

    report = client.post("/api/v1/runners/gc", headers=ROOT).json()["report"]
    assert report["deleted"] == 0

    events = client.get("/api/v1/events", headers=ROOT).json()["items"]
    assert "runner_registered" in {e["event_type"] for e in events}


def test_scheduler_status_when_disabled(client: TestClient) -> None:
    body = client.get("/api/v1/system/scheduler").json()
    assert body["scheduler"]["enabled"] is False
    assert body["retention_months"] == 1
    assert body["retention_days"] is None
