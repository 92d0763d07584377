import pytest
from fastapi.testclient import TestClient

from timer_record.config import TrackerConfig
from timer_record.webapp import create_app

from conftest import FakeProbe


@pytest.fixture
def client(db_path, clock, probe):
    app = create_app(
        db_path=db_path,
        config=TrackerConfig(poll_interval_seconds=1, min_entry_duration_seconds=0),
        probe=probe,
        clock=clock,
        autostart=False,
    )
    with TestClient(app) as test_client:
        yield test_client


def test_status_without_tracker(client):
    response = client.get("/api/status")

    assert response.status_code == 200
    payload = response.json()
    assert payload["tracker_running"] is False
    assert payload["state"] == "idle"
    assert payload["active_entry"] is None
    assert payload["idle_threshold_seconds"] == 300


def test_manual_timer_round_trip(client, clock):
    started = client.post("/api/timer/start", json={"category": "programming", "notes": "api"})
    assert started.status_code == 201
    assert started.json()["category"] == "programming"
    assert started.json()["is_manual"] is True

    conflict = client.post("/api/timer/start", json={})
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "TIMER_ALREADY_RUNNING"

    clock.advance(120)
    status = client.get("/api/status").json()
    assert status["active_entry"]["duration_seconds"] == 120

    stopped = client.post("/api/timer/stop")
    assert stopped.status_code == 200
    assert stopped.json()["duration_seconds"] == 120

    assert client.post("/api/timer/stop").status_code == 404


def test_unknown_category_is_404(client):
    response = client.post("/api/timer/start", json={"category": "gardening"})

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "CATEGORY_NOT_FOUND"


def test_timer_payload_rejects_unknown_fields(client):
    assert client.post("/api/timer/start", json={"colour": "red"}).status_code == 422


def test_entries_for_date(client, clock):
    client.post("/api/timer/start", json={"category": "research"})
    clock.advance(60)
    client.post("/api/timer/stop")

    today = client.get("/api/entries", params={"date": clock().strftime("%Y-%m-%d")}).json()
    other = client.get("/api/entries", params={"date": "2001-01-01"}).json()

    assert [entry["category"] for entry in today["entries"]] == ["research"]
    assert other["entries"] == []
    assert client.get("/api/entries", params={"date": "18/10/2026"}).status_code == 400


def test_rules_crud(client):
    created = client.post(
        "/api/rules",
        json={"category": "research", "window_title_pattern": "/arxiv/", "priority": 4},
    )
    assert created.status_code == 201
    rule_id = created.json()["id"]

    listed = client.get("/api/rules").json()["rules"]
    assert [rule["id"] for rule in listed] == [rule_id]

    assert client.post("/api/rules", json={"category": "research"}).status_code == 400
    assert client.post(
        "/api/rules", json={"category": "gardening", "app_name_pattern": "x"}
    ).status_code == 404

    assert client.delete(f"/api/rules/{rule_id}").status_code == 200
    assert client.delete(f"/api/rules/{rule_id}").status_code == 404


def test_tracker_start_and_stop(client):
    started = client.post("/api/tracker/start").json()
    assert started == {"started": True, "running": True}
    assert client.post("/api/tracker/start").json()["started"] is False

    stopped = client.post("/api/tracker/stop").json()
    assert stopped["stopped"] is True
    assert client.get("/api/status").json()["tracker_running"] is False


def test_tracker_start_without_permission(db_path, clock):
    app = create_app(
        db_path=db_path,
        probe=FakeProbe(permitted=False),
        clock=clock,
        autostart=False,
    )
    with TestClient(app) as client:
        assert client.post("/api/tracker/start").json() == {"started": False, "running": False}
