"""Tests for the Flask API."""
import json
from datetime import datetime, timezone
import pytest
from unittest.mock import MagicMock

from alerts.cooldown import CooldownManager
from alerts.dispatcher import NotificationDispatcher
from models.enums import ChannelType
from monitor.orchestrator import AlertOrchestrator
from realtime.hub import RealtimeHub
from web.app import create_app
from conftest import NOW, FakeChannel, MemoryLog, make_rule, make_sample

CONFIG = {"realtime": {"keepalive_seconds": 0.05}}


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def adapters():
    return {ChannelType.CONSOLE: FakeChannel(), ChannelType.EMAIL: FakeChannel(fail=True)}


@pytest.fixture
def app(temp_db, hub, adapters):
    temp_db.publisher = hub
    log = MemoryLog()
    orchestrator = AlertOrchestrator(
        temp_db, temp_db, CooldownManager(temp_db),
        NotificationDispatcher(adapters, temp_db, log), log)
    app = create_app(CONFIG, {"db": temp_db, "orchestrator": orchestrator, "hub": hub})
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "ok"
    assert data["orchestrator_state"] == "idle"
    assert data["rules"] == 0


def test_rules(client, temp_db):
    temp_db.save_rule(make_rule("a"))
    temp_db.save_rule(make_rule("b", enabled=False))
    assert client.get("/api/rules").get_json()["count"] == 2
    active = client.get("/api/rules?enabled=1").get_json()
    assert [r["id"] for r in active["rules"]] == ["a"]
    assert active["rules"][0]["target"] == {"type": "server", "id": "web-01", "name": ""}


def test_tick_and_notifications(client, temp_db, adapters):
    temp_db.save_rule(make_rule())
    temp_db.save_sample(make_sample(cpu=99, captured_at=datetime.now(timezone.utc)))

    resp = client.post("/api/tick")
    assert resp.status_code == 200
    assert resp.get_json()["notifications_sent"] == 1

    data = client.get("/api/notifications").get_json()
    assert data["count"] == 1
    assert data["notifications"][0]["status"] == "sent"
    assert client.get("/api/notifications?status=failed").get_json()["count"] == 0
    assert client.get("/api/notifications?status=bogus").status_code == 400


def test_tick_returns_summary(client):
    data = client.post("/api/tick").get_json()
    assert data["aborted"] is False
    assert data["rules_evaluated"] == 0


def test_logs(client, temp_db):
    temp_db.append_log("error", "dispatcher", "send failed", {"channel": "email"}, NOW)
    data = client.get("/api/logs?level=error").get_json()
    assert data["count"] == 1
    assert data["logs"][0]["metadata"] == {"channel": "email"}
    assert client.get("/api/logs?level=fatal").status_code == 400


class TestTestAlert:
    def test_success(self, client, adapters):
        resp = client.post("/api/test-alert", json={
            "target": {"type": "server", "id": "web-01"},
            "metric": "cpu", "current_value": 91, "threshold": 80,
            "channels": [{"type": "console", "destination": ""}],
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["results"][0]["status"] == "sent"
        assert adapters[ChannelType.CONSOLE].sent[0][1].startswith("TEST - ")

    def test_partial_success_is_200(self, client):
        resp = client.post("/api/test-alert", json={
            "target": {"type": "server", "id": "web-01"},
            "channels": [{"type": "email", "destination": "a@x.io"},
                         {"type": "console", "destination": ""}],
        })
        assert resp.status_code == 200
        statuses = [r["status"] for r in resp.get_json()["results"]]
        assert statuses == ["failed", "sent"]

    def test_all_failed_is_502(self, client):
        resp = client.post("/api/test-alert", json={
            "target": {"type": "server", "id": "web-01"},
            "channels": [{"type": "email", "destination": "a@x.io"}],
        })
        assert resp.status_code == 502
        assert resp.get_json()["results"][0]["error"]

    @pytest.mark.parametrize("body", [
        {},
        {"target": {"type": "server", "id": "web-01"}, "channels": []},
        {"target": {"type": "server", "id": "web-01"}, "metric": "temperature",
         "channels": [{"type": "console", "destination": ""}]},
        {"target": {"type": "cluster", "id": "x"},
         "channels": [{"type": "console", "destination": ""}]},
        {"target": {"type": "server", "id": "web-01"},
         "channels": [{"type": "pager", "destination": "x"}]},
    ])
    def test_bad_input_is_400(self, client, body):
        assert client.post("/api/test-alert", json=body).status_code == 400


class TestStream:
    def test_unknown_stream_400(self, client):
        assert client.get("/api/stream?streams=alertas").status_code == 400

    def test_stream_delivers_events(self, client, hub):
        resp = client.get("/api/stream?streams=notifications", buffered=False)
        assert resp.status_code == 200
        assert resp.mimetype == "text/event-stream"
        chunks = iter(resp.response)
        assert next(chunks).startswith(b": connected")

        hub.publish("notifications", "INSERT", {"id": 7, "status": "queued"})
        chunk = next(chunks)
        while chunk.startswith(b": keepalive"):
            chunk = next(chunks)
        text = chunk.decode()
        assert "event: notifications" in text
        payload = json.loads(text.split("data: ", 1)[1])
        assert payload["row"] == {"id": 7, "status": "queued"}
        resp.close()
        assert hub.subscriber_count == 0

    def test_no_hub_503(self, temp_db):
        app = create_app(CONFIG, {"db": temp_db, "orchestrator": MagicMock(), "hub": None})
        assert app.test_client().get("/api/stream").status_code == 503
