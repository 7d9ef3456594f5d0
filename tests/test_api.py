"""
test_api.py — HTTP and WebSocket tests against the FastAPI app.

Covers:
    • Sensor simulation endpoints (201 disaster / 200 below threshold / 400)
    • Disaster CRUD, list filters, radius search, readings
    • Alert-configuration CRUD and immutable fields
    • Manual alert trigger
    • Error envelope format
    • Health endpoints and request log context
    • Live feed over WebSocket

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend.app.core import middleware
from backend.app.core.config import settings
from backend.app.core.middleware import resource_context
from backend.app.main import create_app
from backend.app.services.container import ServiceContainer


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

TOKYO = {"latitude": 35.6762, "longitude": 139.6503}


@pytest.fixture
def services():
    return ServiceContainer.build(settings)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _make_disaster_body(**overrides) -> dict:
    body = {
        "type": "FLOOD",
        "location": {"type": "Point", "coordinates": [139.6503, 35.6762]},
        "severity": 6,
        "description": "Flood with water level 3m detected at Tokyo",
    }
    body.update(overrides)
    return body


def _make_config_body(**overrides) -> dict:
    body = {"name": "Tokyo alerts", "disasterType": "ALL", "severityThreshold": 5}
    body.update(overrides)
    return body


def _create_disaster(client, **overrides) -> dict:
    response = client.post("/api/disasters", json=_make_disaster_body(**overrides))
    assert response.status_code == 201
    return response.json()["data"]


def _create_config(client, **overrides) -> dict:
    response = client.post("/api/alerts", json=_make_config_body(**overrides))
    assert response.status_code == 201
    return response.json()["data"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Simulation
# ═══════════════════════════════════════════════════════════════════════════

class TestSimulateEndpoints:

    def test_earthquake_above_threshold(self, client):
        response = client.post(
            "/api/simulate/earthquake", json={"magnitude": 5.2, "location": "Tokyo", **TOKYO},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Earthquake simulation processed successfully"
        assert body["data"]["severity"] == 6
        assert body["data"]["description"] == "Earthquake of magnitude 5.2 detected at Tokyo"
        assert body["data"]["location"] == {"type": "Point", "coordinates": [139.6503, 35.6762]}

    def test_below_threshold(self, client):
        response = client.post("/api/simulate/flood", json={"waterLevel": 1.2, **TOKYO})
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Simulation processed but no disaster was created (below threshold)",
        }
        assert client.get("/api/disasters").json()["count"] == 0

    def test_missing_field_is_400(self, client):
        response = client.post("/api/simulate/fire", json=TOKYO)
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_INPUT"
        assert error["details"]["field"] == "temperature"

    def test_simulation_runs_matching(self, client, services):
        config = _create_config(client)
        created = client.post("/api/simulate/fire", json={"temperature": 95, **TOKYO}).json()["data"]
        assert created["severity"] == 6

        stored = client.get(f"/api/disasters/{created['id']}").json()["data"]
        assert stored["alertsSent"] is True
        fetched = client.get(f"/api/alerts/{config['id']}").json()["data"]
        assert fetched["lastTriggered"] is not None

    def test_feed_run(self, client):
        response = client.post("/api/simulate/run", json={"iterations": 5, "seed": 3})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["readings"] == 5
        assert data["disasters"] == len(data["disasterIds"])

    def test_feed_run_without_body(self, client):
        response = client.post("/api/simulate/run")
        assert response.status_code == 200
        assert response.json()["data"]["readings"] == 10


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Disasters
# ═══════════════════════════════════════════════════════════════════════════

class TestDisasterEndpoints:

    def test_create_and_get(self, client):
        created = _create_disaster(client)
        assert created["alertsSent"] is False
        assert created["status"] == "DETECTED"

        response = client.get(f"/api/disasters/{created['id']}")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": created}

    def test_create_does_not_alert(self, client):
        _create_config(client)
        created = _create_disaster(client)
        assert client.get(f"/api/disasters/{created['id']}").json()["data"]["alertsSent"] is False

    def test_invalid_create_is_400(self, client):
        response = client.post("/api/disasters", json=_make_disaster_body(severity=11))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_list_filters(self, client):
        _create_disaster(client, severity=3)
        _create_disaster(client, type="fire", severity=8, description="Fire")
        response = client.get("/api/disasters", params={"type": "FIRE"})
        body = response.json()
        assert body["count"] == 1
        assert body["data"][0]["type"] == "FIRE"

        assert client.get("/api/disasters", params={"severity": 5}).json()["count"] == 1
        assert client.get("/api/disasters", params={"limit": 1}).json()["count"] == 1

    def test_bad_status_filter(self, client):
        response = client.get("/api/disasters", params={"status": "PANIC"})
        assert response.status_code == 400

    def test_naive_date_filters_taken_as_utc(self, client):
        _create_disaster(client)
        response = client.get("/api/disasters", params={"startDate": "2024-01-01T00:00:00"})
        assert response.status_code == 200
        assert response.json()["count"] == 1

        response = client.get("/api/disasters", params={"endDate": "2024-01-02T00:00:00"})
        assert response.status_code == 200
        assert response.json()["count"] == 0

    def test_naive_start_time_filters_with_aware_dates(self, client):
        created = _create_disaster(client, startTime="2024-05-01T00:00:00")
        assert created["startTime"] == "2024-05-01T00:00:00+00:00"
        _create_disaster(client, description="Recent flood")

        params = {"startDate": "2024-04-30T00:00:00Z", "endDate": "2024-05-02T00:00:00Z"}
        response = client.get("/api/disasters", params=params)
        assert response.status_code == 200
        assert [d["id"] for d in response.json()["data"]] == [created["id"]]

    def test_nearby(self, client):
        _create_disaster(client)
        _create_disaster(
            client, location={"type": "Point", "coordinates": [135.5023, 34.6937]}, description="Osaka",
        )
        params = {"longitude": 139.65, "latitude": 35.68, "radius": 50}
        body = client.get("/api/disasters/nearby", params=params).json()
        assert body["count"] == 1
        assert body["data"][0]["description"].endswith("Tokyo")

        params.update(radius=300, unit="mi")
        assert client.get("/api/disasters/nearby", params=params).json()["count"] == 2

    def test_update(self, client):
        created = _create_disaster(client)
        response = client.put(
            f"/api/disasters/{created['id']}", json={"status": "responding", "severity": 8},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "RESPONDING"
        assert data["severity"] == 8
        assert data["location"] == created["location"]

    @pytest.mark.parametrize("field,value", [
        ("type", "FIRE"),
        ("location", {"type": "Point", "coordinates": [0, 0]}),
        ("alertsSent", True),
    ])
    def test_immutable_fields_rejected(self, client, field, value):
        created = _create_disaster(client)
        response = client.put(f"/api/disasters/{created['id']}", json={field: value})
        assert response.status_code == 400
        assert client.get(f"/api/disasters/{created['id']}").json()["data"] == created

    def test_delete(self, client):
        created = _create_disaster(client)
        response = client.delete(f"/api/disasters/{created['id']}")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {}}
        assert client.get(f"/api/disasters/{created['id']}").status_code == 404

    def test_not_found_envelope(self, client):
        response = client.get("/api/disasters/does-not-exist")
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert error["status"] == 404
        assert error["details"]["id"] == "does-not-exist"

    def test_add_reading(self, client):
        created = _create_disaster(client)
        response = client.post(
            f"/api/disasters/{created['id']}/readings", json={"sensorId": "WL-3", "value": 3.6},
        )
        assert response.status_code == 200
        readings = response.json()["data"]["readings"]
        assert [r["sensorId"] for r in readings] == ["WL-3"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Alert Configurations
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertConfigEndpoints:

    def test_create_defaults(self, client):
        response = client.post("/api/alerts", json={"name": "Defaults", "disasterType": "flood"})
        assert response.status_code == 201
        created = response.json()["data"]
        assert created["disasterType"] == "FLOOD"
        assert created["severityThreshold"] == settings.DEFAULT_SEVERITY_THRESHOLD
        assert created["cooldownPeriod"] == settings.DEFAULT_COOLDOWN_MINUTES
        assert created["isActive"] is True
        assert created["lastTriggered"] is None
        assert created["channels"]["push"] == {"enabled": True}

    def test_create_with_region_and_channels(self, client):
        created = _create_config(
            client,
            region={"type": "Point", "coordinates": [139.65, 35.68], "radiusKm": 25},
            channels={"sms": {"enabled": True, "recipients": ["+81-90-0000"]}},
        )
        assert created["region"] == {"type": "Point", "coordinates": [139.65, 35.68], "radiusKm": 25.0}
        assert created["channels"]["sms"] == {"enabled": True, "recipients": ["+81-90-0000"]}

    def test_invalid_threshold(self, client):
        response = client.post("/api/alerts", json=_make_config_body(severityThreshold=0))
        assert response.status_code == 400

    def test_list_filters(self, client):
        _create_config(client, disasterType="FLOOD")
        _create_config(client, disasterType="FIRE", isActive=False)
        assert client.get("/api/alerts").json()["count"] == 2
        assert client.get("/api/alerts", params={"disasterType": "FLOOD"}).json()["count"] == 1
        assert client.get("/api/alerts", params={"isActive": "false"}).json()["count"] == 1

    def test_update(self, client):
        created = _create_config(client)
        response = client.put(
            f"/api/alerts/{created['id']}", json={"severityThreshold": 9, "isActive": False},
        )
        data = response.json()["data"]
        assert data["severityThreshold"] == 9
        assert data["isActive"] is False
        assert data["name"] == created["name"]

    def test_last_triggered_not_writable(self, client):
        created = _create_config(client)
        response = client.put(
            f"/api/alerts/{created['id']}", json={"lastTriggered": "2024-01-01T00:00:00Z"},
        )
        assert response.status_code == 400

    def test_delete_and_missing(self, client):
        created = _create_config(client)
        assert client.delete(f"/api/alerts/{created['id']}").json() == {"success": True, "data": {}}
        assert client.get(f"/api/alerts/{created['id']}").status_code == 404
        assert client.delete(f"/api/alerts/{created['id']}").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Manual Trigger
# ═══════════════════════════════════════════════════════════════════════════

class TestTriggerEndpoint:

    def test_trigger_dispatches_once(self, client):
        config = _create_config(client)
        disaster = _create_disaster(client)

        first = client.post(f"/api/alerts/trigger/{disaster['id']}").json()
        assert first["success"] is True
        assert first["processed"] is True
        assert first["data"]["outcome"] == "PROCESSED"
        assert first["data"]["dispatched"] == [config["id"]]

        second = client.post(f"/api/alerts/trigger/{disaster['id']}").json()
        assert second["processed"] is False
        assert second["data"]["outcome"] == "ALREADY_PROCESSED"
        assert second["data"]["dispatched"] == []

    def test_trigger_no_match(self, client):
        _create_config(client, severityThreshold=10)
        disaster = _create_disaster(client)
        body = client.post(f"/api/alerts/trigger/{disaster['id']}").json()
        assert body["data"]["outcome"] == "NO_MATCH"
        assert body["processed"] is True

    def test_trigger_unknown_disaster(self, client):
        response = client.post("/api/alerts/trigger/missing")
        assert response.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Health & Live Feed
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_root(self, client):
        assert client.get("/").json()["service"] == settings.APP_NAME

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        names = {c["name"] for c in body["components"]}
        assert names == {"storage:memory", "fanout"}

    def test_probes(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health/ready").status_code == 200


class TestRequestContext:

    @pytest.mark.parametrize("path,expected", [
        ("/api/disasters/d-1", {"disaster_id": "d-1"}),
        ("/api/disasters/d-1/readings", {"disaster_id": "d-1"}),
        ("/api/disasters/nearby", {}),
        ("/api/alerts/trigger/d-9", {"disaster_id": "d-9"}),
        ("/api/alerts/c-2", {"alert_config_id": "c-2"}),
        ("/api/simulate/flood", {"disaster_type": "FLOOD"}),
        ("/api/simulate/run", {}),
        ("/health", {}),
    ])
    def test_resource_context(self, path, expected):
        assert resource_context(path) == expected

    def test_request_id_echoed(self, client):
        response = client.get("/api/disasters", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.headers["X-Process-Time"].endswith("ms")

    def test_access_log_carries_disaster_id(self, client):
        with patch.object(middleware.logger, "log") as log:
            client.get("/api/disasters/missing")
        level = log.call_args.args[0]
        extra = log.call_args.kwargs["extra"]
        assert level == logging.WARNING
        assert extra["status_code"] == 404
        assert extra["disaster_id"] == "missing"


class TestLiveFeed:

    def test_join_then_receive_disaster_and_alert(self, client):
        config = _create_config(client, disasterType="EARTHQUAKE")
        with client.websocket_connect("/ws/disasters") as ws:
            ws.send_json({"action": "join-disaster-feed", "feed": "EARTHQUAKE"})
            assert ws.receive_json() == {"event": "joined", "data": {"feed": "EARTHQUAKE"}}

            client.post("/api/simulate/earthquake", json={"magnitude": 6.1, **TOKYO})

            created = ws.receive_json()
            assert created["event"] == "new-disaster"
            alert = ws.receive_json()
            assert alert["event"] == "disaster-alert"
            assert alert["data"]["alertConfigId"] == config["id"]
            assert alert["data"]["disasterId"] == created["data"]["id"]

    def test_bad_feed_gets_error_frame(self, client):
        with client.websocket_connect("/ws/disasters") as ws:
            ws.send_json({"action": "join-disaster-feed", "feed": "TSUNAMI"})
            assert ws.receive_json()["event"] == "error"
