from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from fireguard.main import create_app


@pytest.fixture
def client(mongo, redis_repo):
    return TestClient(create_app(mongo=mongo, redis_repo=redis_repo, eh_conn=""))


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_settings_crud(client):
    assert client.get("/settings/ESP32_001").status_code == 404

    res = client.put("/settings/ESP32_001", json={"gas_danger_threshold": 450, "alert_cooldown_seconds": 30})
    assert res.status_code == 200
    assert res.json()["gas_danger_threshold"] == 450
    assert res.json()["humidity_warning_threshold"] == 70

    body = client.get("/settings/ESP32_001").json()
    assert body["device_id"] == "ESP32_001"
    assert body["alert_cooldown_seconds"] == 30


def test_settings_reject_negative_cooldown(client):
    res = client.put("/settings/ESP32_001", json={"alert_cooldown_seconds": -5})
    assert res.status_code == 422


def test_reading_without_settings_is_suppressed(client):
    res = client.post("/readings", json={"device_id": "X", "flame": 0, "time": now_iso()})
    assert res.status_code == 202
    assert res.json() == {"result": "suppressed", "reason": "no_config"}
    assert client.get("/alerts").json() == []


def test_reading_rejects_empty_device_id(client):
    res = client.post("/readings", json={"device_id": "", "gas": 10, "time": now_iso()})
    assert res.status_code == 422


def test_reading_to_alert_flow(client):
    client.put("/settings/ESP32_001", json={})

    res = client.post("/readings", json={"deviceId": "ESP32_001", "gas": 550, "time": now_iso()})
    assert res.json()["result"] == "emitted"
    assert res.json()["severity"] == "critical"

    # second reading inside the 60 s cooldown
    res = client.post("/readings", json={"device_id": "ESP32_001", "flame": 0, "time": now_iso()})
    assert res.json() == {"result": "suppressed", "reason": "cooldown"}

    alerts = client.get("/alerts", params={"device_id": "ESP32_001"}).json()
    assert len(alerts) == 1
    alert = alerts[0]
    assert "Gas: 550" in alert["message"]
    assert alert["email"] == "admin@fireguard.com"
    assert alert["location"] == "Building A - Floor 1"
    assert alert["acknowledged"] is False

    res = client.post(f"/alerts/{alert['id']}/acknowledge", json={"by": "operator"})
    assert res.status_code == 200
    assert client.get("/alerts").json()[0]["acknowledged_by"] == "operator"

    assert client.delete(f"/alerts/{alert['id']}").status_code == 200
    assert client.get("/alerts").json() == []


def test_unknown_alert_is_404(client):
    assert client.post("/alerts/abc/acknowledge", json={"by": "me"}).status_code == 404
    assert client.delete("/alerts/0123456789abcdef01234567").status_code == 404


def test_devices_and_readings(client):
    client.post("/readings", json={"device_id": "ESP32_002", "temp": 28.5, "humidity": 51, "time": now_iso()})

    devices = client.get("/devices").json()
    assert len(devices) == 1
    assert devices[0]["device_id"] == "ESP32_002"
    assert devices[0]["status"] == "online"
    assert devices[0]["latest"]["temp"] == 28.5

    rows = client.get("/readings/ESP32_002").json()
    assert len(rows) == 1
    assert rows[0]["humidity"] == 51
    assert rows[0]["gas"] is None
