import asyncio
import json
from datetime import timedelta

from fireguard.models import Alert, DeviceThresholdUpdate, Severity
from fireguard.repos.mongo_repo import device_status
from fireguard.repos.redis_repo import ALERT_CHANNEL, latest_key

from conftest import T0, reading


def make_alert(**overrides):
    fields = dict(device_id="ESP32_001", message="🔥 FLAME DETECTED! []", severity=Severity.CRITICAL,
                  flame=0, time=T0)
    fields.update(overrides)
    return Alert(**fields)


def test_settings_roundtrip_and_defaults(mongo):
    assert mongo.get_settings("ESP32_001") is None

    saved = mongo.upsert_settings("ESP32_001", DeviceThresholdUpdate(gas_danger_threshold=450))
    assert saved.device_id == "ESP32_001"
    assert saved.gas_danger_threshold == 450
    assert saved.alert_cooldown_seconds == 60

    cfg = asyncio.run(mongo.get_config("ESP32_001"))
    assert cfg == saved


def test_settings_fill_missing_fields_with_defaults(mongo):
    mongo.settings.insert_one({"device_id": "old", "gas_danger_threshold": 700})
    cfg = mongo.get_settings("old")
    assert cfg.gas_danger_threshold == 700
    assert cfg.temp_danger_threshold == 45
    assert cfg.enable_flame_alerts is True


def test_insert_and_list_alerts(mongo):
    first = asyncio.run(mongo.insert(make_alert()))
    asyncio.run(mongo.insert(make_alert(device_id="other", time=T0 + timedelta(seconds=5))))

    alerts = mongo.list_alerts()
    assert [a["device_id"] for a in alerts] == ["other", "ESP32_001"]
    assert alerts[1]["id"] == first
    assert alerts[1]["severity"] == "critical"
    assert alerts[1]["acknowledged"] is False

    assert [a["id"] for a in mongo.list_alerts("ESP32_001")] == [first]


def test_acknowledge_and_delete_alert(mongo):
    alert_id = asyncio.run(mongo.insert(make_alert()))

    assert mongo.acknowledge_alert(alert_id, "operator", T0)
    doc = mongo.list_alerts()[0]
    assert doc["acknowledged"] is True
    assert doc["acknowledged_by"] == "operator"

    assert mongo.delete_alert(alert_id)
    assert not mongo.delete_alert(alert_id)
    assert mongo.list_alerts() == []


def test_unknown_alert_ids(mongo):
    assert not mongo.acknowledge_alert("not-an-id", "x", T0)
    assert not mongo.acknowledge_alert("0123456789abcdef01234567", "x", T0)
    assert not mongo.delete_alert("nope")


def test_insert_reading_tracks_device(mongo):
    mongo.insert_reading(reading(gas=100, time=T0))
    mongo.insert_reading(reading(gas=120, time=T0 + timedelta(seconds=10)))

    device = mongo.devices.find_one({"_id": "ESP32_001"})
    assert device["status"] == "online"
    assert device["firstSeen"] == T0.replace(tzinfo=None)
    assert device["lastSeen"] == (T0 + timedelta(seconds=10)).replace(tzinfo=None)

    rows = mongo.query_readings("ESP32_001")
    assert [r["gas"] for r in rows] == [120, 100]
    assert "_id" not in rows[0]


def test_stale_devices_marked_offline(mongo):
    mongo.insert_reading(reading("old", time=T0))
    mongo.insert_reading(reading("fresh", time=T0 + timedelta(seconds=50)))

    assert mongo.mark_stale_devices_offline(T0 + timedelta(seconds=70), offline_after=60) == 1
    status = {d["_id"]: d["status"] for d in mongo.list_devices()}
    assert status == {"old": "offline", "fresh": "online"}


def test_device_status():
    assert device_status(T0, T0 + timedelta(seconds=59)) == "online"
    assert device_status(T0, T0 + timedelta(seconds=60)) == "offline"
    assert device_status(T0.replace(tzinfo=None), T0 + timedelta(seconds=1)) == "online"
    assert device_status(None, T0) == "offline"


def test_resolve_email(mongo):
    assert asyncio.run(mongo.resolve_email("ESP32_001")) is None

    mongo.profiles.insert_many([
        {"email": "quiet@example.com", "receive_alerts": False},
        {"email": "ops@example.com", "alert_email": None, "receive_alerts": True},
    ])
    assert asyncio.run(mongo.resolve_email("ESP32_001")) == "ops@example.com"

    mongo.profiles.update_one({"email": "ops@example.com"}, {"$set": {"alert_email": "pager@example.com"}})
    assert asyncio.run(mongo.resolve_email("ESP32_001")) == "pager@example.com"


def test_resolve_location(mongo):
    assert asyncio.run(mongo.resolve_location("ESP32_001")) is None
    mongo.devices.insert_one({"_id": "ESP32_001", "location": "Lab 3"})
    assert asyncio.run(mongo.resolve_location("ESP32_001")) == "Lab 3"


def test_latest_reading_cache(redis_repo):
    assert redis_repo.get_latest("ESP32_001") is None
    redis_repo.set_latest(reading(gas=210, flame=1))

    latest = redis_repo.get_latest("ESP32_001")
    assert latest["gas"] == 210
    assert latest["flame"] == 1
    assert redis_repo.client.ttl(latest_key("ESP32_001")) > 0


def test_publish_alert(redis_repo):
    pubsub = redis_repo.client.pubsub()
    pubsub.subscribe(ALERT_CHANNEL)
    pubsub.get_message(timeout=1)  # subscribe confirmation

    payload = make_alert().model_dump(mode="json")
    payload["id"] = "65f0c0ffee0000000000abcd"
    assert redis_repo.publish_alert(payload) == 1

    msg = json.loads(pubsub.get_message(timeout=1)["data"])
    assert msg["id"] == "65f0c0ffee0000000000abcd"
    assert msg["severity"] == "critical"
