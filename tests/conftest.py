import asyncio
from datetime import datetime, timedelta, timezone

import fakeredis
import mongomock
import pytest

from fireguard.models import DeviceThresholdConfig, SensorReading
from fireguard.repos.mongo_repo import MongoRepo
from fireguard.repos.redis_repo import RedisRepo

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeConfigStore:
    def __init__(self, *configs, delay=0.0):
        self.configs = {c.device_id: c for c in configs}
        self.delay = delay
        self.calls = 0

    async def get_config(self, device_id):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.configs.get(device_id)


class FakeSink:
    def __init__(self, fail=False, delay=0.0):
        self.alerts = []
        self.fail = fail
        self.delay = delay

    async def insert(self, alert):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("alerts table unavailable")
        self.alerts.append(alert)
        return f"alert-{len(self.alerts)}"


def reading(device_id="ESP32_001", **fields):
    fields.setdefault("time", T0)
    return SensorReading(device_id=device_id, **fields)


def settings(device_id="ESP32_001", **overrides):
    return DeviceThresholdConfig(device_id=device_id, **overrides)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mongo():
    return MongoRepo("mongodb://unused", "fireguard_test", client=mongomock.MongoClient())


@pytest.fixture
def redis_repo():
    return RedisRepo("redis://unused", client=fakeredis.FakeRedis())
