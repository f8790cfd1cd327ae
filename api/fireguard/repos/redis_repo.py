import json
from typing import Any, Dict, Optional

import redis

from ..models import SensorReading

ALERT_CHANNEL = "alerts:stream"
LATEST_TTL_SECONDS = 24 * 3600


def latest_key(device_id: str) -> str:
    return f"device:{device_id}:latest"


class RedisRepo:
    def __init__(self, url: str, client: Optional[redis.Redis] = None) -> None:
        self.client = client if client is not None else redis.Redis.from_url(url)

    def set_latest(self, reading: SensorReading) -> None:
        self.client.set(latest_key(reading.device_id), reading.model_dump_json(), ex=LATEST_TTL_SECONDS)

    def get_latest(self, device_id: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(latest_key(device_id))
        return json.loads(raw) if raw else None

    def publish_alert(self, payload: Dict[str, Any]) -> int:
        # returns the number of subscribers that got it (email sender, other replicas)
        return self.client.publish(ALERT_CHANNEL, json.dumps(payload))
