import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from ..models import Alert, DeviceThresholdConfig, DeviceThresholdUpdate, SensorReading


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def naive_utc(value: datetime) -> datetime:
    return as_utc(value).astimezone(timezone.utc).replace(tzinfo=None)


def device_status(last_seen: Optional[datetime], now: datetime, offline_after: int = 60) -> str:
    if last_seen is None:
        return "offline"
    if (now - as_utc(last_seen)).total_seconds() < offline_after:
        return "online"
    return "offline"


class MongoRepo:
    """Everything FireGuard keeps in MongoDB.

    Doubles as the engine's config store, alert sink, recipient resolver and
    location resolver; the async methods push the blocking driver calls onto
    a worker thread.
    """

    def __init__(self, uri: str, db_name: str, client: Optional[MongoClient] = None) -> None:
        self.client = client if client is not None else MongoClient(uri)
        self.db = self.client[db_name]
        self.readings = self.db["sensor_data"]
        self.devices = self.db["devices"]
        self.alerts = self.db["alerts"]
        self.settings = self.db["device_settings"]
        self.profiles = self.db["profiles"]

    def ensure_indexes(self) -> None:
        self.readings.create_index([("device_id", ASCENDING), ("time", DESCENDING)])
        self.alerts.create_index([("device_id", ASCENDING), ("time", DESCENDING)])
        self.settings.create_index("device_id", unique=True)

    # --- readings / devices

    def insert_reading(self, reading: SensorReading) -> None:
        doc = reading.model_dump()
        seen = naive_utc(reading.time)
        self.readings.insert_one(doc)
        self.devices.update_one(
            {"_id": reading.device_id},
            {
                "$setOnInsert": {"firstSeen": seen},
                "$set": {"lastSeen": seen, "status": "online"},
            },
            upsert=True,
        )

    def query_readings(self, device_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        cur = self.readings.find({"device_id": device_id}, {"_id": 0}).sort("time", DESCENDING).limit(limit)
        return list(cur)

    def list_devices(self) -> List[Dict[str, Any]]:
        return list(self.devices.find({}))

    def mark_stale_devices_offline(self, now: datetime, offline_after: int = 60) -> int:
        cutoff = naive_utc(now) - timedelta(seconds=offline_after)
        res = self.devices.update_many(
            {"status": "online", "lastSeen": {"$lt": cutoff}},
            {"$set": {"status": "offline"}},
        )
        return res.modified_count

    # --- device settings

    def get_settings(self, device_id: str) -> Optional[DeviceThresholdConfig]:
        doc = self.settings.find_one({"device_id": device_id}, {"_id": 0})
        return DeviceThresholdConfig(**doc) if doc else None

    def upsert_settings(self, device_id: str, update: DeviceThresholdUpdate) -> DeviceThresholdConfig:
        doc = self.settings.find_one_and_update(
            {"device_id": device_id},
            {"$set": update.model_dump()},
            upsert=True,
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        return DeviceThresholdConfig(**doc)

    async def get_config(self, device_id: str) -> Optional[DeviceThresholdConfig]:
        return await asyncio.to_thread(self.get_settings, device_id)

    # --- alerts

    async def insert(self, alert: Alert) -> str:
        res = await asyncio.to_thread(self.alerts.insert_one, alert.model_dump())
        return str(res.inserted_id)

    def list_alerts(self, device_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = {"device_id": device_id} if device_id else {}
        out = []
        for doc in self.alerts.find(query).sort("time", DESCENDING).limit(limit):
            doc["id"] = str(doc.pop("_id"))
            out.append(doc)
        return out

    def acknowledge_alert(self, alert_id: str, by: str, when: datetime) -> bool:
        oid = _object_id(alert_id)
        if oid is None:
            return False
        res = self.alerts.update_one(
            {"_id": oid},
            {"$set": {"acknowledged": True, "acknowledged_at": when, "acknowledged_by": by}},
        )
        return res.matched_count == 1

    def delete_alert(self, alert_id: str) -> bool:
        oid = _object_id(alert_id)
        if oid is None:
            return False
        return self.alerts.delete_one({"_id": oid}).deleted_count == 1

    # --- lookups used to stamp alerts

    def _subscribed_email(self) -> Optional[str]:
        doc = self.profiles.find_one({"receive_alerts": True}, {"_id": 0, "alert_email": 1, "email": 1})
        if not doc:
            return None
        return doc.get("alert_email") or doc.get("email")

    async def resolve_email(self, device_id: str) -> Optional[str]:
        return await asyncio.to_thread(self._subscribed_email)

    async def resolve_location(self, device_id: str) -> Optional[str]:
        doc = await asyncio.to_thread(self.devices.find_one, {"_id": device_id}, {"location": 1})
        return doc.get("location") if doc else None


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None
