import logging

from .alerts import AlertEngine, Emitted, EvaluationResult, Suppressed
from .models import SensorReading
from .repos.mongo_repo import MongoRepo
from .repos.redis_repo import RedisRepo
from .ws_manager import WSManager

logger = logging.getLogger(__name__)


def describe(result: EvaluationResult) -> dict:
    if isinstance(result, Emitted):
        return {"result": "emitted", "alert_id": result.alert_id, "severity": result.alert.severity}
    if isinstance(result, Suppressed):
        return {"result": "suppressed", "reason": result.reason.value}
    return {"result": "failed", "error": repr(result.cause)}


class ReadingPipeline:
    """What happens to every reading, whichever source delivered it."""

    def __init__(self, mongo: MongoRepo, redis_repo: RedisRepo, engine: AlertEngine, ws: WSManager) -> None:
        self.mongo = mongo
        self.redis = redis_repo
        self.engine = engine
        self.ws = ws

    async def __call__(self, reading: SensorReading) -> EvaluationResult:
        self.mongo.insert_reading(reading)
        self.redis.set_latest(reading)

        result = await self.engine.evaluate(reading)
        if isinstance(result, Emitted):
            payload = result.alert.model_dump(mode="json")
            payload["id"] = result.alert_id
            try:
                self.redis.publish_alert(payload)
            except Exception as ex:
                # the alert is already stored; subscribers can catch up from Mongo
                logger.error(f"Publishing alert for {reading.device_id} failed: {ex!r}")
            await self.ws.broadcast("alerts", {"type": "alert", "data": payload})

        await self.ws.broadcast("readings", {"type": "reading", "data": reading.model_dump(mode="json")})
        return result
