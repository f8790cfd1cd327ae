import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect

from . import config
from .alerts import AlertEngine, utcnow
from .consumer import ReadingConsumer
from .log import setup_logging
from .models import AcknowledgeIn, AlertOut, DeviceThresholdConfig, DeviceThresholdUpdate, SensorReading
from .pipeline import ReadingPipeline, describe
from .repos.mongo_repo import MongoRepo, device_status
from .repos.redis_repo import RedisRepo
from .ws_manager import CHANNELS, WSManager

logger = logging.getLogger(__name__)


async def sweep_offline_devices(mongo: MongoRepo, interval: float, offline_after: int) -> None:
    # first pass waits a full interval so a restart doesn't flip every device offline
    while True:
        await asyncio.sleep(interval)
        try:
            n = await asyncio.to_thread(mongo.mark_stale_devices_offline, utcnow(), offline_after)
            if n:
                logger.info(f"Marked {n} stale device(s) offline")
        except Exception as ex:
            logger.error(f"Offline sweep failed: {ex!r}")


def create_app(
    mongo: Optional[MongoRepo] = None,
    redis_repo: Optional[RedisRepo] = None,
    engine: Optional[AlertEngine] = None,
    eh_conn: str = config.EH_CONN,
) -> FastAPI:
    app = FastAPI(title="FireGuard Alert Service")

    # --- deps
    mongo = mongo or MongoRepo(config.MONGO_URI, config.MONGO_DB)
    redis_repo = redis_repo or RedisRepo(config.REDIS_URL)
    engine = engine or AlertEngine(
        configs=mongo,
        sink=mongo,
        recipients=mongo,
        locations=mongo,
        io_timeout=config.ALERT_IO_TIMEOUT_SECONDS,
        fallback_email=config.FALLBACK_ALERT_EMAIL,
        fallback_location=config.DEFAULT_LOCATION,
    )
    ws_manager = WSManager()
    pipeline = ReadingPipeline(mongo, redis_repo, engine, ws_manager)

    app.state.mongo = mongo
    app.state.redis = redis_repo
    app.state.engine = engine
    app.state.pipeline = pipeline
    app.state.consumer = None
    app.state.sweeper = None

    # --- startup/shutdown
    @app.on_event("startup")
    async def on_startup():
        setup_logging()
        mongo.ensure_indexes()
        if eh_conn:
            app.state.consumer = ReadingConsumer(eh_conn, config.EH_GROUP, pipeline)
            app.state.consumer.start()
        else:
            logger.warning("EH_COMPAT_CONN_STR is not set; accepting readings over HTTP only")
        app.state.sweeper = asyncio.create_task(
            sweep_offline_devices(mongo, config.OFFLINE_SWEEP_INTERVAL_SECONDS, config.OFFLINE_AFTER_SECONDS)
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        if app.state.consumer:
            await app.state.consumer.stop()
        if app.state.sweeper:
            app.state.sweeper.cancel()
            try:
                await app.state.sweeper
            except asyncio.CancelledError:
                pass

    # --- REST APIs ---
    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/readings", status_code=202)
    async def post_reading(reading: SensorReading):
        return describe(await pipeline(reading))

    @app.get("/readings/{device_id}", response_model=List[Dict])
    def get_readings(device_id: str, limit: int = Query(100, le=1000)):
        return mongo.query_readings(device_id, limit=limit)

    @app.get("/devices", response_model=List[Dict])
    def list_devices():
        now = utcnow()
        out = []
        for d in mongo.list_devices():
            out.append({
                "device_id": d["_id"],
                "location": d.get("location"),
                "last_seen": d.get("lastSeen"),
                "status": device_status(d.get("lastSeen"), now, config.OFFLINE_AFTER_SECONDS),
                "latest": redis_repo.get_latest(d["_id"]),
            })
        return out

    @app.get("/settings/{device_id}", response_model=DeviceThresholdConfig)
    def get_settings(device_id: str):
        cfg = mongo.get_settings(device_id)
        if cfg is None:
            raise HTTPException(status_code=404, detail=f"No settings for device {device_id}")
        return cfg

    @app.put("/settings/{device_id}", response_model=DeviceThresholdConfig)
    def put_settings(device_id: str, body: DeviceThresholdUpdate):
        return mongo.upsert_settings(device_id, body)

    @app.get("/alerts", response_model=List[AlertOut])
    def list_alerts(device_id: Optional[str] = None, limit: int = Query(100, le=1000)):
        return mongo.list_alerts(device_id, limit=limit)

    @app.post("/alerts/{alert_id}/acknowledge")
    def acknowledge_alert(alert_id: str, body: AcknowledgeIn):
        if not mongo.acknowledge_alert(alert_id, body.by, utcnow()):
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"status": "acknowledged"}

    @app.delete("/alerts/{alert_id}")
    def delete_alert(alert_id: str):
        if not mongo.delete_alert(alert_id):
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"status": "deleted"}

    # --- WebSockets for live UI ---
    @app.websocket("/ws/{channel}")
    async def ws_channel(ws: WebSocket, channel: str):
        if channel not in CHANNELS:
            await ws.close(code=1008)
            return
        await ws_manager.connect(ws, channel)
        try:
            while True:
                # nothing expected from clients; keeps the socket open
                await ws.receive_text()
        except WebSocketDisconnect:
            ws_manager.disconnect(ws, channel)

    return app


app = create_app()
