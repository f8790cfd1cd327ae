"""
Reading source backed by the IoT Hub built-in (Event Hub-compatible) endpoint.

1) start() schedules the receive loop on the running event loop.
2) Each batch is decoded event by event: the device id comes from the
   IoT Hub system properties and overrides whatever the body claims.
3) Every valid reading is awaited through on_reading before the next one,
   so readings of one partition (and therefore one device) stay in order.
4) The partition checkpoint is updated once the batch is handled.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from azure.eventhub import TransportType
from azure.eventhub.aio import EventHubConsumerClient
from pydantic import ValidationError

from .models import SensorReading

logger = logging.getLogger(__name__)

DEVICE_ID_PROP = "iothub-connection-device-id"


def device_id_from(system_properties: dict) -> Optional[str]:
    raw = system_properties.get(DEVICE_ID_PROP.encode()) or system_properties.get(DEVICE_ID_PROP)
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode()
    return raw


def parse_event(body: str, device_id: Optional[str]) -> SensorReading:
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    if device_id:
        data["device_id"] = device_id
        data.pop("deviceId", None)
    return SensorReading.model_validate(data)


class ReadingConsumer:
    def __init__(
        self,
        eh_conn_str: str,
        consumer_group: str,
        on_reading: Callable[[SensorReading], Awaitable[None]],
    ) -> None:
        self._on_reading = on_reading
        # AMQP over websockets tunnels through 443, which corporate firewalls allow
        self._client = EventHubConsumerClient.from_connection_string(
            conn_str=eh_conn_str,
            consumer_group=consumer_group,
            transport_type=TransportType.AmqpOverWebsocket,
        )
        self._task: Optional[asyncio.Task] = None

    async def _handle_events(self, partition_context, events):
        for event in events:
            device_id = None
            try:
                device_id = device_id_from(event.system_properties)
                reading = parse_event(event.body_as_str(encoding="utf-8"), device_id)
            except (ValueError, TypeError, ValidationError) as ex:
                logger.warning(f"Skipping malformed event from device={device_id}: {ex}")
                continue
            try:
                await self._on_reading(reading)
            except Exception:
                logger.exception(f"Failed to handle reading from device={device_id}")

        try:
            await partition_context.update_checkpoint()
        except Exception as ex:
            logger.warning(f"Checkpoint update failed on partition {partition_context.partition_id}: {ex}")

    async def _run(self):
        async with self._client:
            await self._client.receive_batch(
                on_event_batch=self._handle_events,
                max_wait_time=5.0,
            )

    def start(self) -> None:
        logger.info("Starting Event Hub reading consumer")
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Event Hub reading consumer stopped")
