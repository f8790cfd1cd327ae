import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Union

from .models import Alert, DeviceThresholdConfig, SensorReading
from .rules import SelectionPolicy, evaluate_rules, first_critical_wins

logger = logging.getLogger(__name__)

FALLBACK_EMAIL = "admin@fireguard.com"
FALLBACK_LOCATION = "Building A - Floor 1"


class ConfigStore(Protocol):
    async def get_config(self, device_id: str) -> Optional[DeviceThresholdConfig]: ...


class AlertSink(Protocol):
    async def insert(self, alert: Alert) -> str: ...


class RecipientResolver(Protocol):
    async def resolve_email(self, device_id: str) -> Optional[str]: ...


class LocationResolver(Protocol):
    async def resolve_location(self, device_id: str) -> Optional[str]: ...


class SuppressReason(str, Enum):
    NO_CONFIG = "no_config"
    COOLDOWN = "cooldown"
    NO_RULE_FIRED = "no_rule_fired"


@dataclass(frozen=True)
class Emitted:
    alert: Alert
    alert_id: Optional[str] = None


@dataclass(frozen=True)
class Suppressed:
    reason: SuppressReason
    alert = None


@dataclass(frozen=True)
class Failed:
    cause: BaseException
    alert = None


EvaluationResult = Union[Emitted, Suppressed, Failed]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CooldownTracker:
    """Last emission time per device, plus the lock that serializes a device.

    Owned by one engine; a restart forgets everything, so every device may
    alert again immediately.
    """

    def __init__(self) -> None:
        self._last: Dict[str, datetime] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = self._locks[device_id] = asyncio.Lock()
        return lock

    def last_emitted(self, device_id: str) -> Optional[datetime]:
        return self._last.get(device_id)

    def in_cooldown(self, device_id: str, now: datetime, cooldown_seconds: int) -> bool:
        last = self._last.get(device_id)
        if last is None:
            return False
        elapsed_ms = (now - last).total_seconds() * 1000
        return elapsed_ms < cooldown_seconds * 1000

    def mark(self, device_id: str, when: datetime) -> None:
        self._last[device_id] = when


class AlertEngine:
    def __init__(
        self,
        configs: ConfigStore,
        sink: AlertSink,
        recipients: Optional[RecipientResolver] = None,
        locations: Optional[LocationResolver] = None,
        policy: SelectionPolicy = first_critical_wins,
        cooldowns: Optional[CooldownTracker] = None,
        clock: Callable[[], datetime] = utcnow,
        io_timeout: float = 5.0,
        fallback_email: str = FALLBACK_EMAIL,
        fallback_location: str = FALLBACK_LOCATION,
    ) -> None:
        self.configs = configs
        self.sink = sink
        self.recipients = recipients
        self.locations = locations
        self.policy = policy
        self.cooldowns = cooldowns if cooldowns is not None else CooldownTracker()
        self.clock = clock
        self.io_timeout = io_timeout
        self.fallback_email = fallback_email
        self.fallback_location = fallback_location

    async def evaluate(self, reading: SensorReading) -> EvaluationResult:
        """Evaluate one reading and emit at most one alert for it.

        Readings for the same device are evaluated one at a time; other
        devices proceed in parallel. The cooldown clock only advances after
        the sink accepted the alert, so a failed write is retried by the next
        qualifying reading.
        """
        device_id = reading.device_id
        async with self.cooldowns.lock_for(device_id):
            try:
                cfg = await asyncio.wait_for(self.configs.get_config(device_id), self.io_timeout)
            except Exception as ex:
                logger.error(f"Config lookup failed for device {device_id}: {ex!r}")
                return Failed(ex)
            if cfg is None:
                logger.warning(f"No settings found for device: {device_id}")
                return Suppressed(SuppressReason.NO_CONFIG)

            now = self.clock()
            if self.cooldowns.in_cooldown(device_id, now, cfg.alert_cooldown_seconds):
                logger.debug(f"Device {device_id} in cooldown, skipping evaluation")
                return Suppressed(SuppressReason.COOLDOWN)

            chosen = self.policy(evaluate_rules(reading, cfg))
            if chosen is None:
                return Suppressed(SuppressReason.NO_RULE_FIRED)

            alert = Alert(
                device_id=device_id,
                message=chosen.message,
                severity=chosen.severity,
                gas=chosen.gas,
                temp=chosen.temp,
                humidity=chosen.humidity,
                flame=chosen.flame,
                time=now,
                location=reading.location or await self._location(device_id),
                email=await self._email(device_id),
            )
            try:
                alert_id = await asyncio.wait_for(self.sink.insert(alert), self.io_timeout)
            except Exception as ex:
                logger.error(f"Error creating alert for device {device_id}: {ex!r}")
                return Failed(ex)

            self.cooldowns.mark(device_id, now)
            logger.info(f"Alert created ({alert.severity}): {alert.message}")
            return Emitted(alert, alert_id)

    async def _email(self, device_id: str) -> str:
        if self.recipients is None:
            return self.fallback_email
        try:
            email = await asyncio.wait_for(self.recipients.resolve_email(device_id), self.io_timeout)
        except Exception as ex:
            logger.warning(f"Recipient lookup failed, using fallback: {ex!r}")
            return self.fallback_email
        return email or self.fallback_email

    async def _location(self, device_id: str) -> str:
        if self.locations is None:
            return self.fallback_location
        try:
            location = await asyncio.wait_for(self.locations.resolve_location(device_id), self.io_timeout)
        except Exception as ex:
            logger.warning(f"Location lookup failed, using fallback: {ex!r}")
            return self.fallback_location
        return location or self.fallback_location
