from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SensorReading(BaseModel):
    # one measurement snapshot from an ESP32; absent sensors are None, never 0
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    device_id: str = Field(min_length=1, alias="deviceId")
    gas: Optional[float] = None
    temp: Optional[float] = None
    humidity: Optional[float] = None
    flame: Optional[int] = None  # 0 = flame detected, anything else = clear
    time: datetime
    location: Optional[str] = None


class DeviceThresholdUpdate(BaseModel):
    gas_warning_threshold: float = 300
    gas_danger_threshold: float = 500
    temp_warning_threshold: float = 35
    temp_danger_threshold: float = 45
    humidity_warning_threshold: float = 70
    humidity_danger_threshold: float = 85
    enable_gas_alerts: bool = True
    enable_temp_alerts: bool = True
    enable_flame_alerts: bool = True
    enable_buzzer: bool = True
    alert_cooldown_seconds: int = Field(default=60, ge=0)


class DeviceThresholdConfig(DeviceThresholdUpdate):
    """Per-device alerting settings, as stored in the device_settings collection.

    Defaults mirror what a freshly configured device gets from the settings
    screen. Warning <= danger ordering is deliberately not validated.
    """
    model_config = ConfigDict(extra="ignore")

    device_id: str = Field(min_length=1)


class Alert(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    device_id: str
    message: str
    severity: Severity
    gas: Optional[float] = None
    temp: Optional[float] = None
    humidity: Optional[float] = None
    flame: Optional[int] = None
    time: datetime
    location: Optional[str] = None
    email: Optional[str] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None


class AlertOut(Alert):
    id: str


class AcknowledgeIn(BaseModel):
    by: str = Field(min_length=1)
