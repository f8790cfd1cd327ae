"""Threshold rules that turn one reading into candidate alerts.

Every rule runs against every reading; the engine then hands the fired
candidates to a selection policy that picks the single alert to emit.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .models import DeviceThresholdConfig, SensorReading, Severity


@dataclass(frozen=True)
class Candidate:
    rule: str
    severity: Severity
    message: str
    gas: Optional[float] = None
    temp: Optional[float] = None
    humidity: Optional[float] = None
    flame: Optional[int] = None


SelectionPolicy = Callable[[Sequence[Candidate]], Optional[Candidate]]


def _fmt(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_snapshot(reading: SensorReading) -> str:
    parts = []
    if reading.gas is not None:
        parts.append(f"Gas: {_fmt(reading.gas)} PPM")
    if reading.temp is not None:
        parts.append(f"Temp: {_fmt(reading.temp)}°C")
    if reading.humidity is not None:
        parts.append(f"Humidity: {_fmt(reading.humidity)}%")
    return ", ".join(parts)


def _candidate(reading: SensorReading, rule: str, severity: Severity, message: str,
               flame: Optional[int] = None) -> Candidate:
    return Candidate(
        rule=rule,
        severity=severity,
        message=message,
        gas=reading.gas,
        temp=reading.temp,
        humidity=reading.humidity,
        flame=flame,
    )


def _flame(reading: SensorReading, cfg: DeviceThresholdConfig) -> List[Candidate]:
    # inverted polarity on the ESP32 flame sensor: LOW means fire
    if not cfg.enable_flame_alerts or reading.flame is None or reading.flame != 0:
        return []
    msg = f"🔥 FLAME DETECTED! [{render_snapshot(reading)}]"
    return [_candidate(reading, "flame", Severity.CRITICAL, msg, flame=reading.flame)]


def _gas(reading: SensorReading, cfg: DeviceThresholdConfig) -> List[Candidate]:
    if not cfg.enable_gas_alerts or reading.gas is None:
        return []
    snapshot = render_snapshot(reading)
    if reading.gas >= cfg.gas_danger_threshold:
        msg = f"🚨 CRITICAL: Gas level at {_fmt(reading.gas)} PPM [{snapshot}]"
        return [_candidate(reading, "gas_danger", Severity.CRITICAL, msg)]
    if reading.gas >= cfg.gas_warning_threshold:
        msg = f"⚠️ WARNING: Gas level elevated [{snapshot}]"
        return [_candidate(reading, "gas_warning", Severity.MEDIUM, msg)]
    return []


def _temp(reading: SensorReading, cfg: DeviceThresholdConfig) -> List[Candidate]:
    if not cfg.enable_temp_alerts or reading.temp is None:
        return []
    snapshot = render_snapshot(reading)
    if reading.temp >= cfg.temp_danger_threshold:
        msg = f"🚨 CRITICAL: High temperature detected [{snapshot}]"
        return [_candidate(reading, "temp_danger", Severity.CRITICAL, msg)]
    if reading.temp >= cfg.temp_warning_threshold:
        msg = f"⚠️ WARNING: Temperature elevated [{snapshot}]"
        return [_candidate(reading, "temp_warning", Severity.MEDIUM, msg)]
    return []


def _humidity(reading: SensorReading, cfg: DeviceThresholdConfig) -> List[Candidate]:
    # humidity has no enable flag in device_settings
    if reading.humidity is None:
        return []
    snapshot = render_snapshot(reading)
    if reading.humidity >= cfg.humidity_danger_threshold:
        msg = f"🚨 CRITICAL: High humidity [{snapshot}]"
        return [_candidate(reading, "humidity_danger", Severity.HIGH, msg)]
    if reading.humidity >= cfg.humidity_warning_threshold:
        msg = f"⚠️ WARNING: Humidity elevated [{snapshot}]"
        return [_candidate(reading, "humidity_warning", Severity.MEDIUM, msg)]
    return []


def _combined(reading: SensorReading, cfg: DeviceThresholdConfig) -> List[Candidate]:
    if not (cfg.enable_gas_alerts and cfg.enable_temp_alerts):
        return []
    if reading.gas is None or reading.temp is None:
        return []
    if reading.gas < cfg.gas_danger_threshold or reading.temp < cfg.temp_danger_threshold:
        return []
    msg = (
        f"🔥 EXTREME DANGER: High gas ({_fmt(reading.gas)} PPM) AND "
        f"high temperature ({_fmt(reading.temp)}°C) detected!"
    )
    return [_candidate(reading, "combined_extreme", Severity.CRITICAL, msg)]


RULES = (_flame, _gas, _temp, _humidity, _combined)


def evaluate_rules(reading: SensorReading, cfg: DeviceThresholdConfig) -> List[Candidate]:
    """Run every rule and return the fired candidates in evaluation order."""
    fired: List[Candidate] = []
    for rule in RULES:
        fired.extend(rule(reading, cfg))
    return fired


def first_critical_wins(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Default policy: the first critical candidate, else the first one fired."""
    if not candidates:
        return None
    for c in candidates:
        if c.severity == Severity.CRITICAL:
            return c
    return candidates[0]


_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


def highest_severity_wins(candidates: Sequence[Candidate]) -> Optional[Candidate]:
    # max() keeps the first of equal ranks, so this only differs from the
    # default when a high humidity alert follows a medium warning
    if not candidates:
        return None
    return max(candidates, key=lambda c: _RANK[c.severity])
