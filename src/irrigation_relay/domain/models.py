"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any

from irrigation_relay.domain.enums import Recommendation


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_rfc3339_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class TelemetryReading:
    """Partial sensor update. ``None`` means the field was not supplied.

    Raw ADC fields (0..4095) and their normalized percentages are independent:
    nothing here derives one from the other.
    """

    temperature: float | None = None
    humidity: float | None = None
    soil_moisture: float | None = None
    soil_moisture_raw: float | None = None
    light_level: float | None = None
    light_level_raw: float | None = None
    rain_intensity: float | None = None
    rain_intensity_raw: float | None = None
    pump_status: bool | None = None
    auto_mode: bool | None = None

    def present_fields(self) -> dict[str, Any]:
        """Supplied fields only, keyed by attribute name."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    def is_empty(self) -> bool:
        return not self.present_fields()


TELEMETRY_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(TelemetryReading))


@dataclass(frozen=True, slots=True)
class CanonicalState:
    """Always-complete merged snapshot. Instances are immutable, so a reference is a safe copy."""

    temperature: float = 28.5
    humidity: float = 65.0
    soil_moisture: float = 5.0
    soil_moisture_raw: float = 3000.0
    light_level: float = 90.0
    light_level_raw: float = 300.0
    rain_intensity: float = 0.0
    rain_intensity_raw: float = 4000.0
    pump_status: bool = False
    auto_mode: bool = True
    last_updated: datetime | None = None
    producer_connected: bool = False

    def merged(self, reading: TelemetryReading, *, at: datetime) -> CanonicalState:
        return replace(self, **reading.present_fields(), last_updated=at)

    def with_producer_connected(self, connected: bool) -> CanonicalState:
        if connected == self.producer_connected:
            return self
        return replace(self, producer_connected=connected)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    timestamp: datetime
    state: CanonicalState


@dataclass(frozen=True, slots=True)
class IrrigationDecision:
    score: int
    recommendation: Recommendation
