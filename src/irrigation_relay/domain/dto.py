"""Pydantic DTOs for inbound relay frames."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from irrigation_relay.domain.enums import Role
from irrigation_relay.domain.models import TelemetryReading


class TelemetryReadingDTO(BaseModel):
    # Unknown keys (type, ts_ms, irrigationScore echoed back, ...) are ignored.
    # NaN and infinity parse from JSON but cannot be sent back out.
    model_config = ConfigDict(extra="ignore", frozen=True, allow_inf_nan=False)

    temperature: float | None = None
    humidity: float | None = None
    soil_moisture: float | None = Field(
        default=None, validation_alias=AliasChoices("soilMoisture", "soil_moisture")
    )
    soil_moisture_raw: float | None = Field(
        default=None, validation_alias=AliasChoices("soilMoistureRaw", "soil_moisture_raw")
    )
    light_level: float | None = Field(
        default=None, validation_alias=AliasChoices("lightLevel", "light_level")
    )
    light_level_raw: float | None = Field(
        default=None, validation_alias=AliasChoices("lightLevelRaw", "light_level_raw")
    )
    # Firmware builds in the field still send the older rainDrop spelling.
    rain_intensity: float | None = Field(
        default=None, validation_alias=AliasChoices("rainIntensity", "rainDrop", "rain_intensity")
    )
    rain_intensity_raw: float | None = Field(
        default=None,
        validation_alias=AliasChoices("rainIntensityRaw", "rainDropRaw", "rain_intensity_raw"),
    )
    pump_status: bool | None = Field(
        default=None, validation_alias=AliasChoices("pumpStatus", "pump_status")
    )
    auto_mode: bool | None = Field(default=None, validation_alias=AliasChoices("autoMode", "auto_mode"))

    def to_reading(self) -> TelemetryReading:
        return TelemetryReading(**self.model_dump())


class IdentityFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["identity"] = "identity"
    role: Role
    declared_id: str | None = None


class TelemetryFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["telemetry"] = "telemetry"
    reading: TelemetryReading


class CommandFrame(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: Literal["command"] = "command"
    command: str = Field(min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)


Envelope = IdentityFrame | TelemetryFrame | CommandFrame
