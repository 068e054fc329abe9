"""Wire codec: inbound frames -> envelopes, canonical state -> outbound frames.

Inbound frames are JSON objects discriminated by ``type``::

    {"type": "init-frontend", "frontendId": "frontend-1234"}
    {"type": "identity", "role": "producer", "id": "esp32-field-1"}
    {"type": "control-command", "command": "pump-on"}
    {"soilMoisture": 20, "rainDrop": 0}            # bare reading from the device

A frame with no ``type`` is treated as telemetry when it carries at least one
known reading field.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from irrigation_relay.core.exceptions import DecodeError
from irrigation_relay.domain.dto import (
    CommandFrame,
    Envelope,
    IdentityFrame,
    TelemetryFrame,
    TelemetryReadingDTO,
)
from irrigation_relay.domain.enums import Role
from irrigation_relay.domain.models import CanonicalState, IrrigationDecision, to_rfc3339_z

IDENTITY_TYPES = frozenset({"identity", "init", "init-frontend", "init-esp", "init-device"})
TELEMETRY_TYPES = frozenset({"telemetry", "sensor-data"})
COMMAND_TYPES = frozenset({"command", "control-command"})

# Frame types that imply the role without an explicit "role" key.
_IMPLIED_ROLES = {
    "init-frontend": Role.CONSUMER,
    "init-esp": Role.PRODUCER,
    "init-device": Role.PRODUCER,
}

_ROLE_ALIASES = {
    "producer": Role.PRODUCER,
    "device": Role.PRODUCER,
    "esp": Role.PRODUCER,
    "consumer": Role.CONSUMER,
    "frontend": Role.CONSUMER,
    "dashboard": Role.CONSUMER,
}

_ID_KEYS = ("id", "frontendId", "espId", "deviceId")


def decode(raw: str | bytes) -> Envelope:
    """Parse one inbound frame.

    Raises ``DecodeError`` (kind ``malformed``) when the frame is not a JSON
    object, and (kind ``invalid``) when it is one but describes no known envelope.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("malformed", "frame is not valid UTF-8") from exc
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise DecodeError("malformed", "frame is not valid JSON") from exc
    except RecursionError as exc:
        raise DecodeError("malformed", "frame is nested too deeply") from exc
    if not isinstance(payload, dict):
        raise DecodeError("malformed", "frame must be a JSON object")
    return decode_payload(payload)


def decode_payload(payload: Mapping[str, Any]) -> Envelope:
    frame_type = payload.get("type")
    if frame_type is not None and not isinstance(frame_type, str):
        raise DecodeError("invalid", "frame type must be a string")
    if isinstance(frame_type, str):
        frame_type = frame_type.strip().lower()

    try:
        if frame_type in IDENTITY_TYPES:
            return _decode_identity(frame_type, payload)
        if frame_type in COMMAND_TYPES:
            return CommandFrame.model_validate(
                {"command": payload.get("command"), "args": payload.get("args") or {}}
            )
        if frame_type in TELEMETRY_TYPES or frame_type is None:
            reading = TelemetryReadingDTO.model_validate(payload).to_reading()
            if frame_type is None and reading.is_empty():
                raise DecodeError("invalid", "frame has no type and no telemetry fields")
            return TelemetryFrame(reading=reading)
    except ValidationError as exc:
        raise DecodeError("invalid", _summarize(exc)) from exc

    raise DecodeError("invalid", f"unknown frame type {frame_type!r}")


def _decode_identity(frame_type: str, payload: Mapping[str, Any]) -> IdentityFrame:
    role = _IMPLIED_ROLES.get(frame_type)
    if role is None:
        raw_role = payload.get("role")
        if not isinstance(raw_role, str) or raw_role.strip().lower() not in _ROLE_ALIASES:
            raise DecodeError("invalid", f"identity frame has unknown role {raw_role!r}")
        role = _ROLE_ALIASES[raw_role.strip().lower()]

    declared_id = None
    for key in _ID_KEYS:
        value = payload.get(key)
        if value is not None:
            declared_id = str(value)
            break
    return IdentityFrame(role=role, declared_id=declared_id)


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def encode(payload: Mapping[str, Any]) -> str:
    """Compact JSON. Raises ``ValueError`` on NaN or infinity, which JSON cannot carry."""
    return json.dumps(payload, separators=(",", ":"), default=str, allow_nan=False)


def state_payload(state: CanonicalState, decision: IrrigationDecision) -> dict[str, Any]:
    """Outbound consumer frame: every field present, nothing optional."""
    return {
        "type": "state",
        "temperature": state.temperature,
        "humidity": state.humidity,
        "soilMoisture": state.soil_moisture,
        "soilMoistureRaw": state.soil_moisture_raw,
        "lightLevel": state.light_level,
        "lightLevelRaw": state.light_level_raw,
        "rainIntensity": state.rain_intensity,
        "rainIntensityRaw": state.rain_intensity_raw,
        # Dashboards built against the first firmware read these names.
        "rainDrop": state.rain_intensity,
        "rainDropRaw": state.rain_intensity_raw,
        "pumpStatus": state.pump_status,
        "autoMode": state.auto_mode,
        "irrigationScore": decision.score,
        "irrigationStatus": str(decision.recommendation),
        "lastUpdated": to_rfc3339_z(state.last_updated) if state.last_updated is not None else None,
        "espConnected": state.producer_connected,
    }


def command_payload(command: str, args: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Frame forwarded to the producer for a dashboard control command."""
    payload: dict[str, Any] = {"type": "control-command", "command": command}
    if args:
        payload["args"] = dict(args)
    return payload


def telemetry_payload(reading_fields: Mapping[str, Any]) -> dict[str, Any]:
    """Wire frame for a producer-side reading (attribute names -> wire names)."""
    payload: dict[str, Any] = {"type": "telemetry"}
    for name, value in reading_fields.items():
        payload[WIRE_NAMES[name]] = value
    return payload


WIRE_NAMES = {
    "temperature": "temperature",
    "humidity": "humidity",
    "soil_moisture": "soilMoisture",
    "soil_moisture_raw": "soilMoistureRaw",
    "light_level": "lightLevel",
    "light_level_raw": "lightLevelRaw",
    "rain_intensity": "rainIntensity",
    "rain_intensity_raw": "rainIntensityRaw",
    "pump_status": "pumpStatus",
    "auto_mode": "autoMode",
}
