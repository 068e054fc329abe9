"""Synthetic field device: generated readings plus pump/auto state driven by commands."""
from __future__ import annotations

import asyncio
import math
import random
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from irrigation_relay.domain.models import TelemetryReading

SignalMetric = Literal[
    "temperature",
    "humidity",
    "soil_moisture",
    "soil_moisture_raw",
    "light_level",
    "light_level_raw",
    "rain_intensity",
    "rain_intensity_raw",
]


class SyntheticSignalConfig(BaseModel):
    metric: SignalMetric
    kind: Literal["sine", "saw", "square", "noise", "constant"]
    amplitude: float = 1.0
    offset: float = 0.0
    freq_hz: float = 0.01
    phase_rad: float = 0.0
    duty: float = Field(default=0.5, ge=0.0, le=1.0)  # for square
    noise_std: float = 0.1  # for noise
    min_value: float | None = None
    max_value: float | None = None


class SimulatorConfig(BaseModel):
    url: str = "ws://localhost:3000/ws"
    device_id: str = "esp32-sim"
    reconnect_delay_ms: int = Field(default=3000, ge=100, le=60_000)
    sample_hz: float = Field(default=0.5, gt=0.0, le=50.0)
    signals: list[SyntheticSignalConfig]


def load_config(path: str | Path) -> SimulatorConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    return SimulatorConfig.model_validate(data)


@dataclass
class DeviceState:
    """Actuator state the simulated firmware reports with every reading."""

    pump_status: bool = False
    auto_mode: bool = True

    def apply_command(self, command: str) -> bool:
        """Returns True when the command changed the state."""
        before = (self.pump_status, self.auto_mode)
        if command == "pump-on":
            self.pump_status = True
        elif command == "pump-off":
            self.pump_status = False
        elif command == "auto-on":
            self.auto_mode = True
        elif command == "auto-off":
            self.auto_mode = False
        return before != (self.pump_status, self.auto_mode)


def signal_value(sig: SyntheticSignalConfig, *, t_s: float) -> float:
    if sig.kind == "constant":
        value = sig.offset
    elif sig.kind == "noise":
        value = sig.offset + random.gauss(0.0, sig.noise_std)
    elif sig.kind == "sine":
        value = sig.offset + sig.amplitude * math.sin(2.0 * math.pi * sig.freq_hz * t_s + sig.phase_rad)
    else:
        # 0..1 phase
        frac = (t_s * sig.freq_hz + (sig.phase_rad / (2.0 * math.pi))) % 1.0
        if sig.kind == "square":
            value = sig.offset + (sig.amplitude if frac < sig.duty else -sig.amplitude)
        else:
            value = sig.offset + sig.amplitude * (2.0 * frac - 1.0)

    if sig.min_value is not None:
        value = max(sig.min_value, value)
    if sig.max_value is not None:
        value = min(sig.max_value, value)
    return value


def sample(cfg: SimulatorConfig, device: DeviceState, *, t_s: float) -> TelemetryReading:
    values = {sig.metric: signal_value(sig, t_s=t_s) for sig in cfg.signals}
    return TelemetryReading(**values, pump_status=device.pump_status, auto_mode=device.auto_mode)


async def synthetic_readings(cfg: SimulatorConfig, device: DeviceState) -> AsyncIterator[TelemetryReading]:
    """Emits one reading per tick at ``cfg.sample_hz``."""
    if not cfg.signals:
        raise ValueError("simulator.signals must not be empty")

    dt = 1.0 / cfg.sample_hz
    n = 0
    while True:
        yield sample(cfg, device, t_s=n * dt)
        n += 1
        await asyncio.sleep(dt)
