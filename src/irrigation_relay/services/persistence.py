"""Best-effort history persistence.

The relay hands every merged snapshot to ``BufferedSink.submit``, which only
enqueues. A background task writes to the configured sink; a slow or failing
database therefore costs dropped history rows, never relay latency.
"""
from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Protocol

import structlog

from irrigation_relay.domain.models import CanonicalState, IrrigationDecision, utc_now

logger = structlog.get_logger(__name__)


def persistence_record(state: CanonicalState, decision: IrrigationDecision) -> dict[str, Any]:
    return {
        "timestamp": state.last_updated or utc_now(),
        "temperature": state.temperature,
        "humidity": state.humidity,
        "soil_moisture": state.soil_moisture,
        "soil_moisture_raw": state.soil_moisture_raw,
        "light_level": state.light_level,
        "light_level_raw": state.light_level_raw,
        "rain_intensity": state.rain_intensity,
        "rain_intensity_raw": state.rain_intensity_raw,
        "pump_status": state.pump_status,
        "auto_mode": state.auto_mode,
        "irrigation_score": decision.score,
    }


class PersistenceSink(Protocol):
    async def append(self, record: dict[str, Any]) -> None: ...


class NullSink:
    async def append(self, record: dict[str, Any]) -> None:
        return None


class PostgresSink:
    """Appends one row per merge to ``sensor_data``."""

    _INSERT = """
        INSERT INTO sensor_data (
            timestamp, temperature, humidity,
            soil_moisture, soil_moisture_raw,
            light_level, light_level_raw,
            rain_intensity, rain_intensity_raw,
            pump_status, auto_mode, irrigation_score
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
    """

    def __init__(self, pool) -> None:  # noqa: ANN001 (asyncpg pool)
        self.pool = pool

    async def append(self, record: dict[str, Any]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                self._INSERT,
                record["timestamp"],
                record["temperature"],
                record["humidity"],
                record["soil_moisture"],
                record["soil_moisture_raw"],
                record["light_level"],
                record["light_level_raw"],
                record["rain_intensity"],
                record["rain_intensity_raw"],
                record["pump_status"],
                record["auto_mode"],
                record["irrigation_score"],
            )


class BufferedSink:
    def __init__(self, target: PersistenceSink | None = None, *, maxsize: int = 1000) -> None:
        self.target: PersistenceSink = target if target is not None else NullSink()
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self.written_total = 0
        self.failed_total = 0
        self.dropped_total = 0

    def submit(self, record: dict[str, Any]) -> bool:
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped_total += 1
            logger.warning("persist_queue_full", dropped_total=self.dropped_total)
            return False
        return True

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="persistence-sink")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def flush(self) -> None:
        """Wait until everything submitted so far has been handled (tests, shutdown)."""
        await self._queue.join()

    def metrics(self) -> dict[str, Any]:
        return {
            "sink": type(self.target).__name__,
            "pending": self._queue.qsize(),
            "written_total": self.written_total,
            "failed_total": self.failed_total,
            "dropped_total": self.dropped_total,
        }

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.target.append(record)
                self.written_total += 1
            except Exception:
                # Best-effort: drop the row, keep the relay running.
                self.failed_total += 1
                logger.exception("persist_failed", timestamp=str(record.get("timestamp")))
            finally:
                self._queue.task_done()
