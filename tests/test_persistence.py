from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timezone
from typing import Any

from irrigation_relay.domain.models import CanonicalState
from irrigation_relay.services.persistence import BufferedSink, NullSink, persistence_record
from irrigation_relay.services.scoring import compute_decision


class _FlakySink:
    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []
        self.calls = 0

    async def append(self, record: dict[str, Any]) -> None:
        self.calls += 1
        if self.calls == 1:
            raise ConnectionRefusedError("database is down")
        self.records.append(record)


class _BlockedSink:
    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def append(self, record: dict[str, Any]) -> None:
        await self.release.wait()


class TestPersistenceRecord(unittest.TestCase):
    def test_record_carries_score(self) -> None:
        at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        state = CanonicalState(soil_moisture=20.0, temperature=34.0, last_updated=at)
        record = persistence_record(state, compute_decision(state))
        self.assertEqual(record["timestamp"], at)
        self.assertEqual(record["irrigation_score"], 6)
        self.assertEqual(record["rain_intensity_raw"], state.rain_intensity_raw)
        self.assertIs(record["auto_mode"], True)


class TestBufferedSink(unittest.IsolatedAsyncioTestCase):
    async def test_defaults_to_null_sink(self) -> None:
        sink = BufferedSink()
        self.assertIsInstance(sink.target, NullSink)
        sink.start()
        self.assertTrue(sink.submit({"timestamp": None}))
        await sink.flush()
        await sink.stop()
        self.assertEqual(sink.written_total, 1)

    async def test_failed_write_is_counted_and_skipped(self) -> None:
        target = _FlakySink()
        sink = BufferedSink(target)
        sink.start()
        sink.submit({"n": 1})
        sink.submit({"n": 2})
        await sink.flush()
        await sink.stop()

        self.assertEqual(target.records, [{"n": 2}])
        self.assertEqual(sink.metrics()["failed_total"], 1)
        self.assertEqual(sink.metrics()["written_total"], 1)

    async def test_full_queue_drops_without_blocking(self) -> None:
        target = _BlockedSink()
        sink = BufferedSink(target, maxsize=2)
        sink.start()
        sink.submit({"n": 0})
        await asyncio.sleep(0)  # writer takes the first record and blocks

        self.assertTrue(sink.submit({"n": 1}))
        self.assertTrue(sink.submit({"n": 2}))
        self.assertFalse(sink.submit({"n": 3}))
        self.assertEqual(sink.metrics()["dropped_total"], 1)
        self.assertEqual(sink.metrics()["pending"], 2)

        target.release.set()
        await sink.flush()
        await sink.stop()
        self.assertEqual(sink.written_total, 3)

    async def test_stop_is_idempotent(self) -> None:
        sink = BufferedSink()
        await sink.stop()
        sink.start()
        await sink.stop()
        await sink.stop()
