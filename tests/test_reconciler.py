from __future__ import annotations

import random
import threading
import unittest
from dataclasses import asdict, fields
from datetime import datetime, timedelta, timezone

from irrigation_relay.domain.models import CanonicalState, HistoryEntry, TelemetryReading
from irrigation_relay.services.reconciler import HistoryBuffer, TelemetryReconciler

T0 = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)

NUMERIC_FIELDS = (
    "temperature",
    "humidity",
    "soil_moisture",
    "soil_moisture_raw",
    "light_level",
    "light_level_raw",
    "rain_intensity",
    "rain_intensity_raw",
)


class TestMerge(unittest.TestCase):
    def test_example_scenario(self) -> None:
        rec = TelemetryReconciler()
        rec.ingest(TelemetryReading(soil_moisture=20, rain_intensity=0), now=T0)
        state = rec.ingest(TelemetryReading(temperature=34), now=T0 + timedelta(seconds=2))

        defaults = CanonicalState()
        self.assertEqual(state.soil_moisture, 20)
        self.assertEqual(state.rain_intensity, 0)
        self.assertEqual(state.temperature, 34)
        self.assertEqual(state.humidity, defaults.humidity)
        self.assertEqual(state.soil_moisture_raw, defaults.soil_moisture_raw)
        self.assertEqual(state.pump_status, defaults.pump_status)
        self.assertEqual(state.last_updated, T0 + timedelta(seconds=2))

    def test_last_write_wins_per_field(self) -> None:
        rnd = random.Random(1234)
        rec = TelemetryReconciler()
        expected = asdict(CanonicalState())

        for _ in range(500):
            supplied = {}
            for name in NUMERIC_FIELDS:
                if rnd.random() < 0.3:
                    supplied[name] = rnd.choice([0.0, rnd.uniform(0, 4095)])
            for name in ("pump_status", "auto_mode"):
                if rnd.random() < 0.2:
                    supplied[name] = rnd.random() < 0.5
            rec.merge(TelemetryReading(**supplied))
            expected.update(supplied)

        state = rec.snapshot()
        for name in NUMERIC_FIELDS + ("pump_status", "auto_mode"):
            self.assertEqual(getattr(state, name), expected[name], name)

    def test_zero_overwrites_and_absent_keeps(self) -> None:
        rec = TelemetryReconciler()
        rec.merge(TelemetryReading(soil_moisture=42.0, pump_status=True))
        state = rec.merge(TelemetryReading(soil_moisture=0.0))
        self.assertEqual(state.soil_moisture, 0.0)
        self.assertTrue(state.pump_status)

    def test_raw_and_normalized_are_independent(self) -> None:
        rec = TelemetryReconciler()
        before = rec.snapshot()
        state = rec.merge(TelemetryReading(soil_moisture_raw=1000.0))
        self.assertEqual(state.soil_moisture_raw, 1000.0)
        self.assertEqual(state.soil_moisture, before.soil_moisture)

    def test_snapshot_is_immutable(self) -> None:
        rec = TelemetryReconciler()
        snap = rec.snapshot()
        rec.merge(TelemetryReading(temperature=10.0))
        self.assertEqual(snap.temperature, CanonicalState().temperature)
        with self.assertRaises(AttributeError):
            snap.temperature = 1.0  # type: ignore[misc]

    def test_clock_used_when_now_omitted(self) -> None:
        rec = TelemetryReconciler(clock=lambda: T0)
        self.assertEqual(rec.merge(TelemetryReading(humidity=50)).last_updated, T0)


class TestProducerFlag(unittest.TestCase):
    def test_ingest_marks_producer_connected(self) -> None:
        rec = TelemetryReconciler()
        self.assertFalse(rec.snapshot().producer_connected)
        self.assertTrue(rec.ingest(TelemetryReading(temperature=20)).producer_connected)

    def test_set_producer_connected_keeps_readings(self) -> None:
        rec = TelemetryReconciler()
        rec.ingest(TelemetryReading(temperature=20))
        state = rec.set_producer_connected(False)
        self.assertFalse(state.producer_connected)
        self.assertEqual(state.temperature, 20)
        self.assertEqual(rec.merges_total, 1)


class TestHistory(unittest.TestCase):
    def test_history_is_bounded_fifo(self) -> None:
        rec = TelemetryReconciler(history_capacity=3)
        for i in range(4):
            rec.ingest(TelemetryReading(soil_moisture=float(i)), now=T0 + timedelta(seconds=i))

        entries = rec.history()
        self.assertEqual(len(entries), 3)
        self.assertEqual([e.state.soil_moisture for e in entries], [1.0, 2.0, 3.0])
        self.assertEqual(entries[-1].timestamp, T0 + timedelta(seconds=3))

    def test_history_limit(self) -> None:
        rec = TelemetryReconciler(history_capacity=10)
        for i in range(5):
            rec.ingest(TelemetryReading(temperature=float(i)))
        self.assertEqual([e.state.temperature for e in rec.history(2)], [3.0, 4.0])
        self.assertEqual(rec.history(0), [])

    def test_append_history_uses_snapshot(self) -> None:
        rec = TelemetryReconciler()
        state = rec.merge(TelemetryReading(temperature=30.0), now=T0)
        rec.append_history(rec.snapshot())
        self.assertEqual(rec.history(), [HistoryEntry(timestamp=T0, state=state)])

    def test_buffer_rejects_zero_capacity(self) -> None:
        with self.assertRaises(ValueError):
            HistoryBuffer(0)


class TestLinearization(unittest.TestCase):
    def test_concurrent_ingests_never_mix_fields(self) -> None:
        workers = 8
        per_worker = 200
        rec = TelemetryReconciler(history_capacity=workers * per_worker)
        barrier = threading.Barrier(workers)

        def _work(worker: int) -> None:
            barrier.wait()
            for i in range(per_worker):
                value = float(worker * 10_000 + i)
                rec.ingest(TelemetryReading(**{name: value for name in NUMERIC_FIELDS}))

        threads = [threading.Thread(target=_work, args=(w,)) for w in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = rec.history()
        self.assertEqual(len(entries), workers * per_worker)
        self.assertEqual(rec.merges_total, workers * per_worker)
        for entry in entries:
            values = {getattr(entry.state, name) for name in NUMERIC_FIELDS}
            self.assertEqual(len(values), 1, values)

    def test_reading_fields_match_state_fields(self) -> None:
        state_fields = {f.name for f in fields(CanonicalState)}
        for f in fields(TelemetryReading):
            self.assertIn(f.name, state_fields)
