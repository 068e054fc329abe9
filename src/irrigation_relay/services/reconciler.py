"""Telemetry reconciler: canonical state, rolling history and derived decision.

One instance per application. Every mutation goes through ``self._lock`` so
merges are linearized in the order they reach the reconciler, and readers only
ever see immutable ``CanonicalState`` objects.
"""
from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime

import structlog

from irrigation_relay.domain.models import (
    CanonicalState,
    HistoryEntry,
    IrrigationDecision,
    TelemetryReading,
    utc_now,
)
from irrigation_relay.services.scoring import DEFAULT_POLICY, ScoringPolicy, compute_decision

logger = structlog.get_logger(__name__)

DEFAULT_HISTORY_CAPACITY = 100


class HistoryBuffer:
    """Fixed-capacity FIFO of timestamped snapshots. Not synchronized on its own."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("history capacity must be >= 1")
        self._entries: deque[HistoryEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: HistoryEntry) -> None:
        self._entries.append(entry)

    def entries(self, limit: int | None = None) -> list[HistoryEntry]:
        """Oldest first; ``limit`` keeps only the newest ``limit`` entries."""
        items = list(self._entries)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def __len__(self) -> int:
        return len(self._entries)


class TelemetryReconciler:
    def __init__(
        self,
        *,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        policy: ScoringPolicy = DEFAULT_POLICY,
        initial: CanonicalState | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lock = threading.Lock()
        self._state = initial if initial is not None else CanonicalState()
        self._history = HistoryBuffer(history_capacity)
        self._policy = policy
        self._clock = clock
        self.merges_total = 0

    @property
    def policy(self) -> ScoringPolicy:
        return self._policy

    @property
    def history_capacity(self) -> int:
        return self._history.capacity

    def merge(self, reading: TelemetryReading, *, now: datetime | None = None) -> CanonicalState:
        """Overwrite supplied fields, keep the rest, stamp ``last_updated``."""
        with self._lock:
            return self._merge_locked(reading, now)

    def snapshot(self) -> CanonicalState:
        with self._lock:
            return self._state

    def append_history(self, snapshot: CanonicalState) -> None:
        with self._lock:
            self._append_locked(snapshot)

    def ingest(self, reading: TelemetryReading, *, now: datetime | None = None) -> CanonicalState:
        """Merge, snapshot and append to history inside one critical section.

        A reading reaching the reconciler comes from the authoritative producer,
        so the producer is marked connected as part of the same update.
        """
        with self._lock:
            self._state = self._state.with_producer_connected(True)
            state = self._merge_locked(reading, now)
            self._append_locked(state)
            return state

    def set_producer_connected(self, connected: bool) -> CanonicalState:
        with self._lock:
            if self._state.producer_connected != connected:
                logger.info("producer_connection_changed", connected=connected)
            self._state = self._state.with_producer_connected(connected)
            return self._state

    def history(self, limit: int | None = None) -> list[HistoryEntry]:
        with self._lock:
            return self._history.entries(limit)

    def decide(self, state: CanonicalState | None = None) -> IrrigationDecision:
        if state is None:
            state = self.snapshot()
        return compute_decision(state, self._policy)

    def _merge_locked(self, reading: TelemetryReading, now: datetime | None) -> CanonicalState:
        at = now if now is not None else self._clock()
        self._state = self._state.merged(reading, at=at)
        self.merges_total += 1
        return self._state

    def _append_locked(self, snapshot: CanonicalState) -> None:
        timestamp = snapshot.last_updated if snapshot.last_updated is not None else self._clock()
        self._history.append(HistoryEntry(timestamp=timestamp, state=snapshot))
