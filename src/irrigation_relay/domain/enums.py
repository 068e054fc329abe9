"""Enumerations shared by the relay core."""
from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    PRODUCER = "producer"
    CONSUMER = "consumer"
    # A producer superseded by a newer producer announcement: kept open, telemetry ignored.
    OBSERVER = "observer"
    UNKNOWN = "unknown"


class Recommendation(StrEnum):
    RECOMMENDED = "recommended"
    CONSIDER = "consider"
    NOT_RECOMMENDED = "not-recommended"
