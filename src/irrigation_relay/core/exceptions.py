"""Domain/service exceptions."""
from __future__ import annotations

from typing import Literal


class RelayError(Exception):
    """Base error for the relay core."""


class DecodeError(RelayError):
    """Raised when an inbound frame cannot be turned into an envelope.

    ``kind`` is ``malformed`` when the frame is not a structured record at all
    and ``invalid`` when it is one but does not describe a known envelope.
    """

    def __init__(self, kind: Literal["malformed", "invalid"], detail: str) -> None:
        super().__init__(f"{kind}: {detail}")
        self.kind = kind
        self.detail = detail


class PeerConnectionError(RelayError):
    """Raised when reading from or writing to a peer channel fails."""


class PolicyViolation(RelayError):
    """Raised for frames that are well-formed but not acted upon (e.g. unknown command)."""


class NotFoundError(RelayError):
    """Raised when a referenced connection does not exist."""
