"""Relay hub: routes decoded frames between the registry, the reconciler and the sink."""
from __future__ import annotations

from typing import Any

import structlog

from irrigation_relay.core.exceptions import DecodeError, NotFoundError, PolicyViolation
from irrigation_relay.domain.dto import CommandFrame, IdentityFrame, TelemetryFrame
from irrigation_relay.domain.enums import Role
from irrigation_relay.domain.models import CanonicalState
from irrigation_relay.services import codec
from irrigation_relay.services.persistence import BufferedSink, persistence_record
from irrigation_relay.services.reconciler import TelemetryReconciler
from irrigation_relay.services.registry import ConnectionRegistry, OutboundChannel, PeerConnection

logger = structlog.get_logger(__name__)

# Roles that receive the canonical state broadcast.
STATE_AUDIENCE = (Role.CONSUMER, Role.OBSERVER)

CONTROL_COMMANDS = frozenset({"pump-on", "pump-off", "auto-on", "auto-off"})
REFRESH_COMMANDS = frozenset({"status", "refresh", "frontend-connected"})


class RelayHub:
    def __init__(
        self,
        registry: ConnectionRegistry,
        reconciler: TelemetryReconciler,
        *,
        sink: BufferedSink | None = None,
    ) -> None:
        self.registry = registry
        self.reconciler = reconciler
        self.sink = sink
        self.decode_errors_total = 0
        self.policy_violations_total = 0
        self.commands_forwarded_total = 0
        registry.add_remove_listener(self._on_peer_removed)

    def connect(self, channel: OutboundChannel) -> PeerConnection:
        return self.registry.register(channel)

    def disconnect(self, connection_id: str) -> bool:
        return self.registry.remove(connection_id)

    def handle_frame(self, connection_id: str, raw: str | bytes) -> None:
        """Process one inbound frame. Never raises for bad input from the peer."""
        try:
            envelope = codec.decode(raw)
        except DecodeError as exc:
            self.decode_errors_total += 1
            logger.warning("frame_dropped", connection_id=connection_id, kind=exc.kind, detail=exc.detail)
            return

        try:
            peer = self.registry.get(connection_id)
        except NotFoundError:
            logger.debug("frame_from_removed_peer", connection_id=connection_id)
            return

        try:
            if isinstance(envelope, IdentityFrame):
                self._on_identity(peer, envelope)
            elif isinstance(envelope, TelemetryFrame):
                self._on_telemetry(peer, envelope)
            else:
                self._on_command(peer, envelope)
        except PolicyViolation as exc:
            self.policy_violations_total += 1
            logger.debug("frame_ignored", connection_id=connection_id, reason=str(exc))

    def current_frame(self) -> dict[str, Any]:
        state = self.reconciler.snapshot()
        return codec.state_payload(state, self.reconciler.decide(state))

    def metrics(self) -> dict[str, Any]:
        data = self.registry.metrics()
        data.update(
            merges_total=self.reconciler.merges_total,
            decode_errors_total=self.decode_errors_total,
            policy_violations_total=self.policy_violations_total,
            commands_forwarded_total=self.commands_forwarded_total,
            producer_connected=self.reconciler.snapshot().producer_connected,
        )
        if self.sink is not None:
            data["persistence"] = self.sink.metrics()
        return data

    def _on_identity(self, peer: PeerConnection, frame: IdentityFrame) -> None:
        was_producer = self.registry.is_authoritative_producer(peer.id)
        self.registry.set_role(peer.id, frame.role, frame.declared_id)
        if frame.role is Role.PRODUCER:
            self._broadcast_state(self.reconciler.set_producer_connected(True))
            return
        if was_producer:
            # The producer stepped down; nobody is feeding readings any more.
            self._broadcast_state(self.reconciler.set_producer_connected(False))
        else:
            # Newly identified dashboards get the current state straight away.
            self.registry.send_to(peer.id, codec.encode(self.current_frame()))

    def _on_telemetry(self, peer: PeerConnection, frame: TelemetryFrame) -> None:
        if peer.role is Role.UNKNOWN:
            self.registry.set_role(peer.id, Role.PRODUCER)
        if not self.registry.is_authoritative_producer(peer.id):
            raise PolicyViolation(f"telemetry from non-producer peer (role={peer.role})")

        state = self.reconciler.ingest(frame.reading)
        decision = self.reconciler.decide(state)
        self._broadcast_state(state)
        if self.sink is not None:
            self.sink.submit(persistence_record(state, decision))

    def _on_command(self, peer: PeerConnection, frame: CommandFrame) -> None:
        if peer.role is Role.UNKNOWN:
            self.registry.set_role(peer.id, Role.CONSUMER)

        command = frame.command.strip().lower()
        if command in REFRESH_COMMANDS:
            self.registry.send_to(peer.id, codec.encode(self.current_frame()))
        elif command not in CONTROL_COMMANDS:
            raise PolicyViolation(f"unrecognized command {frame.command!r}")

        forwarded = self.registry.broadcast(
            codec.encode(codec.command_payload(command, frame.args)), Role.PRODUCER
        )
        self.commands_forwarded_total += 1
        logger.info("command_forwarded", connection_id=peer.id, command=command, producers=forwarded)

    def _on_peer_removed(self, peer: PeerConnection, was_producer: bool) -> None:
        if was_producer:
            self._broadcast_state(self.reconciler.set_producer_connected(False))

    def _broadcast_state(self, state: CanonicalState) -> int:
        frame = codec.encode(codec.state_payload(state, self.reconciler.decide(state)))
        return self.registry.broadcast(frame, STATE_AUDIENCE)
