"""Connection registry: live peers, their roles and their outbound queues.

Each peer owns a bounded outbound queue drained by exactly one writer task, so
frames are never interleaved on the socket and a slow peer only ever loses its
own oldest frames. The registry is confined to the event loop that owns the
sockets; ``register``/``set_role``/``broadcast``/``remove`` never await, which
makes each of them atomic with respect to the other connections' tasks.
"""
from __future__ import annotations

import asyncio
from collections import Counter, deque
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

import structlog

from irrigation_relay.core.exceptions import NotFoundError, PeerConnectionError
from irrigation_relay.domain.enums import Role
from irrigation_relay.domain.models import utc_now

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_SIZE = 64


class OutboundChannel(Protocol):
    """The part of ``aiohttp.web.WebSocketResponse`` the registry relies on."""

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str, compress: int | None = None) -> None: ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> bool: ...


RemoveListener = Callable[["PeerConnection", bool], None]


class PeerConnection:
    def __init__(self, channel: OutboundChannel, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self.id = uuid4().hex
        self.role = Role.UNKNOWN
        self.declared_id: str | None = None
        self.connected_at: datetime = utc_now()
        self.dropped_frames = 0
        self._channel = channel
        self._queue: deque[str] = deque(maxlen=queue_size)
        self._pending = asyncio.Event()
        self._closing = False

    @property
    def channel(self) -> OutboundChannel:
        return self._channel

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, frame: str) -> bool:
        """Queue ``frame``; returns False if the oldest pending frame had to be evicted."""
        if self._closing:
            return False
        evicted = len(self._queue) == self._queue.maxlen
        self._queue.append(frame)
        if evicted:
            self.dropped_frames += 1
        self._pending.set()
        return not evicted

    def stop(self) -> None:
        self._closing = True
        self._queue.clear()
        self._pending.set()

    async def drain(self) -> None:
        """Writer loop. Returns after ``stop()``; raises ``PeerConnectionError`` on write failure."""
        while not self._closing:
            await self._pending.wait()
            while self._queue and not self._closing:
                frame = self._queue.popleft()
                if self._channel.closed:
                    raise PeerConnectionError("channel closed")
                try:
                    await self._channel.send_str(frame)
                except (ConnectionError, RuntimeError) as exc:
                    raise PeerConnectionError(str(exc) or type(exc).__name__) from exc
            self._pending.clear()

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": str(self.role),
            "declared_id": self.declared_id,
            "connected_at": self.connected_at.isoformat(),
            "pending": self.pending,
            "dropped_frames": self.dropped_frames,
        }


class ConnectionRegistry:
    def __init__(self, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._peers: dict[str, PeerConnection] = {}
        self._writers: dict[str, asyncio.Task[None]] = {}
        self._producer_id: str | None = None
        self._listeners: list[RemoveListener] = []
        self.registered_total = 0
        self.removed_total = 0
        self.write_failures_total = 0
        self._dropped_removed = 0

    def add_remove_listener(self, listener: RemoveListener) -> None:
        """``listener(peer, was_authoritative_producer)`` runs once per removed peer."""
        self._listeners.append(listener)

    @property
    def producer_id(self) -> str | None:
        return self._producer_id

    def get(self, connection_id: str) -> PeerConnection:
        try:
            return self._peers[connection_id]
        except KeyError:
            raise NotFoundError(f"connection {connection_id} is not registered") from None

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def peers(self, role: Role | None = None) -> list[PeerConnection]:
        return [p for p in self._peers.values() if role is None or p.role is role]

    def register(self, channel: OutboundChannel, initial_role: Role = Role.UNKNOWN) -> PeerConnection:
        peer = PeerConnection(channel, queue_size=self._queue_size)
        self._peers[peer.id] = peer
        self._writers[peer.id] = asyncio.create_task(self._run_writer(peer), name=f"writer-{peer.id}")
        self.registered_total += 1
        logger.info("peer_registered", connection_id=peer.id, active=len(self._peers))
        if initial_role is not Role.UNKNOWN:
            self.set_role(peer.id, initial_role)
        return peer

    def set_role(self, connection_id: str, role: Role, declared_id: str | None = None) -> PeerConnection:
        """Resolve a peer's role. The most recently announced producer is authoritative."""
        peer = self.get(connection_id)
        if declared_id is not None:
            peer.declared_id = declared_id

        if role is Role.PRODUCER:
            previous = self._producer_id
            if previous is not None and previous != peer.id and previous in self._peers:
                demoted = self._peers[previous]
                demoted.role = Role.OBSERVER
                logger.warning(
                    "producer_demoted",
                    connection_id=demoted.id,
                    declared_id=demoted.declared_id,
                    superseded_by=peer.id,
                )
            self._producer_id = peer.id
        elif self._producer_id == peer.id:
            self._producer_id = None

        if peer.role is not role:
            logger.info("peer_role_resolved", connection_id=peer.id, role=str(role), declared_id=peer.declared_id)
        peer.role = role
        return peer

    def is_authoritative_producer(self, connection_id: str) -> bool:
        return connection_id == self._producer_id

    def send_to(self, connection_id: str, frame: str) -> bool:
        peer = self._peers.get(connection_id)
        if peer is None:
            return False
        peer.enqueue(frame)
        return True

    def broadcast(self, frame: str, target_role: Role | Iterable[Role] | None = None) -> int:
        """Queue ``frame`` on every live peer with a matching role; returns the number of peers."""
        if target_role is None:
            roles = None
        elif isinstance(target_role, Role):
            roles = {target_role}
        else:
            roles = set(target_role)

        delivered = 0
        for peer in list(self._peers.values()):
            if roles is not None and peer.role not in roles:
                continue
            if not peer.enqueue(frame):
                logger.debug("peer_frame_dropped", connection_id=peer.id, dropped=peer.dropped_frames)
            delivered += 1
        return delivered

    def remove(self, connection_id: str) -> bool:
        """Idempotent: the first call removes and notifies, later calls return False."""
        peer = self._peers.pop(connection_id, None)
        if peer is None:
            return False

        was_producer = self._producer_id == connection_id
        if was_producer:
            self._producer_id = None
        self.removed_total += 1
        self._dropped_removed += peer.dropped_frames

        peer.stop()
        writer = self._writers.pop(connection_id, None)
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()

        logger.info(
            "peer_removed",
            connection_id=peer.id,
            role=str(peer.role),
            was_producer=was_producer,
            active=len(self._peers),
        )
        for listener in self._listeners:
            try:
                listener(peer, was_producer)
            except Exception:
                logger.exception("remove_listener_failed", connection_id=peer.id)
        return True

    async def close_all(self, *, code: int = 1001, message: bytes = b"Server shutdown") -> None:
        for connection_id in list(self._peers):
            peer = self._peers.get(connection_id)
            self.remove(connection_id)
            if peer is not None and not peer.channel.closed:
                await peer.channel.close(code=code, message=message)

    def metrics(self) -> dict[str, Any]:
        by_role = Counter(str(p.role) for p in self._peers.values())
        return {
            "active_connections": len(self._peers),
            "connections_by_role": {str(role): by_role.get(str(role), 0) for role in Role},
            "registered_total": self.registered_total,
            "removed_total": self.removed_total,
            "write_failures_total": self.write_failures_total,
            "dropped_frames_total": self._dropped_removed
            + sum(p.dropped_frames for p in self._peers.values()),
            "authoritative_producer": self._producer_id,
        }

    async def _run_writer(self, peer: PeerConnection) -> None:
        try:
            await peer.drain()
        except PeerConnectionError as exc:
            self.write_failures_total += 1
            logger.warning("peer_write_failed", connection_id=peer.id, error=str(exc))
            self.remove(peer.id)
            if not peer.channel.closed:
                await peer.channel.close()
