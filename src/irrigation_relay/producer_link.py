"""Supervised producer-side connection to the relay.

Connects, announces itself as the producer, streams readings and listens for
forwarded control commands. Any failure closes the session, waits a fixed
backoff and starts over with a fresh announcement; ``stop()`` ends the loop
promptly, including during the backoff wait.
"""
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable

import aiohttp
import structlog

from irrigation_relay.core.exceptions import DecodeError
from irrigation_relay.domain.dto import CommandFrame
from irrigation_relay.domain.models import TelemetryReading
from irrigation_relay.services import codec

logger = structlog.get_logger(__name__)

ReadingSource = Callable[[], AsyncIterator[TelemetryReading]]
CommandHandler = Callable[[str], object]


class ProducerLink:
    def __init__(
        self,
        url: str,
        source: ReadingSource,
        *,
        device_id: str,
        reconnect_delay_s: float = 3.0,
        on_command: CommandHandler | None = None,
    ) -> None:
        self._url = url
        self._source = source
        self._device_id = device_id
        self._reconnect_delay_s = reconnect_delay_s
        self._on_command = on_command
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.connects_total = 0
        self.connected = False

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run(), name=f"producer-link-{self._device_id}")
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def run(self) -> None:
        while not self._stop.is_set():
            try:
                await self._run_session()
            except (aiohttp.ClientError, OSError) as exc:
                logger.warning("producer_link_failed", url=self._url, error=str(exc) or type(exc).__name__)
            finally:
                self.connected = False
            if self._stop.is_set():
                break
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=self._reconnect_delay_s)

    async def _run_session(self) -> None:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(self._url) as ws:
                await ws.send_str(codec.encode({"type": "identity", "role": "producer", "id": self._device_id}))
                self.connects_total += 1
                self.connected = True
                logger.info("producer_link_connected", url=self._url, attempt=self.connects_total)

                listener = asyncio.create_task(self._listen(ws))
                streamer = asyncio.create_task(self._stream(ws))
                try:
                    done, _pending = await asyncio.wait({listener, streamer}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    for task in (listener, streamer):
                        task.cancel()
                    for task in (listener, streamer):
                        with contextlib.suppress(asyncio.CancelledError):
                            await task
                for task in done:
                    # Surface send errors to the supervisor loop.
                    task.result()
                logger.info("producer_link_closed", url=self._url)

    async def _stream(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for reading in self._source():
            await ws.send_str(codec.encode(codec.telemetry_payload(reading.present_fields())))

    async def _listen(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    break
                continue
            try:
                envelope = codec.decode(msg.data)
            except DecodeError:
                continue
            if isinstance(envelope, CommandFrame) and self._on_command is not None:
                logger.info("producer_link_command", command=envelope.command)
                self._on_command(envelope.command)
