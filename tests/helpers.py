from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import aiohttp


class FakeChannel:
    """In-memory stand-in for an aiohttp WebSocketResponse."""

    def __init__(self, *, fail: bool = False, gate: asyncio.Event | None = None) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self.fail = fail
        self.gate = gate

    async def send_str(self, data: str, compress: int | None = None) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        if self.gate is not None:
            await self.gate.wait()
        self.sent.append(data)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.closed = True
        self.close_code = code
        return True

    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]


async def eventually(predicate: Callable[[], bool], *, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


async def receive_until(
    ws: aiohttp.ClientWebSocketResponse,
    predicate: Callable[[dict[str, Any]], bool],
    *,
    timeout: float = 2.0,
) -> dict[str, Any]:
    async def _loop() -> dict[str, Any]:
        while True:
            msg = await ws.receive()
            if msg.type != aiohttp.WSMsgType.TEXT:
                raise AssertionError(f"unexpected websocket message: {msg.type}")
            data = json.loads(msg.data)
            if predicate(data):
                return data

    return await asyncio.wait_for(_loop(), timeout)
