"""WebSocket relay channel shared by the field device and the dashboards."""
from __future__ import annotations

import structlog
from aiohttp import WSMsgType, web

from irrigation_relay.services.dependencies import get_hub

routes = web.RouteTableDef()

logger = structlog.get_logger(__name__)


@routes.get("/ws")
async def relay_channel(request: web.Request) -> web.WebSocketResponse:
    """One read loop per peer; the registry owns the matching write loop."""
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    hub = get_hub(request)
    peer = hub.connect(ws)
    logger.info("peer_connected", connection_id=peer.id, remote=request.remote)
    try:
        async for msg in ws:
            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                try:
                    hub.handle_frame(peer.id, msg.data)
                except Exception:
                    # One bad frame must not cost the peer its connection.
                    logger.exception("frame_handling_failed", connection_id=peer.id)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("peer_read_failed", connection_id=peer.id, error=str(ws.exception()))
                break
    finally:
        hub.disconnect(peer.id)
        if not ws.closed:
            await ws.close()
    return ws
