"""Read-only state, history and metrics endpoints."""
from __future__ import annotations

from aiohttp import web

from irrigation_relay.api.utils import parse_limit
from irrigation_relay.domain.models import to_rfc3339_z
from irrigation_relay.services import codec
from irrigation_relay.services.dependencies import get_app_settings, get_hub

routes = web.RouteTableDef()


@routes.get("/health")
async def healthcheck(request: web.Request) -> web.Response:
    cfg = get_app_settings(request)
    return web.json_response({"status": "ok", "service": cfg.app_name, "env": cfg.env})


@routes.get("/api/v1/state")
async def current_state(request: web.Request) -> web.Response:
    return web.json_response(get_hub(request).current_frame())


@routes.get("/api/v1/history")
async def state_history(request: web.Request) -> web.Response:
    hub = get_hub(request)
    capacity = hub.reconciler.history_capacity
    limit = parse_limit(request.query.get("limit"), maximum=capacity)
    items = []
    for entry in hub.reconciler.history(limit):
        payload = codec.state_payload(entry.state, hub.reconciler.decide(entry.state))
        payload["timestamp"] = to_rfc3339_z(entry.timestamp)
        items.append(payload)
    return web.json_response({"capacity": capacity, "count": len(items), "items": items})


@routes.get("/api/v1/metrics")
async def relay_metrics(request: web.Request) -> web.Response:
    hub = get_hub(request)
    data = hub.metrics()
    data["peers"] = [peer.describe() for peer in hub.registry.peers()]
    return web.json_response(data)
