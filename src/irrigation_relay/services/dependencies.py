"""Application keys and request-scoped accessors for shared services."""
from __future__ import annotations

from aiohttp import web

from irrigation_relay.services.hub import RelayHub
from irrigation_relay.settings import Settings

HUB_KEY = web.AppKey("relay_hub", RelayHub)
SETTINGS_KEY = web.AppKey("settings", Settings)


def get_hub(request: web.Request) -> RelayHub:
    return request.app[HUB_KEY]


def get_app_settings(request: web.Request) -> Settings:
    return request.app[SETTINGS_KEY]
