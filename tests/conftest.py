from __future__ import annotations

import pytest

from irrigation_relay.main import create_app
from irrigation_relay.services.dependencies import HUB_KEY
from irrigation_relay.settings import Settings


@pytest.fixture
def relay_settings():
    return Settings(history_capacity=5, peer_queue_size=16, database_url=None)


@pytest.fixture
def relay_app(relay_settings):
    return create_app(relay_settings)


@pytest.fixture
def hub(relay_app):
    return relay_app[HUB_KEY]


@pytest.fixture
async def service_client(aiohttp_client, relay_app):
    return await aiohttp_client(relay_app)
