"""aiohttp application entrypoint."""
from __future__ import annotations

import structlog
from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from irrigation_relay.api.routes.relay import relay_channel, routes as relay_routes
from irrigation_relay.api.routes.status import routes as status_routes
from irrigation_relay.db.pool import close_pool, create_pool
from irrigation_relay.logging_config import configure_logging
from irrigation_relay.services.dependencies import HUB_KEY, SETTINGS_KEY
from irrigation_relay.services.hub import RelayHub
from irrigation_relay.services.persistence import BufferedSink, PostgresSink
from irrigation_relay.services.reconciler import TelemetryReconciler
from irrigation_relay.services.registry import ConnectionRegistry
from irrigation_relay.services.scoring import DEFAULT_POLICY, load_policy
from irrigation_relay.settings import Settings, settings

logger = structlog.get_logger(__name__)


async def start_persistence(app: web.Application) -> None:
    cfg = app[SETTINGS_KEY]
    sink = app[HUB_KEY].sink
    if sink is None:
        return
    if cfg.database_url is not None:
        try:
            pool = await create_pool(str(cfg.database_url), cfg.db_pool_size)
        except Exception:
            # The relay is useful without history; run it anyway.
            logger.exception("persistence_unavailable")
        else:
            sink.target = PostgresSink(pool)
            logger.info("persistence_enabled", pool_size=cfg.db_pool_size)
    sink.start()


async def close_peers(app: web.Application) -> None:
    await app[HUB_KEY].registry.close_all()


async def stop_persistence(app: web.Application) -> None:
    sink = app[HUB_KEY].sink
    if sink is not None:
        await sink.stop()
        if isinstance(sink.target, PostgresSink):
            await close_pool(sink.target.pool)


def build_hub(cfg: Settings) -> RelayHub:
    policy = load_policy(cfg.scoring_policy_path) if cfg.scoring_policy_path else DEFAULT_POLICY
    registry = ConnectionRegistry(queue_size=cfg.peer_queue_size)
    reconciler = TelemetryReconciler(history_capacity=cfg.history_capacity, policy=policy)
    sink = BufferedSink(maxsize=cfg.persist_queue_size)
    return RelayHub(registry, reconciler, sink=sink)


def create_app(app_settings: Settings | None = None) -> web.Application:
    cfg = app_settings or settings
    app = web.Application()
    app[SETTINGS_KEY] = cfg
    app[HUB_KEY] = build_hub(cfg)

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers="*",
                allow_headers="*",
                allow_methods="*",
            )
            for origin in cfg.cors_allowed_origins
        },
    )

    app.add_routes(status_routes)
    for route in list(app.router.routes()):
        cors.add(route)

    app.add_routes(relay_routes)
    # Deployed firmware and dashboards connect to the server root.
    app.router.add_get("/", relay_channel)

    app.on_startup.append(start_persistence)
    app.on_shutdown.append(close_peers)
    app.on_cleanup.append(stop_persistence)
    return app


def main() -> None:
    configure_logging(settings.log_level, json_logs=settings.log_json)
    web.run_app(create_app(), host=settings.host, port=settings.port, access_log=None)


if __name__ == "__main__":
    main()
