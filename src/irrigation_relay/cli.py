from __future__ import annotations

import argparse
import asyncio
import signal

from aiohttp import web

from irrigation_relay.logging_config import configure_logging
from irrigation_relay.main import create_app
from irrigation_relay.producer_link import ProducerLink
from irrigation_relay.settings import settings
from irrigation_relay.simulator import DeviceState, SimulatorConfig, load_config, synthetic_readings


def _serve(args: argparse.Namespace) -> None:
    host = args.host or settings.host
    port = args.port or settings.port
    web.run_app(create_app(), host=host, port=port, access_log=None)


def _simulate(args: argparse.Namespace) -> None:
    cfg = load_config(args.config)
    if args.url:
        cfg = cfg.model_copy(update={"url": args.url})
    asyncio.run(_run_simulator(cfg))


async def _run_simulator(cfg: SimulatorConfig) -> None:
    device = DeviceState()
    link = ProducerLink(
        cfg.url,
        lambda: synthetic_readings(cfg, device),
        device_id=cfg.device_id,
        reconnect_delay_s=cfg.reconnect_delay_ms / 1000.0,
        on_command=device.apply_command,
    )

    stop = asyncio.Event()

    def _handle_stop(*_args) -> None:  # noqa: ANN001
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_stop)
        except NotImplementedError:
            pass

    link.start()
    await stop.wait()
    await link.stop()


def main() -> None:
    parser = argparse.ArgumentParser(prog="irrigation-relay")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the relay server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=_serve)

    simulate = sub.add_parser("simulate", help="Run a synthetic field device against a relay")
    simulate.add_argument("--config", required=True, help="Path to YAML config")
    simulate.add_argument("--url", default=None, help="Override the relay WebSocket URL")
    simulate.set_defaults(func=_simulate)

    args = parser.parse_args()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    args.func(args)


if __name__ == "__main__":
    main()
