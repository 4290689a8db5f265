#!/usr/bin/env python3
"""Alerting daemon entrypoint — wires settings, logging, service and status API.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level and enable the status API
    python scripts/run.py --log-level DEBUG --api
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog
from aiohttp import web

from alertops.alerts.source import InMemoryMetricSource
from alertops.api.status import start_status_api
from alertops.core.config import load_settings
from alertops.core.exceptions import ConfigError
from alertops.core.logging import setup_logging
from alertops.service import AlertingService

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the service and run until interrupted."""
    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    setup_logging(level=args.log_level, config=settings.logging, instance=args.instance)

    logger.info(
        "alertops_starting",
        channels=len(settings.alerts.channels),
        tick_interval_secs=settings.scheduler.tick_interval_secs,
        api=settings.api.enabled or args.api,
    )

    # Metrics are pushed into the source by the embedding process.
    source = InMemoryMetricSource()
    service = AlertingService(source, settings)

    runner: web.AppRunner | None = None
    if settings.api.enabled or args.api:
        runner = await start_status_api(
            service,
            host=settings.api.host,
            port=settings.api.port,
            username=settings.api.auth_username or None,
            password=settings.api.auth_password.get_secret_value() or None,
        )
        logger.info("status_api_listening", host=settings.api.host, port=settings.api.port)

    await service.start()

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    await service.stop()
    if runner is not None:
        await runner.cleanup()

    summary = service.alert_summary()
    logger.info(
        "alertops_stopped",
        ticks=service.tick_count,
        alerts=summary["total"],
        incidents=len(service.get_incidents()),
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the alerting and incident-response service.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Serve the status API even if api.enabled is false",
    )
    parser.add_argument(
        "--instance",
        default=None,
        help="Instance name bound to every log record",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
