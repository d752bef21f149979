#!/usr/bin/env python3
"""Container-side commands run under the endpoint's process supervisor.

Commands:
    monitor --role frontend|backend   watch the peer endpoint; exit 1 after
                                      terminating the container, 0 when
                                      stopped by a signal or disabled
    watch-shutdown                    terminate the container once
                                      /tmp/shutdown exists (exit 0)
    register-public                   UPSERT <workload>.<domain> to this
                                      frontend's public IP (always exit 0)

Usage:
    python -m scalezero.cli.peer_monitor monitor --role frontend
    python -m scalezero.cli.peer_monitor watch-shutdown
    python -m scalezero.cli.peer_monitor register-public
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from scalezero.config.settings import ScaleZeroConfig
from scalezero.coordination.health_monitor import (
    SHUTDOWN_FILE,
    MonitorConfig,
    PeerHealthMonitor,
    ShutdownFileWatcher,
)
from scalezero.core.models import WORKLOAD_METADATA_KEY, EndpointRole
from scalezero.runtime import build_public_registrar
from scalezero.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TERMINATED = 1
EXIT_CONFIG_ERROR = 2


def _install_signal_handlers(stop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop)


async def run_monitor(role: EndpointRole) -> int:
    try:
        config = MonitorConfig.from_env(role)
    except ConfigurationError as e:
        logger.error(f"Health check misconfigured: {e}")
        return EXIT_CONFIG_ERROR

    if not config.enabled:
        logger.info("No upstream host set, health check disabled - exiting")
        return EXIT_OK

    monitor = PeerHealthMonitor(config)
    _install_signal_handlers(monitor.stop)
    terminated = await monitor.run()
    return EXIT_TERMINATED if terminated else EXIT_OK


async def run_shutdown_watcher(path: Path, interval: float) -> int:
    watcher = ShutdownFileWatcher(path=path, interval=interval)
    _install_signal_handlers(watcher.stop)
    await watcher.run()
    return EXIT_OK


async def run_register_public(workload: str) -> int:
    if os.environ.get("SKIP_DNS_REGISTRATION", "").lower() == "true":
        logger.info("Skipping public record registration")
        return EXIT_OK
    try:
        config = ScaleZeroConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"Continuing without public record: {e}")
        return EXIT_OK
    await build_public_registrar(config).register(workload)
    # The frontend still works without a public name
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="scalezero endpoint-side commands")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    monitor = sub.add_parser("monitor", help="Watch the peer endpoint")
    monitor.add_argument(
        "--role",
        required=True,
        choices=[r.value for r in EndpointRole],
        help="Role of the endpoint this runs in",
    )

    watch = sub.add_parser("watch-shutdown", help="Terminate when the shutdown file appears")
    watch.add_argument("--path", type=Path, default=SHUTDOWN_FILE, help="File to watch for")
    watch.add_argument("--interval", type=float, default=1.0, help="Poll interval in seconds")

    register = sub.add_parser("register-public", help="Publish this frontend's public name")
    register.add_argument(
        "--workload",
        default=os.environ.get(WORKLOAD_METADATA_KEY, ""),
        help="Workload name (default: $WORKLOAD_NAME)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == "monitor":
        return asyncio.run(run_monitor(EndpointRole(args.role)))
    if args.command == "watch-shutdown":
        return asyncio.run(run_shutdown_watcher(args.path, args.interval))
    return asyncio.run(run_register_public(args.workload))


if __name__ == "__main__":
    sys.exit(main())
