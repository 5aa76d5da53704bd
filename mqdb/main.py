from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from mqdb.config import queue_settings_from_env
from mqdb.domain.errors import ConfigurationError
from mqdb.logging_setup import configure_logging
from mqdb.services.bootstrap import QueueContainer, build_queue_container
from mqdb.workers.maintenance import MaintenanceState, run_maintenance_until_stopped

SUPPORTED_ROLES = ("maintenance", "init-schema")

logger = logging.getLogger("mqdb")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Queue maintenance entrypoint")
    parser.add_argument("--role", required=True, help="Runtime role")
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="Validate configuration and exit",
    )
    return parser.parse_args(argv)


async def _serve(role: str, container: QueueContainer) -> None:
    if container.on_startup is not None:
        await container.on_startup()
    try:
        if role == "init-schema":
            logger.info("schema ready", extra={"operation": "init_schema"})
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)
        await run_maintenance_until_stopped(
            repository=container.repository,
            settings=container.settings,
            stop_event=stop_event,
            state=MaintenanceState(),
        )
    finally:
        if container.on_shutdown is not None:
            await container.on_shutdown()


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.role not in SUPPORTED_ROLES:
        supported = ", ".join(SUPPORTED_ROLES)
        sys.stderr.write(f"ERROR: unsupported role '{args.role}'\n")
        sys.stderr.write(f"Try one of: {supported}\n")
        return 2

    configure_logging()
    try:
        settings = queue_settings_from_env()
        container = build_queue_container(settings)
    except ConfigurationError as exc:
        sys.stderr.write(f"ERROR: {exc}\n")
        return 2

    logger.info(
        "runtime initialized",
        extra={"operation": args.role, "worker": container.dialect.name},
    )
    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra={"operation": args.role})
        return 0

    asyncio.run(_serve(args.role, container))
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
