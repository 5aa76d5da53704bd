from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
import logging

from mqdb.config import QueueSettings
from mqdb.domain.lifecycle import DeliveryPolicy
from mqdb.domain.models import DeleteMask
from mqdb.repositories.message_repository import MessageRepository

logger = logging.getLogger("mqdb.worker")


@dataclass
class MaintenanceState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    pending_moved_total: int = 0
    cleaned_total: int = 0
    errors_total: int = 0


async def run_maintenance_once(repository: MessageRepository, settings: QueueSettings) -> tuple[int, int]:
    """Expire stale claims per the delivery policy, then purge old finished rows."""
    pending_timeout = timedelta(seconds=settings.pending_timeout_seconds)
    if settings.delivery_policy is DeliveryPolicy.AT_MOST_ONCE:
        moved = await repository.clean_pending_messages(pending_timeout)
    else:
        moved = await repository.reset_pending_messages(pending_timeout)
    cleaned = await repository.clean_messages(timedelta(seconds=settings.clean_after_seconds), DeleteMask.SAFE)
    return moved, cleaned


async def run_maintenance_until_stopped(
    *,
    repository: MessageRepository,
    settings: QueueSettings,
    stop_event: asyncio.Event,
    state: MaintenanceState | None = None,
) -> None:
    if state is not None:
        state.started = True

    logger.info(
        "maintenance loop started",
        extra={"worker": "maintenance", "operation": settings.delivery_policy.value},
    )

    while not stop_event.is_set():
        try:
            moved, cleaned = await run_maintenance_once(repository, settings)
            if state is not None:
                state.ticks_total += 1
                state.pending_moved_total += moved
                state.cleaned_total += cleaned
        except Exception:
            if state is not None:
                state.ticks_total += 1
                state.errors_total += 1
            logger.exception("maintenance tick error", extra={"worker": "maintenance"})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.maintenance_interval_ms / 1000)
        except TimeoutError:
            continue

    logger.info("maintenance loop stopped", extra={"worker": "maintenance"})
    if state is not None:
        state.stopped = True
