from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from mqdb.domain.contracts import QueueRepository
from mqdb.domain.errors import LogicError, QueueError
from mqdb.domain.filters import QueueFilter
from mqdb.domain.models import Message

# Returning False asks for a requeue; anything else acknowledges the message.
MessageHandler = Callable[[Message], Awaitable[bool | None]]
logger = logging.getLogger("mqdb.worker")


@dataclass(frozen=True)
class ConsumerRuntimeSettings:
    poll_interval_ms: int = 200
    idle_backoff_ms: int = 1000
    error_backoff_ms: int = 2000


@dataclass
class ConsumerRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    acked_total: int = 0
    nacked_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0


@dataclass
class ConsumerLoop:
    name: str
    repository: QueueRepository
    queue_filter: QueueFilter
    handle: MessageHandler
    requeue_on_error: bool = True

    async def run_once(self) -> bool | None:
        """Consume at most one message.

        Returns None when nothing was claimed, True when the message was acked
        and False when it was nacked.
        """
        message = await self.repository.get_message(self.queue_filter)
        if message is None:
            return None
        if message.id is None:
            raise LogicError("claimed message has no id")

        try:
            handled = await self.handle(message)
        except QueueError:
            raise
        except Exception:
            logger.exception(
                "message handler failed",
                extra={"worker": self.name, "message_id": message.id, "topic": message.topic},
            )
            await self.repository.nack(message.id, requeue=self.requeue_on_error)
            return False

        if handled is False:
            await self.repository.nack(message.id, requeue=True)
            return False

        await self.repository.ack(message.id)
        return True


async def run_consumer_until_stopped(
    *,
    consumer: ConsumerLoop,
    stop_event: asyncio.Event,
    settings: ConsumerRuntimeSettings | None = None,
    state: ConsumerRuntimeState | None = None,
) -> None:
    settings = settings or ConsumerRuntimeSettings()
    if state is not None:
        state.started = True

    logger.info("consumer loop started", extra={"worker": consumer.name, "topic": consumer.queue_filter.topic})

    while not stop_event.is_set():
        delay_ms = settings.idle_backoff_ms
        try:
            outcome = await consumer.run_once()
            if state is not None:
                state.ticks_total += 1
                if outcome is None:
                    state.idle_ticks_total += 1
                elif outcome:
                    state.acked_total += 1
                else:
                    state.nacked_total += 1
            delay_ms = settings.idle_backoff_ms if outcome is None else settings.poll_interval_ms
        except Exception:
            if state is not None:
                state.ticks_total += 1
                state.errors_total += 1
            delay_ms = settings.error_backoff_ms
            logger.exception("consumer tick error", extra={"worker": consumer.name})

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            continue

    logger.info("consumer loop stopped", extra={"worker": consumer.name})
    if state is not None:
        state.stopped = True
