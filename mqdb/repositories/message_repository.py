from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
import logging
import random
from typing import Any

from mqdb.config import TableConfig
from mqdb.domain.contracts import ExecuteResult, MergeStrategy, StatementExecutor
from mqdb.domain.error_taxonomy import wrap_storage_error
from mqdb.domain.errors import LogicError, QueueError, RangeError, StorageError, TransientStorageError
from mqdb.domain.filters import QueueFilter, validate_message_topic
from mqdb.domain.ids import new_message_id, new_pending_token
from mqdb.domain.lifecycle import INITIAL_STATUS, PENDING_TIMEOUT_TARGETS, DeliveryPolicy, nack_status
from mqdb.domain.models import DeleteMask, Message, Status
from mqdb.domain.timestamps import utc_now
from mqdb.query.builder import QueryBuilder, Statement
from mqdb.query.hydration import hydrate_message

logger = logging.getLogger("mqdb")

StatementFactory = Callable[[], Statement]


@dataclass
class MessageRepository:
    """Queue state machine over a single relational table.

    Consumers claim rows with one UPDATE that stamps a fresh pending token, then
    read back exactly the rows carrying that token. Mutual exclusion between
    consumers comes from the storage engine's single-statement atomicity; no
    client-side lock is taken.
    """

    executor: StatementExecutor
    builder: QueryBuilder
    clock: Callable[[], datetime] = utc_now
    retry_delay_ms: tuple[int, int] = (25, 100)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @property
    def config(self) -> TableConfig:
        return self.builder.config

    async def get_messages(self, queue_filter: QueueFilter) -> list[Message]:
        pending_token = new_pending_token()
        claimed = await self._execute(
            "claim",
            lambda: self.builder.build_claim(queue_filter, pending_token=pending_token, now=self.clock()),
        )
        fetched = await self._execute("fetch", lambda: self.builder.build_fetch(pending_token=pending_token))
        messages = [self._hydrate(row) for row in fetched.rows]
        if len(messages) > queue_filter.limit:
            # A claim retried after a lost commit stamps a second batch with the same token.
            surplus = messages[queue_filter.limit :]
            messages = messages[: queue_filter.limit]
            for message in surplus:
                if message.id is not None:
                    await self.nack(message.id, requeue=True)
            logger.warning(
                "claim matched more rows than requested, surplus requeued",
                extra={"operation": "get_messages", "pending_token": pending_token, "affected": len(surplus)},
            )
        logger.debug(
            "messages claimed",
            extra={
                "operation": "get_messages",
                "pending_token": pending_token,
                "affected": claimed.affected,
                "topic": queue_filter.topic,
            },
        )
        return messages

    async def get_message(self, queue_filter: QueueFilter) -> Message | None:
        single = queue_filter.copy()
        single.limit = 1
        messages = await self.get_messages(single)
        if not messages:
            return None
        return messages[0]

    async def count_messages(self, queue_filter: QueueFilter) -> int:
        result = await self._execute("count", lambda: self.builder.build_count(queue_filter))
        return int(result.scalar() or 0)

    async def ack(self, message_id: str) -> None:
        await self._transition(message_id, Status.ACK_RECEIVED)

    async def nack(self, message_id: str, *, requeue: bool = True) -> None:
        await self._transition(message_id, nack_status(requeue=requeue))

    async def publish_message(self, message: Message, *, allow_status_update: bool = False) -> Message:
        validate_message_topic(message.topic)
        is_new = message.is_new
        if is_new:
            message = replace(message, id=new_message_id())
        published = message
        await self._execute(
            "publish",
            lambda: self.builder.build_publish(
                published,
                is_new=is_new,
                allow_status_update=allow_status_update,
            ),
        )
        return published

    async def publish_or_update_entity_message(
        self,
        message: Message,
        merge: MergeStrategy | None = None,
    ) -> Message:
        """Publish ``message`` or fold it into the queued message of the same entity.

        Looking the existing row up claims it, so two concurrent mergers of the
        same entity do not both overwrite it. This is not a uniqueness
        guarantee: concurrent publishers can still insert duplicate rows when
        nothing is queued yet.

        If ``merge`` raises, the claimed row is put back in the queue and the
        error propagates.
        """
        if not message.entity_id:
            raise LogicError("publish_or_update_entity_message requires a message with an entity id")
        validate_message_topic(message.topic)

        lookup = QueueFilter(entity_id=message.entity_id, topic=message.topic)
        existing = await self.get_message(lookup)
        if existing is not None:
            message = replace(
                message,
                id=existing.id,
                status=INITIAL_STATUS,
                date_create=existing.date_create,
                date_availability=existing.date_availability,
                # Lower value is the higher urgency.
                priority=min(message.priority, existing.priority),
                date_update=self.clock(),
            )
            if merge is not None:
                try:
                    message = merge(existing, message)
                except Exception:
                    if existing.id is not None:
                        await self.nack(existing.id, requeue=True)
                    raise

        return await self.publish_message(message, allow_status_update=True)

    async def publish_or_skip_entity_message(self, message: Message) -> Message | None:
        if not message.entity_id:
            raise LogicError("publish_or_skip_entity_message requires a message with an entity id")
        validate_message_topic(message.topic)

        entity_id = message.entity_id
        result = await self._execute(
            "count_existing",
            lambda: self.builder.build_count_existing(entity_id=entity_id, topic=message.topic),
        )
        if int(result.scalar() or 0) > 0:
            logger.debug(
                "entity message already queued, publish skipped",
                extra={"operation": "publish_or_skip", "topic": message.topic},
            )
            return None
        return await self.publish_message(message)

    async def clean_messages(self, interval: timedelta, mask: int = DeleteMask.SAFE) -> int:
        cutoff = self._cutoff(interval)
        result = await self._execute("clean", lambda: self.builder.build_clean(mask, cutoff=cutoff))
        logger.info("messages cleaned", extra={"operation": "clean_messages", "affected": result.affected})
        return result.affected

    async def clean_pending_messages(self, interval: timedelta) -> int:
        """Give up on claims older than ``interval``: they may never be consumed."""
        return await self._expire_pending(PENDING_TIMEOUT_TARGETS[DeliveryPolicy.AT_MOST_ONCE], interval)

    async def reset_pending_messages(self, interval: timedelta) -> int:
        """Requeue claims older than ``interval``: they may be consumed twice."""
        return await self._expire_pending(PENDING_TIMEOUT_TARGETS[DeliveryPolicy.AT_LEAST_ONCE], interval)

    replay_pending_messages = reset_pending_messages

    async def close(self) -> None:
        await self.executor.close()

    async def _transition(self, message_id: str, status: Status) -> None:
        await self._execute(
            status.name.lower(),
            lambda: self.builder.build_status_update(message_id, status, now=self.clock()),
        )

    async def _expire_pending(self, target: Status, interval: timedelta) -> int:
        cutoff = self._cutoff(interval)
        result = await self._execute(
            "pending_maintenance",
            lambda: self.builder.build_pending_maintenance(target, cutoff=cutoff, now=self.clock()),
        )
        logger.info(
            "pending messages moved",
            extra={"operation": f"pending_to_{target.name.lower()}", "affected": result.affected},
        )
        return result.affected

    def _cutoff(self, interval: timedelta) -> datetime:
        if interval < timedelta(0):
            raise RangeError(f"interval must not be negative, got {interval}")
        return self.clock() - interval

    def _hydrate(self, row: Any) -> Message:
        try:
            return hydrate_message(row, self.config)
        except QueueError as exc:
            raise StorageError(f"unable to hydrate message row: {exc}") from exc

    async def _execute(self, operation: str, build: StatementFactory) -> ExecuteResult:
        # The statement is rebuilt for the retry so timestamps reflect the new attempt.
        try:
            return await self._execute_once(operation, build())
        except TransientStorageError as exc:
            delay_ms = random.uniform(*self.retry_delay_ms)
            logger.warning(
                "transient storage failure, retrying once",
                extra={"operation": operation, "attempt": 2, "delay_ms": round(delay_ms), "error": str(exc)},
            )
            await self.sleep(delay_ms / 1000)
            try:
                await self.executor.reconnect()
            except StorageError:
                raise
            except Exception as reconnect_exc:
                raise wrap_storage_error(reconnect_exc, operation=f"{operation} reconnect") from reconnect_exc
            return await self._execute_once(operation, build())

    async def _execute_once(self, operation: str, statement: Statement) -> ExecuteResult:
        try:
            return await self.executor.execute(statement.sql, statement.params)
        except QueueError:
            raise
        except Exception as exc:
            raise wrap_storage_error(exc, operation=operation) from exc
