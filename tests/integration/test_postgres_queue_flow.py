from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from mqdb.domain.filters import QueueFilter
from mqdb.domain.merge import JsonBitmaskMerge
from mqdb.domain.models import DeleteMask, JsonMessage, Message, Status
from mqdb.domain.timestamps import utc_now
from tests.integration.postgres_test_utils import drop_test_table, require_postgres, started_container


@pytest.mark.integration
def test_schema_bootstrap_is_idempotent() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        container = await started_container(dsn=dsn)
        try:
            assert container.on_startup is not None
            await container.on_startup()
            assert await container.repository.count_messages(QueueFilter(statuses=[])) == 0
        finally:
            assert container.on_shutdown is not None
            await container.on_shutdown()
        await drop_test_table(dsn=dsn)

    asyncio.run(_run())


@pytest.mark.integration
def test_publish_claim_ack_clean_scenario() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        container = await started_container(dsn=dsn)
        repository = container.repository
        try:
            for index in range(10):
                await repository.publish_message(Message(topic="orders.created", content=f"order {index}"))
            assert await repository.count_messages(QueueFilter(statuses=[Status.IN_QUEUE])) == 10

            claimed = await repository.get_message(QueueFilter(topic="orders.*"))
            assert claimed is not None and claimed.id is not None
            assert claimed.status is Status.ACK_PENDING
            assert await repository.count_messages(QueueFilter(statuses=[Status.IN_QUEUE])) == 9

            await repository.ack(claimed.id)
            assert await repository.count_messages(QueueFilter(statuses=[Status.ACK_RECEIVED])) == 1

            assert await repository.clean_messages(timedelta(0), DeleteMask.SAFE) == 1
            assert await repository.count_messages(QueueFilter(statuses=[Status.ACK_RECEIVED])) == 0
        finally:
            await repository.close()

    asyncio.run(_run())


@pytest.mark.integration
def test_concurrent_claim_exclusivity_skip_locked() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        container = await started_container(dsn=dsn)
        repository = container.repository
        try:
            for index in range(3):
                await repository.publish_message(Message(topic="orders", content=f"claim-{index}"))

            batches = await asyncio.gather(
                repository.get_messages(QueueFilter(limit=1)),
                repository.get_messages(QueueFilter(limit=1)),
                repository.get_messages(QueueFilter(limit=1)),
            )
            claim_ids = [message.id for batch in batches for message in batch]
            assert len(claim_ids) == len(set(claim_ids))
            assert len(claim_ids) == 3
        finally:
            await repository.close()

    asyncio.run(_run())


@pytest.mark.integration
def test_entity_merge_and_pending_maintenance() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        container = await started_container(dsn=dsn)
        repository = container.repository
        try:
            await repository.publish_or_update_entity_message(
                JsonMessage.from_payload("accounts", {"filter": 1}, entity_id="1")
            )
            await repository.publish_or_update_entity_message(
                JsonMessage.from_payload("accounts", {"filter": 2}, entity_id="1")
            )
            await repository.publish_or_update_entity_message(
                JsonMessage.from_payload("accounts", {"filter": 1}, entity_id="1"),
                JsonBitmaskMerge("filter"),
            )

            stored = await repository.get_message(QueueFilter(entity_id="1"))
            assert isinstance(stored, JsonMessage)
            assert stored.payload == {"filter": 3}

            later = replace(repository, clock=lambda: utc_now() + timedelta(minutes=10))
            assert await later.reset_pending_messages(timedelta(minutes=5)) == 1
            replayed = await repository.get_message(QueueFilter(entity_id="1"))
            assert replayed is not None and replayed.id == stored.id

            assert await later.clean_pending_messages(timedelta(minutes=5)) == 1
            assert await repository.get_message(QueueFilter(entity_id="1")) is None
        finally:
            await repository.close()

    asyncio.run(_run())
