from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from mqdb.config import QueueSettings
from mqdb.domain.filters import QueueFilter
from mqdb.domain.models import Message
from mqdb.services.bootstrap import QueueContainer, build_queue_container


def _containers(tmp_path: Path, count: int) -> list[QueueContainer]:
    settings = QueueSettings(database_url=f"sqlite:///{tmp_path / 'queue.sqlite3'}")
    return [build_queue_container(settings) for _ in range(count)]


@pytest.mark.integration
def test_concurrent_single_claims_never_share_a_row(tmp_path: Path) -> None:
    containers = _containers(tmp_path, 2)

    async def _run() -> None:
        for container in containers:
            assert container.on_startup is not None
            await container.on_startup()
        first, second = (container.repository for container in containers)
        try:
            for index in range(4):
                await first.publish_message(Message(topic="orders", content=f"order {index}"))

            for _ in range(2):
                batches = await asyncio.gather(
                    first.get_messages(QueueFilter(limit=1)),
                    second.get_messages(QueueFilter(limit=1)),
                )
                ids = [message.id for batch in batches for message in batch]
                assert len(ids) == 2
                assert len(set(ids)) == 2
        finally:
            await first.close()
            await second.close()

    asyncio.run(_run())


@pytest.mark.integration
def test_many_consumers_drain_queue_exactly_once(tmp_path: Path) -> None:
    containers = _containers(tmp_path, 4)

    async def _run() -> None:
        for container in containers:
            assert container.on_startup is not None
            await container.on_startup()
        repositories = [container.repository for container in containers]
        try:
            for index in range(20):
                await repositories[0].publish_message(Message(topic="orders", content=f"order {index}"))

            async def _drain(repository) -> list[str]:
                claimed: list[str] = []
                while True:
                    batch = await repository.get_messages(QueueFilter(limit=3))
                    if not batch:
                        return claimed
                    for message in batch:
                        claimed.append(message.id)
                        await repository.ack(message.id)

            results = await asyncio.gather(*(_drain(repository) for repository in repositories))
            claimed_ids = [message_id for result in results for message_id in result]

            assert len(claimed_ids) == 20
            assert len(set(claimed_ids)) == 20
        finally:
            for repository in repositories:
                await repository.close()

    asyncio.run(_run())
