from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

from mqdb.domain.filters import QueueFilter
from mqdb.domain.models import DeleteMask, Message


@dataclass(frozen=True)
class ExecuteResult:
    rows: list[Mapping[str, Any]] = field(default_factory=list)
    affected: int = 0

    def scalar(self) -> Any:
        if not self.rows:
            return None
        return next(iter(self.rows[0].values()))


@runtime_checkable
class StatementExecutor(Protocol):
    """Runs one parametrized statement against a storage connection.

    Driver failures must surface as StorageError or TransientStorageError so
    the repository can apply its retry policy without knowing the driver.
    """

    async def execute(self, sql: str, params: Sequence[object]) -> ExecuteResult: ...

    async def reconnect(self) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class MergeStrategy(Protocol):
    def __call__(self, existing: Message, incoming: Message) -> Message: ...


@runtime_checkable
class QueueRepository(Protocol):
    async def get_messages(self, queue_filter: QueueFilter) -> list[Message]: ...

    async def get_message(self, queue_filter: QueueFilter) -> Message | None: ...

    async def count_messages(self, queue_filter: QueueFilter) -> int: ...

    async def ack(self, message_id: str) -> None: ...

    async def nack(self, message_id: str, *, requeue: bool = True) -> None: ...

    async def publish_message(self, message: Message, *, allow_status_update: bool = False) -> Message: ...

    async def publish_or_update_entity_message(
        self,
        message: Message,
        merge: MergeStrategy | None = None,
    ) -> Message: ...

    async def publish_or_skip_entity_message(self, message: Message) -> Message | None: ...

    async def clean_messages(self, interval: timedelta, mask: int = DeleteMask.SAFE) -> int: ...

    async def clean_pending_messages(self, interval: timedelta) -> int: ...

    async def reset_pending_messages(self, interval: timedelta) -> int: ...
