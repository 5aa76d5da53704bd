from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mqdb.config import QueueSettings, TableConfig, queue_settings_from_env
from mqdb.domain.contracts import StatementExecutor
from mqdb.domain.errors import ConfigurationError
from mqdb.domain.filters import QueueFilter
from mqdb.query.builder import QueryBuilder
from mqdb.query.dialects import Dialect, dialect_from_url
from mqdb.repositories.message_repository import MessageRepository
from mqdb.repositories.postgres import AsyncpgPoolManager, PostgresStatementExecutor
from mqdb.repositories.schema import ensure_schema
from mqdb.repositories.sqlite import SqliteStatementExecutor


@dataclass
class QueueContainer:
    settings: QueueSettings
    config: TableConfig
    dialect: Dialect
    executor: StatementExecutor
    repository: MessageRepository
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None

    def queue_filter(self, **criteria: Any) -> QueueFilter:
        return QueueFilter(max_limit=self.settings.max_limit, **criteria)


def build_queue_container(
    settings: QueueSettings | None = None,
    *,
    config: TableConfig | None = None,
    create_schema: bool = True,
) -> QueueContainer:
    settings = settings or queue_settings_from_env()
    dialect = dialect_from_url(settings.database_url)
    config = config or TableConfig(table=settings.table)

    executor: StatementExecutor
    open_storage: Callable[[], Awaitable[None]] | None
    if dialect.name == "postgres":
        pool_manager = AsyncpgPoolManager(dsn=settings.database_url)
        executor = PostgresStatementExecutor(pool_manager=pool_manager)
        open_storage = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    elif dialect.name == "sqlite":
        executor = SqliteStatementExecutor.from_url(settings.database_url)
        open_storage = None
        on_shutdown = executor.close
    else:
        raise ConfigurationError(f"no bundled executor for the {dialect.name} dialect; build the repository by hand")

    async def on_startup() -> None:
        if open_storage is not None:
            await open_storage()
        if create_schema:
            await ensure_schema(executor, config, dialect)

    repository = MessageRepository(
        executor=executor,
        builder=QueryBuilder(config=config, dialect=dialect),
        retry_delay_ms=(settings.retry_delay_min_ms, settings.retry_delay_max_ms),
    )
    return QueueContainer(
        settings=settings,
        config=config,
        dialect=dialect,
        executor=executor,
        repository=repository,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
