from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import importlib
import logging
from typing import Any

from mqdb.domain.contracts import ExecuteResult
from mqdb.domain.error_taxonomy import wrap_storage_error

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]

logger = logging.getLogger("mqdb")

_ROW_RETURNING_PREFIXES = ("SELECT", "WITH")


@dataclass
class AsyncpgPoolManager:
    dsn: str
    min_size: int = 1
    max_size: int = 5
    pool: Any | None = None

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres repository mode")
        if self.pool is not None:
            return

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresStatementExecutor:
    """Runs each statement on a pooled connection.

    Every statement commits on its own, which is what gives the claim UPDATE
    its single-statement atomicity.
    """

    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def execute(self, sql: str, params: Sequence[object]) -> ExecuteResult:
        pool = self._pool()
        try:
            async with pool.acquire() as conn:
                if sql.lstrip().upper().startswith(_ROW_RETURNING_PREFIXES):
                    records = await conn.fetch(sql, *params)
                    rows = [dict(record) for record in records]
                    return ExecuteResult(rows=rows, affected=len(rows))
                status = await conn.execute(sql, *params)
        except Exception as exc:
            raise wrap_storage_error(exc, operation="postgres execute") from exc
        return ExecuteResult(affected=_affected_rows(status))

    async def reconnect(self) -> None:
        pool = self._pool()
        # Connections are replaced lazily on next acquire.
        await pool.expire_connections()
        logger.info("postgres pool connections expired", extra={"operation": "reconnect"})

    async def close(self) -> None:
        await self.pool_manager.shutdown()


def _affected_rows(status: object) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3" or "INSERT 0 1".
    if not isinstance(status, str):
        return 0
    last = status.rsplit(" ", maxsplit=1)[-1]
    return int(last) if last.isdigit() else 0
