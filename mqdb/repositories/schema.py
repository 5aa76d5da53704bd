from __future__ import annotations

from pathlib import Path

from mqdb.config import OPTIONAL_FIELDS, TableConfig
from mqdb.domain.contracts import StatementExecutor
from mqdb.domain.errors import ConfigurationError
from mqdb.query.dialects import Dialect

TEMPLATE_DIR = Path(__file__).with_name("sql")


def render_schema(config: TableConfig, dialect: Dialect) -> list[str]:
    """Render the CREATE TABLE/INDEX statements for ``config``.

    The bundled templates describe the full column map; tables that leave out
    optional columns have to be created by the caller.
    """
    missing = [name for name in OPTIONAL_FIELDS if not config.has_field(name)]
    if missing:
        raise ConfigurationError(f"schema templates need every optional field, missing: {', '.join(missing)}")

    names = {logical: dialect.quote(column) for logical, column in config.fields.items()}
    names.update(
        table=dialect.quote(config.table),
        claim_index=dialect.quote(f"{config.table}_claim_idx"),
        pending_index=dialect.quote(f"{config.table}_pending_idx"),
        entity_index=dialect.quote(f"{config.table}_entity_idx"),
        status_check=dialect.quote(f"{config.table}_status_check"),
        priority_check=dialect.quote(f"{config.table}_priority_check"),
    )
    template = (TEMPLATE_DIR / f"create_table.{dialect.name}.sql").read_text(encoding="utf-8")
    return [statement.strip() for statement in template.format(**names).split(";") if statement.strip()]


async def ensure_schema(executor: StatementExecutor, config: TableConfig, dialect: Dialect) -> None:
    for statement in render_schema(config, dialect):
        await executor.execute(statement, ())
