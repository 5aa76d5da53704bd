from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from mqdb.config import TableConfig
from mqdb.domain.errors import ConfigurationError, EmptySetError, LogicError
from mqdb.domain.filters import QueueFilter
from mqdb.domain.lifecycle import ensure_transition, statuses_for_mask
from mqdb.domain.models import Message, Status
from mqdb.query.dialects import Dialect

# Fields a publish statement may write, in column order.
PUBLISHED_FIELDS: tuple[str, ...] = (
    "id",
    "status",
    "priority",
    "topic",
    "content",
    "content_type",
    "date_create",
    "date_update",
    "entity_id",
    "date_expiration",
    "date_availability",
)
IMMUTABLE_FIELDS = frozenset({"id", "date_create"})
STATUS_FIELDS = frozenset({"status", "pending_token"})

# "!" never appears in a valid topic, so it is safe as LIKE escape character
# on every supported engine.
LIKE_ESCAPE = "!"

COUNT_ALIAS = "message_count"


@dataclass(frozen=True)
class Statement:
    sql: str
    params: tuple[object, ...] = ()


@dataclass
class _Bindings:
    dialect: Dialect
    args: list[object] = field(default_factory=list)

    def bind(self, value: object) -> str:
        if isinstance(value, datetime):
            value = self.dialect.bind_timestamp(value)
        elif isinstance(value, Enum):
            value = value.value
        self.args.append(value)
        return self.dialect.placeholder(len(self.args))

    def statement(self, sql: str) -> Statement:
        return Statement(sql=sql, params=tuple(self.args))


@dataclass(frozen=True)
class QueryBuilder:
    """Builds the parametrized statements of the queue protocol.

    Placeholders are bound in the order they appear in the statement text, so
    the same code serves positional (``?``, ``%s``) and numbered (``$n``)
    parameter styles.
    """

    config: TableConfig
    dialect: Dialect

    def build_claim(self, queue_filter: QueueFilter, *, pending_token: str, now: datetime) -> Statement:
        bindings = _Bindings(self.dialect)
        set_sql = (
            f"{self._col('status')} = {bindings.bind(Status.ACK_PENDING)}, "
            f"{self._col('date_update')} = {bindings.bind(now)}, "
            f"{self._col('pending_token')} = {bindings.bind(pending_token)}"
        )

        if self.dialect.claim_style == "update_limit":
            if queue_filter.offset:
                raise ConfigurationError(f"{self.dialect.name} claim statement does not support an offset")
            where_sql = self._where(queue_filter, bindings)
            sql = (
                f"UPDATE {self._table()} SET {set_sql} "
                f"WHERE {where_sql}{self._order_by(queue_filter)} "
                f"LIMIT {bindings.bind(queue_filter.limit)}"
            )
            return bindings.statement(sql)

        inner_sql = (
            f"SELECT {self._col('id')} FROM {self._table()} "
            f"WHERE {self._where(queue_filter, bindings)}{self._order_by(queue_filter)} "
            f"LIMIT {bindings.bind(queue_filter.limit)}"
        )
        if queue_filter.offset:
            inner_sql += f" OFFSET {bindings.bind(queue_filter.offset)}"
        if self.dialect.claim_style == "subquery_skip_locked":
            inner_sql += " FOR UPDATE SKIP LOCKED"

        sql = (
            f"UPDATE {self._table()} SET {set_sql} "
            f"WHERE {self._col('id')} IN ({inner_sql}) "
            f"AND {self._col('pending_token')} IS NULL"
        )
        return bindings.statement(sql)

    def build_fetch(self, *, pending_token: str) -> Statement:
        bindings = _Bindings(self.dialect)
        order_sql = ", ".join(f"{self._col(name)} {direction}" for name, direction in self.config.orders)
        sql = (
            f"SELECT {self._columns()} FROM {self._table()} "
            f"WHERE {self._col('pending_token')} = {bindings.bind(pending_token)}"
        )
        if order_sql:
            sql += f" ORDER BY {order_sql}"
        return bindings.statement(sql)

    def build_count(self, queue_filter: QueueFilter) -> Statement:
        bindings = _Bindings(self.dialect)
        sql = (
            f"SELECT COUNT({self._col('id')}) AS {COUNT_ALIAS} FROM {self._table()} "
            f"WHERE {self._where(queue_filter, bindings)}"
        )
        return bindings.statement(sql)

    def build_count_existing(self, *, entity_id: str, topic: str) -> Statement:
        bindings = _Bindings(self.dialect)
        sql = (
            f"SELECT COUNT({self._col('id')}) AS {COUNT_ALIAS} FROM {self._table()} "
            f"WHERE {self._col('entity_id')} = {bindings.bind(entity_id)} "
            f"AND {self._col('topic')} = {bindings.bind(topic)}"
        )
        return bindings.statement(sql)

    def build_publish(self, message: Message, *, is_new: bool, allow_status_update: bool = False) -> Statement:
        bindings = _Bindings(self.dialect)
        if is_new:
            values = self._persistable_values(message, exclude=frozenset())
            if not values:
                raise EmptySetError("cannot build insert statement: no value to set")
            columns = ", ".join(self._col(name) for name, _ in values)
            placeholders = ", ".join(bindings.bind(value) for _, value in values)
            return bindings.statement(f"INSERT INTO {self._table()} ({columns}) VALUES ({placeholders})")

        if not message.id:
            raise LogicError("cannot update a message without id")

        exclude = IMMUTABLE_FIELDS if allow_status_update else IMMUTABLE_FIELDS | STATUS_FIELDS
        values = self._persistable_values(message, exclude=exclude)
        if not values:
            raise EmptySetError("cannot build update statement: no value to set")

        set_parts = [f"{self._col(name)} = {bindings.bind(value)}" for name, value in values]
        if allow_status_update:
            # Releases any claim still attached to the row.
            set_parts.append(f"{self._col('pending_token')} = NULL")
        sql = (
            f"UPDATE {self._table()} SET {', '.join(set_parts)} "
            f"WHERE {self._col('id')} = {bindings.bind(message.id)}"
        )
        return bindings.statement(sql)

    def build_status_update(self, message_id: str, status: Status, *, now: datetime) -> Statement:
        ensure_transition(from_status=Status.ACK_PENDING, to_status=status)
        bindings = _Bindings(self.dialect)
        sql = (
            f"UPDATE {self._table()} SET "
            f"{self._col('status')} = {bindings.bind(status)}, "
            f"{self._col('date_update')} = {bindings.bind(now)}, "
            f"{self._col('pending_token')} = NULL "
            f"WHERE {self._col('id')} = {bindings.bind(message_id)}"
        )
        return bindings.statement(sql)

    def build_clean(self, mask: int, *, cutoff: datetime) -> Statement:
        statuses = statuses_for_mask(mask)
        bindings = _Bindings(self.dialect)
        date_update = self._col("date_update")
        sql = (
            f"DELETE FROM {self._table()} "
            f"WHERE {self._in_predicate('status', statuses, bindings)} "
            f"AND {date_update} <= {bindings.bind(cutoff)} "
            f"AND {date_update} IS NOT NULL"
        )
        return bindings.statement(sql)

    def build_pending_maintenance(self, target: Status, *, cutoff: datetime, now: datetime) -> Statement:
        if target not in (Status.ACK_NOT_RECEIVED, Status.IN_QUEUE):
            raise LogicError(f"pending messages cannot be moved to {target.name}")
        ensure_transition(from_status=Status.ACK_PENDING, to_status=target)
        bindings = _Bindings(self.dialect)
        status = self._col("status")
        date_update = self._col("date_update")
        sql = (
            f"UPDATE {self._table()} SET "
            f"{status} = {bindings.bind(target)}, "
            f"{date_update} = {bindings.bind(now)}, "
            f"{self._col('pending_token')} = NULL "
            f"WHERE {status} = {bindings.bind(Status.ACK_PENDING)} "
            f"AND {date_update} <= {bindings.bind(cutoff)} "
            f"AND {date_update} IS NOT NULL"
        )
        return bindings.statement(sql)

    def _where(self, queue_filter: QueueFilter, bindings: _Bindings) -> str:
        parts = [f"{self._col('pending_token')} IS NULL"]

        if queue_filter.topic:
            parts.append(self._topic_predicate(queue_filter.topic, bindings))

        for logical, values in (("status", queue_filter.statuses), ("priority", queue_filter.priorities)):
            predicate = self._in_predicate(logical, values, bindings)
            if predicate:
                parts.append(predicate)

        if self.config.has_field("date_availability"):
            availability = queue_filter.availability or queue_filter.current
            column = self._col("date_availability")
            parts.append(f"({column} <= {bindings.bind(availability)} OR {column} IS NULL)")

        if self.config.has_field("date_expiration"):
            expiration = queue_filter.expiration or queue_filter.current
            column = self._col("date_expiration")
            parts.append(f"({column} > {bindings.bind(expiration)} OR {column} IS NULL)")

        if queue_filter.entity_id is not None:
            parts.append(f"{self._col('entity_id')} = {bindings.bind(queue_filter.entity_id)}")

        return " AND ".join(parts)

    def _topic_predicate(self, topic: str, bindings: _Bindings) -> str:
        column = self._col("topic")
        if not topic.endswith("*"):
            return f"{column} = {bindings.bind(topic)}"
        prefix = topic[:-1].replace("_", f"{LIKE_ESCAPE}_")
        return f"{column} LIKE {bindings.bind(prefix + '%')} ESCAPE '{LIKE_ESCAPE}'"

    def _in_predicate(self, logical: str, values: tuple[int, ...], bindings: _Bindings) -> str | None:
        if not values:
            return None
        column = self._col(logical)
        if len(values) == 1:
            return f"{column} = {bindings.bind(values[0])}"
        placeholders = ", ".join(bindings.bind(value) for value in values)
        return f"{column} IN ({placeholders})"

    def _order_by(self, queue_filter: QueueFilter) -> str:
        order_parts: list[str] = []
        for logical, direction in self.config.orders:
            # Sorting on a dimension narrowed to a single value gains nothing.
            if logical == "priority" and len(queue_filter.priorities) == 1:
                continue
            if logical == "status" and len(queue_filter.statuses) == 1:
                continue
            order_parts.append(f"{self._col(logical)} {direction}")
        if not order_parts:
            return ""
        return f" ORDER BY {', '.join(order_parts)}"

    def _persistable_values(self, message: Message, *, exclude: frozenset[str]) -> list[tuple[str, object]]:
        values: list[tuple[str, object]] = []
        for name in PUBLISHED_FIELDS:
            if name in exclude or not self.config.has_field(name):
                continue
            value = getattr(message, name)
            # 0 is a real status; only None and "" count as empty.
            if value is None or value == "":
                continue
            values.append((name, value))
        return values

    def _columns(self) -> str:
        return ", ".join(self._col(name) for name in self.config.logical_fields())

    def _col(self, logical: str) -> str:
        return self.dialect.quote(self.config.column(logical))

    def _table(self) -> str:
        return self.dialect.quote(self.config.table)
