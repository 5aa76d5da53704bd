from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
import re
from types import MappingProxyType

from mqdb.domain.errors import ConfigurationError
from mqdb.domain.filters import DEFAULT_MAX_LIMIT
from mqdb.domain.lifecycle import DeliveryPolicy

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

REQUIRED_FIELDS: tuple[str, ...] = (
    "id",
    "status",
    "priority",
    "topic",
    "content",
    "content_type",
    "pending_token",
    "date_create",
    "date_update",
)
OPTIONAL_FIELDS: tuple[str, ...] = ("entity_id", "date_expiration", "date_availability")

DEFAULT_FIELDS: Mapping[str, str] = {
    "id": "message_id",
    "status": "message_status",
    "priority": "message_priority",
    "topic": "message_topic",
    "content": "message_content",
    "content_type": "message_content_type",
    "pending_token": "message_pending_token",
    "date_create": "message_date_create",
    "date_update": "message_date_update",
    "entity_id": "message_entity_id",
    "date_expiration": "message_date_expiration",
    "date_availability": "message_date_availability",
}

DEFAULT_ORDERS: tuple[tuple[str, str], ...] = (
    ("priority", "ASC"),
    ("date_availability", "ASC"),
    ("date_create", "ASC"),
)


def validate_identifier(name: str, *, kind: str) -> str:
    if not name:
        raise ConfigurationError(f"empty {kind} name")
    if IDENTIFIER_PATTERN.fullmatch(name) is None:
        raise ConfigurationError(f"invalid {kind} name: {name!r}")
    return name


@dataclass(frozen=True)
class TableConfig:
    """Logical field -> physical column map for the queue table.

    Validated once at construction and shared by reference with the query
    builder and the row hydration.
    """

    table: str = "message_queue"
    fields: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_FIELDS))
    orders: tuple[tuple[str, str], ...] = DEFAULT_ORDERS

    def __post_init__(self) -> None:
        validate_identifier(self.table, kind="table")
        known = set(REQUIRED_FIELDS) | set(OPTIONAL_FIELDS)
        for logical, column in self.fields.items():
            if logical not in known:
                raise ConfigurationError(f"unknown logical field: {logical!r}")
            validate_identifier(column, kind="field")
        missing = [name for name in REQUIRED_FIELDS if name not in self.fields]
        if missing:
            raise ConfigurationError(f"missing required fields: {', '.join(missing)}")
        if len(set(self.fields.values())) != len(self.fields):
            raise ConfigurationError("two logical fields map to the same column")

        # Orders on fields that are not configured are silently dropped, so a
        # table without the optional availability column keeps the default order.
        orders: list[tuple[str, str]] = []
        for logical, direction in self.orders:
            if logical not in self.fields:
                continue
            normalized = direction.upper()
            if normalized not in ("ASC", "DESC"):
                raise ConfigurationError(f"invalid order direction: {direction!r}")
            orders.append((logical, normalized))

        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "orders", tuple(orders))

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def column(self, name: str) -> str:
        try:
            return self.fields[name]
        except KeyError:
            raise ConfigurationError(f"field is not configured: {name!r}") from None

    def logical_fields(self) -> tuple[str, ...]:
        return tuple(self.fields)


@dataclass(frozen=True)
class QueueSettings:
    database_url: str = "sqlite:///mqdb.sqlite3"
    table: str = "message_queue"
    max_limit: int = DEFAULT_MAX_LIMIT
    retry_delay_min_ms: int = 25
    retry_delay_max_ms: int = 100
    pending_timeout_seconds: int = 300
    clean_after_seconds: int = 86400
    maintenance_interval_ms: int = 5000
    delivery_policy: DeliveryPolicy = DeliveryPolicy.AT_LEAST_ONCE


def queue_settings_from_env() -> QueueSettings:
    defaults = QueueSettings()
    retry_min = _env_int("MQDB_RETRY_DELAY_MIN_MS", defaults.retry_delay_min_ms)
    retry_max = _env_int("MQDB_RETRY_DELAY_MAX_MS", defaults.retry_delay_max_ms)
    return QueueSettings(
        database_url=os.getenv("DATABASE_URL", defaults.database_url),
        table=validate_identifier(os.getenv("MQDB_TABLE", defaults.table), kind="table"),
        max_limit=_env_int("MQDB_MAX_LIMIT", defaults.max_limit),
        retry_delay_min_ms=min(retry_min, retry_max),
        retry_delay_max_ms=max(retry_min, retry_max),
        pending_timeout_seconds=_env_int("MQDB_PENDING_TIMEOUT_SECONDS", defaults.pending_timeout_seconds),
        clean_after_seconds=_env_int("MQDB_CLEAN_AFTER_SECONDS", defaults.clean_after_seconds),
        maintenance_interval_ms=_env_int("MQDB_MAINTENANCE_INTERVAL_MS", defaults.maintenance_interval_ms),
        delivery_policy=_env_policy("MQDB_DELIVERY_POLICY", defaults.delivery_policy),
    )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


def _env_policy(name: str, default: DeliveryPolicy) -> DeliveryPolicy:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return DeliveryPolicy(value.strip().lower())
    except ValueError:
        supported = ", ".join(policy.value for policy in DeliveryPolicy)
        raise ConfigurationError(f"unsupported delivery policy {value!r}. Supported policies: {supported}") from None
