from mqdb.config import QueueSettings, TableConfig, queue_settings_from_env
from mqdb.domain.errors import (
    ConfigurationError,
    EmptySetError,
    LogicError,
    QueueError,
    RangeError,
    StorageError,
    TransientStorageError,
)
from mqdb.domain.filters import QueueFilter
from mqdb.domain.lifecycle import DeliveryPolicy
from mqdb.domain.merge import JsonBitmaskMerge, overwrite
from mqdb.domain.models import ContentType, DeleteMask, JsonMessage, Message, Priority, Status
from mqdb.query.builder import QueryBuilder
from mqdb.query.dialects import MYSQL, POSTGRES, SQLITE, resolve_dialect
from mqdb.repositories.message_repository import MessageRepository

__all__ = [
    "ConfigurationError",
    "ContentType",
    "DeleteMask",
    "DeliveryPolicy",
    "EmptySetError",
    "JsonBitmaskMerge",
    "JsonMessage",
    "LogicError",
    "Message",
    "MessageRepository",
    "MYSQL",
    "POSTGRES",
    "Priority",
    "QueryBuilder",
    "QueueError",
    "QueueFilter",
    "QueueSettings",
    "RangeError",
    "SQLITE",
    "Status",
    "StorageError",
    "TableConfig",
    "TransientStorageError",
    "overwrite",
    "queue_settings_from_env",
    "resolve_dialect",
]
