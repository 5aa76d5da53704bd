from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from mqdb.config import TableConfig
from mqdb.domain.models import MESSAGE_TYPES, ContentType, Message

# Logical field -> Message attribute. Resolved against TableConfig so the
# physical column names never leak past this module.
FIELD_ATTRIBUTES: dict[str, str] = {
    "id": "id",
    "status": "status",
    "priority": "priority",
    "topic": "topic",
    "content": "content",
    "content_type": "content_type",
    "pending_token": "pending_token",
    "date_create": "date_create",
    "date_update": "date_update",
    "entity_id": "entity_id",
    "date_expiration": "date_expiration",
    "date_availability": "date_availability",
}

_TEXT_ATTRIBUTES = frozenset({"topic", "content"})


def hydrate_message(row: Mapping[str, Any], config: TableConfig) -> Message:
    values: dict[str, Any] = {}
    for logical, column in config.fields.items():
        attribute = FIELD_ATTRIBUTES[logical]
        value = row.get(column)
        if value is None:
            if attribute in _TEXT_ATTRIBUTES:
                value = ""
            elif attribute == "date_create":
                continue
        values[attribute] = value

    content_type = values.get("content_type") or ContentType.TEXT
    values["content_type"] = content_type
    message_cls = MESSAGE_TYPES.get(content_type, Message)
    return message_cls(**values)
