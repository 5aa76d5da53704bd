from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, IntFlag, StrEnum
import json

from mqdb.domain.errors import RangeError
from mqdb.domain.timestamps import parse_optional_timestamp, parse_timestamp, utc_now


# Persisted as integers in the status column.
#
# IMPORTANT:
# - Keep this enum synchronized with mqdb/domain/lifecycle.py
#   (ALLOWED_TRANSITIONS and DELETE_MASK_STATUSES).
# - Values are part of the stored data; never renumber them.
class Status(IntEnum):
    # Waiting to be consumed.
    IN_QUEUE = 0
    # Claimed by a consumer, acknowledgement pending.
    ACK_PENDING = 1

    # Terminal states.
    ACK_RECEIVED = 2
    NACK_RECEIVED = 3
    ACK_NOT_RECEIVED = 4


class Priority(IntEnum):
    VERY_HIGH = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4
    VERY_LOW = 5


class ContentType(StrEnum):
    TEXT = "text"
    JSON = "json"


class DeleteMask(IntFlag):
    ACK_RECEIVED = 0x1
    NACK_RECEIVED = 0x2
    ACK_NOT_RECEIVED = 0x4
    ACK_PENDING = 0x8
    SAFE = 0x7
    ALL = 0xFF


def _is_strict_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def coerce_status(value: int) -> Status:
    error = RangeError(
        f"status must be an integer between {Status.IN_QUEUE.value} and {Status.ACK_NOT_RECEIVED.value}, got {value!r}"
    )
    if not _is_strict_int(value):
        raise error
    try:
        return Status(value)
    except ValueError as exc:
        raise error from exc


def coerce_priority(value: int) -> Priority:
    error = RangeError(
        f"priority must be an integer between {Priority.VERY_HIGH.value} and {Priority.VERY_LOW.value}, got {value!r}"
    )
    if not _is_strict_int(value):
        raise error
    try:
        return Priority(value)
    except ValueError as exc:
        raise error from exc


@dataclass(frozen=True)
class Message:
    topic: str = ""
    content: str = ""
    content_type: str = ContentType.TEXT
    priority: int = Priority.MEDIUM
    status: int = Status.IN_QUEUE
    id: str | None = None
    entity_id: str | None = None
    date_create: datetime = field(default_factory=utc_now)
    date_update: datetime | None = None
    date_availability: datetime | None = None
    date_expiration: datetime | None = None
    pending_token: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", coerce_status(self.status))
        object.__setattr__(self, "priority", coerce_priority(self.priority))
        object.__setattr__(self, "date_create", parse_timestamp(self.date_create))
        for name in ("date_update", "date_availability", "date_expiration"):
            object.__setattr__(self, name, parse_optional_timestamp(getattr(self, name)))

    @property
    def is_new(self) -> bool:
        return not self.id


@dataclass(frozen=True)
class JsonMessage(Message):
    content_type: str = ContentType.JSON

    @classmethod
    def from_payload(cls, topic: str, payload: object, **fields: object) -> JsonMessage:
        return cls(topic=topic, content=json.dumps(payload), **fields)  # type: ignore[arg-type]

    @property
    def payload(self) -> object:
        if not self.content:
            return None
        return json.loads(self.content)


# Content-type tag -> concrete message class used by row hydration.
MESSAGE_TYPES: dict[str, type[Message]] = {
    ContentType.TEXT.value: Message,
    ContentType.JSON.value: JsonMessage,
}
