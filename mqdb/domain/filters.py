from __future__ import annotations

from collections.abc import Iterable
import copy
from datetime import datetime
import re

from mqdb.domain.errors import ConfigurationError, RangeError
from mqdb.domain.models import Priority, Status, coerce_priority, coerce_status
from mqdb.domain.timestamps import parse_optional_timestamp, parse_timestamp, utc_now

DEFAULT_MAX_LIMIT = 1000

# Dot-separated segments, optionally ending with a single "*" segment.
TOPIC_PATTERN = re.compile(r"([a-z0-9_]+\.)*([a-z0-9_]+|\*)")
MESSAGE_TOPIC_PATTERN = re.compile(r"([a-z0-9_]+\.)*[a-z0-9_]+")


def validate_topic(topic: str) -> str:
    if not topic:
        raise ConfigurationError("topic filter cannot be empty")
    if TOPIC_PATTERN.fullmatch(topic) is None:
        raise ConfigurationError(
            f"invalid topic filter {topic!r}: only lowercase alphanumerics, '_', '.' and a trailing '*' are allowed"
        )
    return topic


def validate_message_topic(topic: str) -> str:
    """Check the topic a message is published under: the filter grammar without the wildcard."""
    if not topic:
        raise ConfigurationError("message topic cannot be empty")
    if MESSAGE_TOPIC_PATTERN.fullmatch(topic) is None:
        raise ConfigurationError(
            f"invalid message topic {topic!r}: only lowercase alphanumerics, '_' and '.' are allowed"
        )
    return topic


class QueueFilter:
    """Query criteria for claim and count statements.

    Every setter validates its value and raises before storing anything, so a
    filter never holds an out-of-range value. Keyword arguments given to the
    constructor go through the same setters.
    """

    def __init__(
        self,
        *,
        max_limit: int = DEFAULT_MAX_LIMIT,
        limit: int | None = None,
        offset: int | None = None,
        statuses: Iterable[int] | None = None,
        priorities: Iterable[int] | None = None,
        topic: str | None = None,
        entity_id: str | None = None,
        current: str | datetime | None = None,
        availability: str | datetime | None = None,
        expiration: str | datetime | None = None,
    ) -> None:
        if max_limit < 1:
            raise RangeError(f"max limit must be greater than 0, got {max_limit}")
        self._max_limit = max_limit
        self._limit = 1
        self._offset = 0
        self._statuses: tuple[Status, ...] = (Status.IN_QUEUE,)
        self._priorities: tuple[Priority, ...] = ()
        self._topic: str | None = None
        self._entity_id: str | None = None
        self._current = utc_now()
        self._availability: datetime | None = None
        self._expiration: datetime | None = None

        if limit is not None:
            self.limit = limit
        if offset is not None:
            self.offset = offset
        if statuses is not None:
            self.statuses = statuses
        if priorities is not None:
            self.priorities = priorities
        if topic is not None:
            self.topic = topic
        self.entity_id = entity_id
        if current is not None:
            self.current = current
        if availability is not None:
            self.availability = availability
        if expiration is not None:
            self.expiration = expiration

    @property
    def max_limit(self) -> int:
        return self._max_limit

    @property
    def limit(self) -> int:
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        if value < 1:
            raise RangeError(f"limit must be greater than 0, got {value}")
        if value > self._max_limit:
            raise RangeError(f"limit cannot be greater than max limit {self._max_limit}, got {value}")
        self._limit = value

    @property
    def offset(self) -> int:
        return self._offset

    @offset.setter
    def offset(self, value: int) -> None:
        if value < 0:
            raise RangeError(f"offset must be 0 or greater, got {value}")
        self._offset = value

    @property
    def statuses(self) -> tuple[Status, ...]:
        return self._statuses

    @statuses.setter
    def statuses(self, values: Iterable[int]) -> None:
        self._statuses = tuple(sorted({coerce_status(value) for value in values}))

    @property
    def priorities(self) -> tuple[Priority, ...]:
        return self._priorities

    @priorities.setter
    def priorities(self, values: Iterable[int]) -> None:
        self._priorities = tuple(sorted({coerce_priority(value) for value in values}))

    @property
    def topic(self) -> str | None:
        return self._topic

    @topic.setter
    def topic(self, value: str | None) -> None:
        self._topic = None if value is None else validate_topic(value)

    @property
    def entity_id(self) -> str | None:
        return self._entity_id

    @entity_id.setter
    def entity_id(self, value: str | None) -> None:
        # "" is a legitimate entity id to filter on; only None disables it.
        self._entity_id = value

    @property
    def current(self) -> datetime:
        return self._current

    @current.setter
    def current(self, value: str | datetime) -> None:
        self._current = parse_timestamp(value)

    @property
    def availability(self) -> datetime | None:
        return self._availability

    @availability.setter
    def availability(self, value: str | datetime | None) -> None:
        self._availability = parse_optional_timestamp(value)

    @property
    def expiration(self) -> datetime | None:
        return self._expiration

    @expiration.setter
    def expiration(self, value: str | datetime | None) -> None:
        parsed = parse_optional_timestamp(value)
        if parsed is not None and parsed < utc_now():
            raise RangeError(f"expiration {parsed.isoformat()} is prior to the current date time")
        self._expiration = parsed

    def copy(self) -> QueueFilter:
        return copy.copy(self)

    def __repr__(self) -> str:
        return (
            f"QueueFilter(limit={self._limit}, offset={self._offset}, statuses={list(self._statuses)}, "
            f"priorities={list(self._priorities)}, topic={self._topic!r}, entity_id={self._entity_id!r})"
        )
