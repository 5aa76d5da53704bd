from __future__ import annotations

from datetime import UTC, datetime

from mqdb.domain.errors import ConfigurationError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime with second precision.

    Naive values are taken as UTC, the way rows come back from
    ``timestamp without time zone`` columns.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).replace(microsecond=0)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    try:
        parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"timestamp must use format YYYY-MM-DD HH:MM:SS, got {value!r}") from exc
    return parsed.replace(tzinfo=UTC)


def parse_optional_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_timestamp(value)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).strftime(TIMESTAMP_FORMAT)
