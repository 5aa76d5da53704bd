from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from mqdb.domain.errors import ConfigurationError
from mqdb.domain.timestamps import format_timestamp, to_utc

PlaceholderStyle = Literal["numeric", "qmark", "format"]

# How the claim statement selects its rows:
# - update_limit: UPDATE ... ORDER BY ... LIMIT n (MySQL/InnoDB row locks).
# - subquery: UPDATE ... WHERE id IN (SELECT ... LIMIT n); relies on the
#   engine serializing writers (SQLite).
# - subquery_skip_locked: same, with FOR UPDATE SKIP LOCKED (PostgreSQL).
ClaimStyle = Literal["update_limit", "subquery", "subquery_skip_locked"]


@dataclass(frozen=True)
class Dialect:
    name: str
    quote_char: str
    placeholder_style: PlaceholderStyle
    claim_style: ClaimStyle
    timestamps_as_text: bool

    def quote(self, identifier: str) -> str:
        return f"{self.quote_char}{identifier}{self.quote_char}"

    def placeholder(self, position: int) -> str:
        if self.placeholder_style == "numeric":
            return f"${position}"
        if self.placeholder_style == "format":
            return "%s"
        return "?"

    def bind_timestamp(self, value: datetime) -> object:
        if self.timestamps_as_text:
            return format_timestamp(value)
        # timestamp without time zone columns take naive UTC values.
        return to_utc(value).replace(tzinfo=None)


POSTGRES = Dialect(
    name="postgres",
    quote_char='"',
    placeholder_style="numeric",
    claim_style="subquery_skip_locked",
    timestamps_as_text=False,
)
SQLITE = Dialect(
    name="sqlite",
    quote_char='"',
    placeholder_style="qmark",
    claim_style="subquery",
    timestamps_as_text=True,
)
MYSQL = Dialect(
    name="mysql",
    quote_char="`",
    placeholder_style="format",
    claim_style="update_limit",
    timestamps_as_text=True,
)

DIALECTS: dict[str, Dialect] = {dialect.name: dialect for dialect in (POSTGRES, SQLITE, MYSQL)}
SUPPORTED_DIALECTS = tuple(DIALECTS)

URL_SCHEMES: dict[str, str] = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "sqlite": "sqlite",
    "mysql": "mysql",
}


def resolve_dialect(name: str) -> Dialect:
    dialect = DIALECTS.get(name.lower())
    if dialect is not None:
        return dialect

    supported = ", ".join(SUPPORTED_DIALECTS)
    raise ConfigurationError(f"Unsupported dialect '{name}'. Supported dialects: {supported}.")


def dialect_from_url(url: str) -> Dialect:
    scheme = url.split("://", maxsplit=1)[0].split("+", maxsplit=1)[0].lower() if "://" in url else ""
    name = URL_SCHEMES.get(scheme)
    if name is None:
        raise ConfigurationError(f"Cannot infer dialect from database url scheme '{scheme}'.")
    return DIALECTS[name]
