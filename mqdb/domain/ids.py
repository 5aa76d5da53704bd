from __future__ import annotations

import importlib

ulid_module = importlib.import_module("ulid")


def new_message_id() -> str:
    return ulid_module.new().str


def new_pending_token() -> str:
    # Must stay unique across every outstanding claim: fetch selects by token alone.
    return ulid_module.new().str
