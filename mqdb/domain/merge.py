from __future__ import annotations

from dataclasses import dataclass, replace
import json

from mqdb.domain.models import Message


def overwrite(existing: Message, incoming: Message) -> Message:
    del existing
    return incoming


@dataclass(frozen=True)
class JsonBitmaskMerge:
    """OR integer flag fields of the stored JSON payload into the incoming one.

    Keys missing from either side are left as the incoming payload has them.
    """

    keys: tuple[str, ...]

    def __init__(self, *keys: str) -> None:
        object.__setattr__(self, "keys", keys)

    def __call__(self, existing: Message, incoming: Message) -> Message:
        old_payload = _json_object(existing.content)
        new_payload = _json_object(incoming.content)
        for key in self.keys:
            old_value = old_payload.get(key)
            new_value = new_payload.get(key)
            if isinstance(old_value, int) and isinstance(new_value, int):
                new_payload[key] = old_value | new_value
        return replace(incoming, content=json.dumps(new_payload))


def _json_object(content: str) -> dict[str, object]:
    if not content:
        return {}
    parsed = json.loads(content)
    if isinstance(parsed, dict):
        return parsed
    return {}
