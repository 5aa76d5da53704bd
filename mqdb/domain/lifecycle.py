from __future__ import annotations

from enum import StrEnum

from mqdb.domain.errors import LogicError, RangeError
from mqdb.domain.models import DeleteMask, Status


class DeliveryPolicy(StrEnum):
    AT_LEAST_ONCE = "at_least_once"
    AT_MOST_ONCE = "at_most_once"


ALLOWED_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.IN_QUEUE: frozenset({Status.ACK_PENDING}),
    Status.ACK_PENDING: frozenset(
        {
            Status.ACK_RECEIVED,
            Status.NACK_RECEIVED,
            Status.IN_QUEUE,
            Status.ACK_NOT_RECEIVED,
        }
    ),
    # Terminal until explicitly reset or deleted by maintenance.
    Status.ACK_RECEIVED: frozenset(),
    Status.NACK_RECEIVED: frozenset(),
    Status.ACK_NOT_RECEIVED: frozenset(),
}

TERMINAL_STATUSES: frozenset[Status] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

INITIAL_STATUS = Status.IN_QUEUE

DELETE_MASK_STATUSES: tuple[tuple[DeleteMask, Status], ...] = (
    (DeleteMask.ACK_RECEIVED, Status.ACK_RECEIVED),
    (DeleteMask.NACK_RECEIVED, Status.NACK_RECEIVED),
    (DeleteMask.ACK_NOT_RECEIVED, Status.ACK_NOT_RECEIVED),
    (DeleteMask.ACK_PENDING, Status.ACK_PENDING),
)

# Where a claim that outlived its interval goes, per delivery guarantee.
PENDING_TIMEOUT_TARGETS: dict[DeliveryPolicy, Status] = {
    DeliveryPolicy.AT_LEAST_ONCE: Status.IN_QUEUE,
    DeliveryPolicy.AT_MOST_ONCE: Status.ACK_NOT_RECEIVED,
}


def statuses_for_mask(mask: int) -> tuple[Status, ...]:
    statuses = tuple(status for flag, status in DELETE_MASK_STATUSES if mask & flag == flag)
    if not statuses:
        raise RangeError(f"delete mask {mask:#x} selects no status")
    return statuses


def nack_status(*, requeue: bool) -> Status:
    return Status.IN_QUEUE if requeue else Status.NACK_RECEIVED


def ensure_transition(*, from_status: Status, to_status: Status) -> None:
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
        raise LogicError(f"invalid transition: {from_status.name} -> {to_status.name}")
