import pytest

from mqdb.domain.errors import LogicError, RangeError
from mqdb.domain.lifecycle import (
    ALLOWED_TRANSITIONS,
    PENDING_TIMEOUT_TARGETS,
    TERMINAL_STATUSES,
    DeliveryPolicy,
    ensure_transition,
    nack_status,
    statuses_for_mask,
)
from mqdb.domain.models import DeleteMask, Status


@pytest.mark.unit
def test_every_status_has_a_transition_entry() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(Status)
    assert TERMINAL_STATUSES == {Status.ACK_RECEIVED, Status.NACK_RECEIVED, Status.ACK_NOT_RECEIVED}


@pytest.mark.unit
def test_pending_messages_can_be_settled_or_expired() -> None:
    for target in (Status.ACK_RECEIVED, Status.NACK_RECEIVED, Status.IN_QUEUE, Status.ACK_NOT_RECEIVED):
        ensure_transition(from_status=Status.ACK_PENDING, to_status=target)

    with pytest.raises(LogicError):
        ensure_transition(from_status=Status.IN_QUEUE, to_status=Status.ACK_RECEIVED)
    with pytest.raises(LogicError):
        ensure_transition(from_status=Status.ACK_RECEIVED, to_status=Status.IN_QUEUE)


@pytest.mark.unit
def test_nack_status_depends_on_requeue() -> None:
    assert nack_status(requeue=True) is Status.IN_QUEUE
    assert nack_status(requeue=False) is Status.NACK_RECEIVED


@pytest.mark.unit
def test_safe_mask_never_selects_pending_messages() -> None:
    assert statuses_for_mask(DeleteMask.SAFE) == (
        Status.ACK_RECEIVED,
        Status.NACK_RECEIVED,
        Status.ACK_NOT_RECEIVED,
    )
    assert Status.ACK_PENDING in statuses_for_mask(DeleteMask.ALL)
    assert statuses_for_mask(DeleteMask.NACK_RECEIVED | DeleteMask.ACK_PENDING) == (
        Status.NACK_RECEIVED,
        Status.ACK_PENDING,
    )


@pytest.mark.unit
@pytest.mark.parametrize("mask", [0, 16, 0x70])
def test_mask_selecting_nothing_is_rejected(mask: int) -> None:
    with pytest.raises(RangeError):
        statuses_for_mask(mask)


@pytest.mark.unit
def test_delivery_policy_targets() -> None:
    assert PENDING_TIMEOUT_TARGETS[DeliveryPolicy.AT_LEAST_ONCE] is Status.IN_QUEUE
    assert PENDING_TIMEOUT_TARGETS[DeliveryPolicy.AT_MOST_ONCE] is Status.ACK_NOT_RECEIVED
