"""Legal reservation status transitions."""

from __future__ import annotations

from enum import Enum

from backend.domain.errors import InvalidStateTransitionError
from backend.domain.models import ReservationStatus


class TransitionTrigger(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    AUTO_REJECT = "auto_reject"
    USER_CANCEL = "user_cancel"
    ADMIN_CANCEL = "admin_cancel"
    EXPIRE = "expire"


_TRANSITIONS: dict[TransitionTrigger, tuple[frozenset[ReservationStatus], ReservationStatus]] = {
    TransitionTrigger.APPROVE: (
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.CONFIRMED,
    ),
    TransitionTrigger.REJECT: (
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.CANCELLED,
    ),
    TransitionTrigger.AUTO_REJECT: (
        frozenset({ReservationStatus.PENDING}),
        ReservationStatus.CANCELLED,
    ),
    TransitionTrigger.USER_CANCEL: (
        frozenset({ReservationStatus.CONFIRMED}),
        ReservationStatus.CANCELLED,
    ),
    TransitionTrigger.ADMIN_CANCEL: (
        frozenset({ReservationStatus.CONFIRMED}),
        ReservationStatus.CANCELLED,
    ),
    TransitionTrigger.EXPIRE: (
        frozenset({ReservationStatus.CONFIRMED}),
        ReservationStatus.FINALIZED,
    ),
}

_VERBS = {
    TransitionTrigger.APPROVE: "approve",
    TransitionTrigger.REJECT: "reject",
    TransitionTrigger.AUTO_REJECT: "auto-reject",
    TransitionTrigger.USER_CANCEL: "cancel",
    TransitionTrigger.ADMIN_CANCEL: "cancel",
    TransitionTrigger.EXPIRE: "finalize",
}


def initial_status(requires_approval: bool) -> ReservationStatus:
    return ReservationStatus.PENDING if requires_approval else ReservationStatus.CONFIRMED


def next_status(current: ReservationStatus, trigger: TransitionTrigger) -> ReservationStatus:
    """Return the target status or raise if the trigger is illegal from ``current``."""
    sources, target = _TRANSITIONS[trigger]
    if current not in sources:
        raise InvalidStateTransitionError(
            f"Cannot {_VERBS[trigger]} a reservation with status: {current.value}",
            current=current.value,
            trigger=trigger.value,
        )
    return target
