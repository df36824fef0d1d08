"""Payment status transitions enforced by the registry."""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"


ALLOWED_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PARTIALLY_RECEIVED,
        PaymentStatus.CONFIRMED,
        PaymentStatus.EXPIRED,
    },
    PaymentStatus.PARTIALLY_RECEIVED: {
        PaymentStatus.PARTIALLY_RECEIVED,
        PaymentStatus.CONFIRMED,
        PaymentStatus.EXPIRED,
    },
    PaymentStatus.CONFIRMED: set(),
    PaymentStatus.EXPIRED: set(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current.value} -> {new.value}")
