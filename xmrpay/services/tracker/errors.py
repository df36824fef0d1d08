"""Tracker error taxonomy.

None of these are fatal to the process; each one is scoped to a single call or
to a single payment id inside a bulk poll.
"""


class TrackerError(Exception):
    code = "TRACKER_ERROR"


class AllocationError(TrackerError):
    """The wallet could not mint a fresh integrated address."""

    code = "ALLOCATION_FAILED"


class PollError(TrackerError):
    code = "POLL_FAILED"


class PaymentNotFound(PollError, LookupError):
    """An operation referenced a payment id the registry does not hold."""

    code = "NOT_FOUND"

    def __init__(self, payment_id: str) -> None:
        super().__init__(f"unknown payment id {payment_id}")
        self.payment_id = payment_id


class PollUnreachable(PollError):
    code = "UNREACHABLE"


class PollRejected(PollError):
    code = "REJECTED"
