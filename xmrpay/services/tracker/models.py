"""In-memory payment records and poll results."""

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from xmrpay.common.state_machine import PaymentStatus

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class XMRPayment(BaseModel, Generic[T]):
    """Immutable snapshot of one tracked payment.

    The registry replaces snapshots wholesale, so a reader always sees status,
    amount and depth from the same observation.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payment_id: str
    address: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    created_height: int = 0
    # Piconero (1e-12 XMR). None means any positive amount is accepted.
    amount_requested: int | None = None
    amount_received: int = 0
    # Part of amount_received buried at least required_confirmations deep.
    amount_confirmed: int = 0
    confirmations: int = 0
    extra: T | None = None
    updated_at: datetime = Field(default_factory=utcnow)
    anomalies: int = 0


class StatusChange(BaseModel):
    """Outcome of applying one observation to a record."""

    payment_id: str
    from_status: PaymentStatus
    to_status: PaymentStatus
    amount_received: int
    amount_confirmed: int = 0
    confirmations: int
    applied: bool
    anomaly: str | None = None

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status


class BulkPollReport(BaseModel):
    """Per-id outcome of one `poll_all` drain."""

    drained: list[str] = Field(default_factory=list)
    statuses: dict[str, PaymentStatus] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
    requeued: list[str] = Field(default_factory=list)
    rpc_calls: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "drained": len(self.drained),
            "ok": len(self.statuses),
            "failed": len(self.errors),
            "requeued": len(self.requeued),
            "rpc_calls": self.rpc_calls,
        }
