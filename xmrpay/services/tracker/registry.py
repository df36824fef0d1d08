"""Authoritative in-memory map from payment id to payment record.

The registry is the only component that mutates records. All writes happen
under one re-entrant lock and replace the stored snapshot wholesale; the lock
is never held across an await, so allocation talks to the wallet first and
only takes the lock to insert.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Generic

from xmrpay.common.config import settings
from xmrpay.common.logging import logger
from xmrpay.common.metrics import (
    payment_status_transitions_total,
    payments_allocated_total,
    payments_expired_total,
    reorg_anomalies_total,
)
from xmrpay.common.state_machine import PaymentStatus, is_terminal, validate_transition
from xmrpay.services.tracker.errors import AllocationError, PaymentNotFound
from xmrpay.services.tracker.models import StatusChange, T, XMRPayment, utcnow
from xmrpay.services.wallet_rpc.models import normalize_payment_id
from xmrpay.services.wallet_rpc.service import RpcError

REORG_REGRESSION = "REORG_REGRESSION"


class PaymentRegistry(Generic[T]):
    """Owns every `XMRPayment` record; ids are the only external handle."""

    def __init__(
        self,
        gateway,
        required_confirmations: int = settings.required_confirmations,
        allocation_attempts: int = settings.allocation_attempts,
        service_name: str = settings.service_name,
    ) -> None:
        if required_confirmations < 0:
            raise ValueError("required_confirmations must be >= 0")
        self.gateway = gateway
        self.required_confirmations = required_confirmations
        self.allocation_attempts = max(1, allocation_attempts)
        self.service_name = service_name
        self.current_height = 0
        self._records: dict[str, XMRPayment[T]] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, payment_id: object) -> bool:
        if not isinstance(payment_id, str):
            return False
        with self._lock:
            return payment_id.strip().lower() in self._records

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    async def allocate(self, extra: T | None = None, amount_requested: int | None = None) -> tuple[str, str]:
        """Mint an integrated address and start tracking it as `PENDING`.

        The wallet picks payment ids at random; a collision with a tracked id
        is answered by asking for another address, since ids are never reused.
        """

        if amount_requested is not None and (isinstance(amount_requested, bool) or amount_requested <= 0):
            raise ValueError("amount_requested must be a positive piconero amount")

        for attempt in range(1, self.allocation_attempts + 1):
            try:
                minted = await self.gateway.make_integrated_address()
            except RpcError as exc:
                logger.error("allocation_failed attempt=%s error=%s", attempt, exc)
                raise AllocationError(f"wallet could not mint an address: {exc}") from exc

            record = XMRPayment(
                payment_id=minted.payment_id,
                address=minted.address,
                created_height=self.current_height,
                amount_requested=amount_requested,
                extra=extra,
            )
            with self._lock:
                if minted.payment_id not in self._records:
                    self._records[minted.payment_id] = record
                    payments_allocated_total.labels(service=self.service_name).inc()
                    logger.info(
                        "payment_allocated payment_id=%s amount_requested=%s height=%s",
                        minted.payment_id,
                        amount_requested,
                        self.current_height,
                    )
                    return minted.payment_id, minted.address
            logger.warning("payment_id_collision payment_id=%s attempt=%s", minted.payment_id, attempt)

        raise AllocationError(f"no unused payment id after {self.allocation_attempts} attempts")

    def get(self, payment_id: str) -> XMRPayment[T] | None:
        key = _key(payment_id)
        if key is None:
            return None
        with self._lock:
            return self._records.get(key)

    def require(self, payment_id: str) -> XMRPayment[T]:
        record = self.get(payment_id)
        if record is None:
            raise PaymentNotFound(payment_id)
        return record

    def _status_for(self, record: XMRPayment[T], amount: int, amount_confirmed: int) -> PaymentStatus:
        if amount <= 0:
            return PaymentStatus.PENDING
        if amount_confirmed > 0 and (record.amount_requested is None or amount_confirmed >= record.amount_requested):
            return PaymentStatus.CONFIRMED
        return PaymentStatus.PARTIALLY_RECEIVED

    def apply_observation(
        self,
        payment_id: str,
        observed_amount: int,
        observed_confirmations: int,
        observed_amount_confirmed: int | None = None,
    ) -> StatusChange:
        """Fold one completed wallet observation into the record.

        `observed_amount` is the cumulative amount seen for the id,
        `observed_confirmations` the depth of its most recent transfer and
        `observed_amount_confirmed` the part of the amount buried at least
        `required_confirmations` deep. When the latter is omitted, the whole
        amount counts as confirmed if the newest transfer is deep enough;
        otherwise previously confirmed funds stay confirmed.
        """

        if observed_amount < 0 or observed_confirmations < 0:
            raise ValueError("observations must be non-negative")
        if observed_amount_confirmed is not None and not 0 <= observed_amount_confirmed <= observed_amount:
            raise ValueError("confirmed amount must be between 0 and the observed amount")
        key = _key(payment_id)
        with self._lock:
            record = self._records.get(key) if key is not None else None
            if record is None:
                raise PaymentNotFound(payment_id)
            if observed_amount_confirmed is None:
                if observed_confirmations >= self.required_confirmations:
                    observed_amount_confirmed = observed_amount
                else:
                    observed_amount_confirmed = min(record.amount_confirmed, observed_amount)

            if _is_regression(record, observed_amount, observed_confirmations, observed_amount_confirmed):
                anomalies = record.anomalies + 1
                self._records[key] = record.model_copy(update={"anomalies": anomalies})
                reorg_anomalies_total.labels(service=self.service_name).inc()
                logger.warning(
                    "regressive_observation_ignored payment_id=%s stored_amount=%s stored_confirmations=%s "
                    "observed_amount=%s observed_confirmations=%s",
                    key,
                    record.amount_received,
                    record.confirmations,
                    observed_amount,
                    observed_confirmations,
                )
                return _change(record, record.status, applied=False, anomaly=REORG_REGRESSION)

            if record.status == PaymentStatus.CONFIRMED:
                # Terminal: only a deeper confirmation count is recorded.
                if observed_confirmations <= record.confirmations:
                    return _change(record, record.status, applied=False)
                updated = record.model_copy(update={"confirmations": observed_confirmations, "updated_at": utcnow()})
                self._records[key] = updated
                return _change(updated, record.status, applied=True)

            if record.status == PaymentStatus.EXPIRED:
                observed = (observed_amount, observed_confirmations, observed_amount_confirmed)
                if observed == (record.amount_received, record.confirmations, record.amount_confirmed):
                    return _change(record, record.status, applied=False)
                updated = record.model_copy(
                    update={
                        "amount_received": observed_amount,
                        "amount_confirmed": observed_amount_confirmed,
                        "confirmations": observed_confirmations,
                        "updated_at": utcnow(),
                    }
                )
                self._records[key] = updated
                logger.warning(
                    "late_payment payment_id=%s amount_received=%s confirmations=%s",
                    key,
                    observed_amount,
                    observed_confirmations,
                )
                return _change(updated, record.status, applied=True)

            new_status = self._status_for(record, observed_amount, observed_amount_confirmed)
            if new_status != record.status:
                validate_transition(record.status, new_status)
            updated = record.model_copy(
                update={
                    "status": new_status,
                    "amount_received": observed_amount,
                    "amount_confirmed": observed_amount_confirmed,
                    "confirmations": observed_confirmations if observed_amount > 0 else 0,
                    "updated_at": utcnow(),
                }
            )
            self._records[key] = updated

        if new_status != record.status:
            payment_status_transitions_total.labels(
                service=self.service_name,
                from_status=record.status.value,
                to_status=new_status.value,
            ).inc()
            logger.info(
                "payment_status_changed payment_id=%s from=%s to=%s amount_received=%s confirmations=%s",
                key,
                record.status.value,
                new_status.value,
                updated.amount_received,
                updated.confirmations,
            )
        return _change(updated, record.status, applied=True)

    def update_extra(self, payment_id: str, extra: T | None) -> XMRPayment[T]:
        """Replace the caller payload; polling never touches it."""

        key = _key(payment_id)
        with self._lock:
            record = self._records.get(key) if key is not None else None
            if record is None:
                raise PaymentNotFound(payment_id)
            updated = record.model_copy(update={"extra": extra, "updated_at": utcnow()})
            self._records[key] = updated
            return updated

    def evict(self, payment_id: str) -> XMRPayment[T] | None:
        key = _key(payment_id)
        if key is None:
            return None
        with self._lock:
            record = self._records.pop(key, None)
        if record is not None:
            logger.info("payment_evicted payment_id=%s status=%s", key, record.status.value)
        return record

    def sweep_expired(
        self,
        now: datetime | None = None,
        ttl: timedelta | None = None,
        current_height: int | None = None,
        ttl_blocks: int | None = None,
        evict: bool = False,
    ) -> list[str]:
        """Mark non-terminal records older than `ttl` (or `ttl_blocks`) as `EXPIRED`.

        Keys stay in the registry unless `evict` is set. A naive `now` is taken as UTC.
        """

        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        expired: list[str] = []
        with self._lock:
            for key, record in list(self._records.items()):
                if is_terminal(record.status):
                    continue
                too_old = ttl is not None and now - record.created_at > ttl
                # Records allocated before the first height read carry height 0.
                too_deep = (
                    current_height is not None
                    and ttl_blocks is not None
                    and record.created_height > 0
                    and current_height - record.created_height > ttl_blocks
                )
                if not (too_old or too_deep):
                    continue
                validate_transition(record.status, PaymentStatus.EXPIRED)
                self._records[key] = record.model_copy(update={"status": PaymentStatus.EXPIRED, "updated_at": now})
                payment_status_transitions_total.labels(
                    service=self.service_name,
                    from_status=record.status.value,
                    to_status=PaymentStatus.EXPIRED.value,
                ).inc()
                expired.append(key)
            if evict:
                for key in expired:
                    self._records.pop(key, None)
        if expired:
            payments_expired_total.labels(service=self.service_name).inc(len(expired))
            logger.info("payments_expired count=%s evicted=%s", len(expired), evict)
        return expired


def _key(payment_id: str) -> str | None:
    try:
        return normalize_payment_id(payment_id)
    except ValueError:
        return None


def _is_regression(record: XMRPayment, amount: int, confirmations: int, amount_confirmed: int) -> bool:
    if amount < record.amount_received or amount_confirmed < record.amount_confirmed:
        return True
    return amount == record.amount_received and amount > 0 and confirmations < record.confirmations


def _change(record: XMRPayment, from_status: PaymentStatus, applied: bool, anomaly: str | None = None) -> StatusChange:
    return StatusChange(
        payment_id=record.payment_id,
        from_status=from_status,
        to_status=record.status,
        amount_received=record.amount_received,
        amount_confirmed=record.amount_confirmed,
        confirmations=record.confirmations,
        applied=applied,
        anomaly=anomaly,
    )
