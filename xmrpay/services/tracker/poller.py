"""Decides when and how to ask the wallet for chain data.

Two paths exist: `poll_one` queries immediately for a single id, while
`enqueue` + `poll_all` defer ids into a pending set and cover the whole set
with one `get_transfers` call whose result is partitioned locally by payment
id. Gateway calls are bounded by a timeout and never retried here; failed ids
from a bulk poll are put back into the pending set for the next drain.
"""

import asyncio
import threading
from collections import defaultdict
from collections.abc import Iterable
from typing import Generic

from xmrpay.common.config import settings
from xmrpay.common.logging import logger, payment_id_ctx
from xmrpay.common.metrics import bulk_poll_batch_size, pending_poll_queue_size, poll_failures_total
from xmrpay.common.tracing import tracer
from xmrpay.services.tracker.errors import PaymentNotFound, PollError, PollRejected, PollUnreachable
from xmrpay.services.tracker.models import BulkPollReport, T, XMRPayment, utcnow
from xmrpay.services.tracker.registry import PaymentRegistry
from xmrpay.services.wallet_rpc.models import ObservedTransfer
from xmrpay.services.wallet_rpc.service import RpcRejected, RpcUnreachable


def aggregate_transfers(
    transfers: Iterable[ObservedTransfer], required_confirmations: int = 0
) -> tuple[int, int, int]:
    """Collapse one payment id's transfers into (amount, depth of newest, confirmed amount).

    The confirmed amount sums the transfers at least `required_confirmations` deep,
    so a fresh top-up does not hide funds that are already buried.
    A txid seen both in the pool and in a block counts once, with the block view.
    """

    by_txid: dict[str, ObservedTransfer] = {}
    anonymous: list[ObservedTransfer] = []
    for transfer in transfers:
        if not transfer.txid:
            anonymous.append(transfer)
            continue
        seen = by_txid.get(transfer.txid)
        if seen is None or (seen.in_pool and not transfer.in_pool):
            by_txid[transfer.txid] = transfer
    unique = list(by_txid.values()) + anonymous
    if not unique:
        return 0, 0, 0
    amount = sum(transfer.amount for transfer in unique)
    depth = min(0 if transfer.in_pool else transfer.confirmations for transfer in unique)
    confirmed = sum(
        transfer.amount
        for transfer in unique
        if (0 if transfer.in_pool else transfer.confirmations) >= required_confirmations
    )
    return amount, depth, confirmed


class PollEngine(Generic[T]):
    """Routes wallet observations into the registry, singly or in batches."""

    def __init__(
        self,
        registry: PaymentRegistry[T],
        gateway,
        timeout: float = settings.rpc_timeout_seconds,
        service_name: str = settings.service_name,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.timeout = timeout
        self.service_name = service_name
        self._pending: set[str] = set()
        self._pending_lock = threading.Lock()

    def pending_ids(self) -> set[str]:
        with self._pending_lock:
            return set(self._pending)

    def _publish_queue_depth(self) -> None:
        pending_poll_queue_size.labels(service=self.service_name).set(len(self._pending))

    def enqueue(self, payment_id: str) -> None:
        """Schedule an id for the next `poll_all`. Enqueuing twice is a no-op."""

        record = self.registry.require(payment_id)
        with self._pending_lock:
            self._pending.add(record.payment_id)
            self._publish_queue_depth()

    def _requeue(self, payment_ids: Iterable[str]) -> None:
        with self._pending_lock:
            self._pending.update(payment_ids)
            self._publish_queue_depth()

    def _drain(self) -> set[str]:
        with self._pending_lock:
            drained, self._pending = self._pending, set()
            self._publish_queue_depth()
        return drained

    async def _fetch_transfers(self, since_height: int, timeout: float | None) -> list[ObservedTransfer]:
        try:
            return await asyncio.wait_for(
                self.gateway.get_transfers(since_height),
                timeout=self.timeout if timeout is None else timeout,
            )
        except asyncio.TimeoutError as exc:
            raise PollUnreachable("wallet query timed out") from exc
        except RpcUnreachable as exc:
            raise PollUnreachable(f"wallet unreachable: {exc}") from exc
        except RpcRejected as exc:
            raise PollRejected(f"wallet rejected query: {exc}") from exc

    async def poll_one(self, payment_id: str, timeout: float | None = None) -> XMRPayment[T]:
        """Query the wallet for one id right now and return the updated record."""

        record = self.registry.require(payment_id)
        token = payment_id_ctx.set(record.payment_id)
        try:
            try:
                transfers = await self._fetch_transfers(_since(record.created_height), timeout)
            except PollError as exc:
                poll_failures_total.labels(service=self.service_name, mode="single", code=exc.code).inc()
                logger.warning("poll_one_failed payment_id=%s code=%s error=%s", record.payment_id, exc.code, exc)
                raise
            amount, depth, confirmed = aggregate_transfers(
                _relevant(transfers, record), self.registry.required_confirmations
            )
            # Raises PaymentNotFound when evicted while the query was in flight.
            self.registry.apply_observation(record.payment_id, amount, depth, confirmed)
            return self.registry.require(record.payment_id)
        finally:
            payment_id_ctx.reset(token)

    async def poll_all(self, timeout: float | None = None) -> BulkPollReport:
        """Drain the pending set and resolve every drained id with one wallet query.

        Ids enqueued while this runs land in the next drain. A failed query puts
        every drained id back; an id evicted since it was enqueued is reported
        as `NOT_FOUND` and dropped.
        """

        report = BulkPollReport()
        drained = self._drain()
        report.drained = sorted(drained)
        bulk_poll_batch_size.labels(service=self.service_name).observe(len(drained))
        if not drained:
            report.finished_at = utcnow()
            return report

        with tracer.start_as_current_span("poll_all") as span:
            span.set_attribute("xmrpay.batch_size", len(drained))
            records: dict[str, XMRPayment[T]] = {}
            for payment_id in report.drained:
                record = self.registry.get(payment_id)
                if record is None:
                    report.errors[payment_id] = PaymentNotFound.code
                    continue
                records[payment_id] = record

            if records:
                since_height = _since(min(record.created_height for record in records.values()))
                report.rpc_calls += 1
                try:
                    transfers = await self._fetch_transfers(since_height, timeout)
                except PollError as exc:
                    for payment_id in records:
                        report.errors[payment_id] = exc.code
                    report.requeued = sorted(records)
                    self._requeue(records)
                    poll_failures_total.labels(service=self.service_name, mode="bulk", code=exc.code).inc(len(records))
                    logger.warning(
                        "poll_all_failed drained=%s requeued=%s code=%s error=%s",
                        len(drained),
                        len(records),
                        exc.code,
                        exc,
                    )
                else:
                    self._apply_batch(records, transfers, report)

        report.finished_at = utcnow()
        logger.info("poll_all_finished summary=%s", report.summary())
        return report

    def _apply_batch(
        self,
        records: dict[str, XMRPayment[T]],
        transfers: list[ObservedTransfer],
        report: BulkPollReport,
    ) -> None:
        by_payment_id: dict[str, list[ObservedTransfer]] = defaultdict(list)
        for transfer in transfers:
            if transfer.payment_id in records:
                by_payment_id[transfer.payment_id].append(transfer)

        for payment_id, record in records.items():
            amount, depth, confirmed = aggregate_transfers(
                _relevant(by_payment_id.get(payment_id, []), record), self.registry.required_confirmations
            )
            try:
                change = self.registry.apply_observation(payment_id, amount, depth, confirmed)
            except PaymentNotFound:
                report.errors[payment_id] = PaymentNotFound.code
                continue
            report.statuses[payment_id] = change.to_status


def _since(created_height: int) -> int:
    # `min_height` is exclusive on the wallet side.
    return max(0, created_height - 1)


def _relevant(transfers: Iterable[ObservedTransfer], record: XMRPayment) -> list[ObservedTransfer]:
    """Transfers to the record's payment id mined at or after its creation, plus pool entries."""

    return [
        transfer
        for transfer in transfers
        if transfer.payment_id == record.payment_id
        and (transfer.in_pool or transfer.height >= record.created_height)
    ]
