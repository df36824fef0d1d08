"""Client facade: one registry, one poll engine, one wallet gateway per process."""

import asyncio
from datetime import timedelta
from typing import Generic

from xmrpay.common.config import CommonSettings, settings as default_settings
from xmrpay.common.logging import logger
from xmrpay.services.tracker.errors import PaymentNotFound
from xmrpay.services.tracker.models import BulkPollReport, T, XMRPayment
from xmrpay.services.tracker.poller import PollEngine
from xmrpay.services.tracker.registry import PaymentRegistry
from xmrpay.services.wallet_rpc.service import RpcError, WalletRpcGateway


class XMRClient(Generic[T]):
    """Caller-facing verbs over the shared tracker state."""

    def __init__(self, gateway, settings: CommonSettings = default_settings) -> None:
        self.settings = settings
        self.gateway = gateway
        self.registry: PaymentRegistry[T] = PaymentRegistry(
            gateway,
            required_confirmations=settings.required_confirmations,
            allocation_attempts=settings.allocation_attempts,
            service_name=settings.service_name,
        )
        self.poller: PollEngine[T] = PollEngine(
            self.registry,
            gateway,
            timeout=settings.rpc_timeout_seconds,
            service_name=settings.service_name,
        )

    @classmethod
    def from_settings(cls, settings: CommonSettings = default_settings) -> "XMRClient":
        gateway = WalletRpcGateway(
            settings.wallet_rpc_url,
            username=settings.wallet_rpc_username,
            password=settings.wallet_rpc_password,
            timeout=settings.rpc_timeout_seconds,
        )
        return cls(gateway, settings)

    @property
    def current_height(self) -> int:
        return self.registry.current_height

    async def start(self) -> None:
        """Handshake with the wallet: open the configured wallet file and read the chain height."""

        if self.settings.wallet_file:
            logger.info("opening_wallet file=%s", self.settings.wallet_file)
            await self.gateway.open_wallet(self.settings.wallet_file, self.settings.wallet_password)
        await self.refresh_height()
        logger.info("tracker_started height=%s", self.current_height)

    async def refresh_height(self) -> int:
        height = await asyncio.wait_for(self.gateway.get_height(), timeout=self.settings.rpc_timeout_seconds)
        # Never move the cached height backwards on a lagging daemon answer.
        self.registry.current_height = max(self.registry.current_height, height)
        return self.registry.current_height

    async def allocate(self, extra: T | None = None, amount_requested: int | None = None) -> tuple[str, str]:
        return await self.registry.allocate(extra, amount_requested)

    def get_status(self, payment_id: str) -> XMRPayment[T]:
        """Snapshot of a record as last observed; never polls the wallet."""

        record = self.registry.get(payment_id)
        if record is None:
            raise PaymentNotFound(payment_id)
        return record

    async def poll_one(self, payment_id: str, timeout: float | None = None) -> XMRPayment[T]:
        return await self.poller.poll_one(payment_id, timeout=timeout)

    def enqueue(self, payment_id: str) -> None:
        self.poller.enqueue(payment_id)

    async def poll_all(self, timeout: float | None = None) -> BulkPollReport:
        return await self.poller.poll_all(timeout=timeout)

    def update_extra(self, payment_id: str, extra: T | None) -> XMRPayment[T]:
        return self.registry.update_extra(payment_id, extra)

    def evict(self, payment_id: str) -> XMRPayment[T]:
        record = self.registry.evict(payment_id)
        if record is None:
            raise PaymentNotFound(payment_id)
        return record

    def sweep_expired(self, evict: bool = False) -> list[str]:
        """Expire records past the configured age or block window."""

        return self.registry.sweep_expired(
            ttl=timedelta(seconds=self.settings.payment_ttl_seconds),
            current_height=self.current_height or None,
            ttl_blocks=self.settings.payment_ttl_blocks,
            evict=evict,
        )

    async def run_forever(self, interval: float | None = None) -> None:
        """Background maintenance: refresh height, drain the pending set, expire stale records."""

        interval = self.settings.poll_interval_seconds if interval is None else interval
        while True:
            try:
                await self.refresh_height()
            except (RpcError, asyncio.TimeoutError) as exc:
                logger.warning("height_refresh_failed error=%s", exc)
            try:
                await self.poll_all()
                self.sweep_expired()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("poll_loop_error error=%s", exc)
            await asyncio.sleep(interval)

    async def close(self) -> None:
        await self.gateway.close()
