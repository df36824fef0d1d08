"""Shared fixtures: an in-memory stand-in for the wallet RPC gateway."""

import asyncio
from collections import Counter

import pytest

from xmrpay.common.config import CommonSettings
from xmrpay.services.tracker.service import XMRClient
from xmrpay.services.wallet_rpc.models import IntegratedAddress, ObservedTransfer


class FakeGateway:
    """Scriptable gateway; records every call it receives."""

    def __init__(self, height: int = 1000) -> None:
        self.height = height
        self.transfers: list[ObservedTransfer] = []
        # Per-call overrides for get_transfers: (delay_seconds, transfers) popped in order.
        self.scripted: list[tuple[float, list[ObservedTransfer]]] = []
        self.payment_ids: list[str] = []
        self.mint_error: Exception | None = None
        self.transfers_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls: Counter = Counter()
        self.since_heights: list[int] = []
        self.opened: tuple[str, str | None] | None = None
        self.closed = False
        self._minted = 0

    async def make_integrated_address(self) -> IntegratedAddress:
        self.calls["make_integrated_address"] += 1
        if self.mint_error is not None:
            raise self.mint_error
        if self.payment_ids:
            payment_id = self.payment_ids.pop(0)
        else:
            self._minted += 1
            payment_id = f"{self._minted:016x}"
        return IntegratedAddress(address=f"5Integrated{payment_id}", payment_id=payment_id)

    async def get_transfers(self, since_height: int = 0) -> list[ObservedTransfer]:
        self.calls["get_transfers"] += 1
        self.since_heights.append(since_height)
        if self.gate is not None:
            await self.gate.wait()
        if self.transfers_error is not None:
            raise self.transfers_error
        if self.scripted:
            delay, transfers = self.scripted.pop(0)
            await asyncio.sleep(delay)
            return list(transfers)
        return list(self.transfers)

    async def get_height(self) -> int:
        self.calls["get_height"] += 1
        return self.height

    async def open_wallet(self, filename: str, password: str | None = None) -> None:
        self.calls["open_wallet"] += 1
        self.opened = (filename, password)

    async def close(self) -> None:
        self.closed = True


def transfer(payment_id: str, amount: int, confirmations: int = 0, height: int = 1001, txid: str = "", in_pool=False):
    return ObservedTransfer(
        payment_id=payment_id,
        amount=amount,
        confirmations=confirmations,
        height=0 if in_pool else height,
        txid=txid or f"tx-{payment_id}-{amount}-{height}",
        in_pool=in_pool,
    )


@pytest.fixture
def tracker_settings() -> CommonSettings:
    return CommonSettings(
        service_name="xmrpay-test",
        required_confirmations=10,
        rpc_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        payment_ttl_seconds=1800,
        payment_ttl_blocks=15,
        allocation_attempts=3,
        wallet_file=None,
        api_key=None,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def xmr_client(gateway: FakeGateway, tracker_settings: CommonSettings) -> XMRClient:
    client = XMRClient(gateway, tracker_settings)
    client.registry.current_height = gateway.height
    return client
