"""JSON-RPC client for the Monero wallet daemon.

This is a pure I/O boundary: it owns no tracker state and never retries. Every
failure is mapped onto `RpcUnreachable` (the daemon could not be reached or
answered with a server error) or `RpcRejected` (the daemon refused the call or
answered with something we cannot parse) and propagated to the caller.
"""

import time
from itertools import count
from typing import Any

import httpx
from pydantic import ValidationError

from xmrpay.common.logging import logger
from xmrpay.common.metrics import rpc_request_duration_seconds, rpc_requests_total
from xmrpay.services.wallet_rpc.models import IntegratedAddress, ObservedTransfer


class RpcError(Exception):
    """Base class for wallet RPC failures."""

    code = "RPC_ERROR"


class RpcUnreachable(RpcError):
    code = "UNREACHABLE"


class RpcRejected(RpcError):
    code = "REJECTED"


class WalletRpcGateway:
    """Thin async client over `monero-wallet-rpc`'s `/json_rpc` endpoint."""

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        auth = httpx.DigestAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=auth,
            timeout=timeout,
            transport=transport,
        )
        self._ids = count(1)

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        body = {"jsonrpc": "2.0", "id": str(next(self._ids)), "method": method}
        if params is not None:
            body["params"] = params
        start = time.perf_counter()
        outcome = "ok"
        try:
            try:
                resp = await self._client.post("/json_rpc", json=body)
            except httpx.TransportError as exc:
                outcome = "unreachable"
                raise RpcUnreachable(f"{method}: {exc.__class__.__name__}: {exc}") from exc
            if resp.status_code >= 500:
                outcome = "unreachable"
                raise RpcUnreachable(f"{method}: daemon answered HTTP {resp.status_code}")
            if resp.status_code >= 400:
                outcome = "rejected"
                raise RpcRejected(f"{method}: daemon answered HTTP {resp.status_code}")
            try:
                payload = resp.json()
            except ValueError as exc:
                outcome = "rejected"
                raise RpcRejected(f"{method}: response is not JSON") from exc
            if not isinstance(payload, dict):
                outcome = "rejected"
                raise RpcRejected(f"{method}: unexpected response shape")
            error = payload.get("error")
            if error:
                outcome = "rejected"
                message = error.get("message", error) if isinstance(error, dict) else error
                raise RpcRejected(f"{method}: {message}")
            result = payload.get("result")
            if not isinstance(result, dict):
                outcome = "rejected"
                raise RpcRejected(f"{method}: response has no result")
            return result
        finally:
            rpc_request_duration_seconds.labels(method=method).observe(max(0.0, time.perf_counter() - start))
            rpc_requests_total.labels(method=method, outcome=outcome).inc()
            if outcome != "ok":
                logger.warning("wallet_rpc_failed method=%s outcome=%s", method, outcome)

    async def open_wallet(self, filename: str, password: str | None = None) -> None:
        await self._call("open_wallet", {"filename": filename, "password": password or ""})

    async def get_height(self) -> int:
        result = await self._call("get_height")
        try:
            return int(result["height"])
        except (KeyError, TypeError, ValueError) as exc:
            raise RpcRejected("get_height: missing height") from exc

    async def make_integrated_address(self) -> IntegratedAddress:
        """Mint a new integrated address with a random payment id."""

        result = await self._call("make_integrated_address", {})
        try:
            return IntegratedAddress(address=result["integrated_address"], payment_id=result["payment_id"])
        except (KeyError, ValidationError) as exc:
            raise RpcRejected(f"make_integrated_address: malformed result: {exc}") from exc

    async def get_transfers(self, since_height: int = 0) -> list[ObservedTransfer]:
        """Return incoming transfers (confirmed and in the pool) above `since_height`.

        Confirmed transfers come first, ordered by height; pool transfers last.
        """

        result = await self._call(
            "get_transfers",
            {
                "in": True,
                "pool": True,
                "filter_by_height": since_height > 0,
                "min_height": max(0, since_height),
            },
        )
        transfers: list[ObservedTransfer] = []
        try:
            for entry in sorted(result.get("in", []), key=lambda item: item.get("height", 0)):
                transfers.append(_parse_transfer(entry, in_pool=False))
            for entry in result.get("pool", []):
                transfers.append(_parse_transfer(entry, in_pool=True))
        except (AttributeError, KeyError, TypeError, ValidationError) as exc:
            raise RpcRejected(f"get_transfers: malformed entry: {exc}") from exc
        return transfers

    async def close(self) -> None:
        await self._client.aclose()


def _parse_transfer(entry: dict[str, Any], in_pool: bool) -> ObservedTransfer:
    return ObservedTransfer(
        payment_id=str(entry.get("payment_id", "")).lower(),
        amount=entry["amount"],
        confirmations=0 if in_pool else entry.get("confirmations", 0),
        height=entry.get("height", 0),
        txid=entry.get("txid", ""),
        in_pool=in_pool,
    )
