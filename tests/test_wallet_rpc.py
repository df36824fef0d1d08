"""JSON-RPC gateway parsing and failure mapping against a mock transport."""

import json

import httpx
import pytest

from xmrpay.services.wallet_rpc.models import normalize_payment_id, piconero_to_xmr, xmr_to_piconero
from xmrpay.services.wallet_rpc.service import RpcRejected, RpcUnreachable, WalletRpcGateway


def gateway_for(handler) -> WalletRpcGateway:
    return WalletRpcGateway("http://wallet.test:38082/", transport=httpx.MockTransport(handler))


def rpc_result(request: httpx.Request, result: dict) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.mark.asyncio
async def test_make_integrated_address():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return rpc_result(request, {"integrated_address": "5Abc", "payment_id": "4435A6473CDC78BD"})

    gateway = gateway_for(handler)
    minted = await gateway.make_integrated_address()
    await gateway.close()

    assert minted.address == "5Abc"
    assert minted.payment_id == "4435a6473cdc78bd"
    assert seen[0]["method"] == "make_integrated_address"
    assert seen[0]["jsonrpc"] == "2.0"


@pytest.mark.asyncio
async def test_get_transfers_parses_confirmed_and_pool():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return rpc_result(
            request,
            {
                "in": [
                    {"payment_id": "AAAAAAAAAAAAAAAA", "amount": 300, "confirmations": 2, "height": 1020, "txid": "b"},
                    {"payment_id": "aaaaaaaaaaaaaaaa", "amount": 700, "confirmations": 9, "height": 1013, "txid": "a"},
                ],
                "pool": [{"payment_id": "bbbbbbbbbbbbbbbb", "amount": 5, "height": 0, "txid": "c"}],
            },
        )

    gateway = gateway_for(handler)
    transfers = await gateway.get_transfers(1000)
    await gateway.close()

    assert [t.txid for t in transfers] == ["a", "b", "c"]
    assert transfers[1].payment_id == "aaaaaaaaaaaaaaaa"
    assert transfers[2].in_pool and transfers[2].confirmations == 0
    params = seen[0]["params"]
    assert params["in"] and params["pool"]
    assert params["filter_by_height"] is True
    assert params["min_height"] == 1000


@pytest.mark.asyncio
async def test_get_transfers_empty_result():
    gateway = gateway_for(lambda request: rpc_result(request, {}))
    assert await gateway.get_transfers() == []
    await gateway.close()


@pytest.mark.asyncio
async def test_get_height():
    gateway = gateway_for(lambda request: rpc_result(request, {"height": 1799376}))
    assert await gateway.get_height() == 1799376
    await gateway.close()


@pytest.mark.asyncio
async def test_json_rpc_error_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": "1", "error": {"code": -13, "message": "No wallet file"}})

    gateway = gateway_for(handler)
    with pytest.raises(RpcRejected, match="No wallet file"):
        await gateway.make_integrated_address()
    await gateway.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("status,expected", [(500, RpcUnreachable), (503, RpcUnreachable), (401, RpcRejected)])
async def test_http_status_mapping(status, expected):
    gateway = gateway_for(lambda request: httpx.Response(status, text="nope"))
    with pytest.raises(expected):
        await gateway.get_transfers()
    await gateway.close()


@pytest.mark.asyncio
async def test_transport_failure_is_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = gateway_for(handler)
    with pytest.raises(RpcUnreachable):
        await gateway.get_height()
    await gateway.close()


@pytest.mark.asyncio
async def test_malformed_transfer_is_rejected():
    gateway = gateway_for(lambda request: rpc_result(request, {"in": [{"payment_id": "aaaaaaaaaaaaaaaa"}]}))
    with pytest.raises(RpcRejected):
        await gateway.get_transfers()
    await gateway.close()


def test_payment_id_normalization():
    assert normalize_payment_id(" 4435A6473CDC78BD ") == "4435a6473cdc78bd"
    with pytest.raises(ValueError):
        normalize_payment_id("4435a6473cdc78")
    with pytest.raises(ValueError):
        normalize_payment_id("zz35a6473cdc78bd")


def test_xmr_conversion():
    assert xmr_to_piconero("0.001") == 1_000_000_000
    assert str(piconero_to_xmr(1_500_000_000_000)) == "1.5"
    with pytest.raises(ValueError):
        xmr_to_piconero("0.0000000000001")
