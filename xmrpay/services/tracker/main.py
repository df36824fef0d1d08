"""Tracker API + background poll loop lifecycle.

Exposes the client facade over HTTP and drains the pending poll set on a
fixed interval while the app is running.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from time import perf_counter
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response

from xmrpay.common.config import settings
from xmrpay.common.logging import configure_logging, logger, trace_id_ctx
from xmrpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from xmrpay.common.startup import log_startup_config
from xmrpay.common.tracing import instrument_app, setup_tracing
from xmrpay.services.tracker.errors import AllocationError, PaymentNotFound, PollRejected, PollUnreachable
from xmrpay.services.tracker.schemas import AllocateRequest, AllocateResponse, ExtraUpdate
from xmrpay.services.tracker.service import XMRClient
from xmrpay.services.wallet_rpc.service import RpcError

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "WALLET_RPC_URL",
        "WALLET_RPC_USERNAME",
        "WALLET_RPC_PASSWORD",
        "WALLET_FILE",
        "REQUIRED_CONFIRMATIONS",
        "POLL_INTERVAL_SECONDS",
    ],
)
client: XMRClient = XMRClient.from_settings(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Handshake with the wallet and run the poll loop with app lifecycle."""

    try:
        await client.start()
    except (RpcError, asyncio.TimeoutError) as exc:
        # The poll loop keeps retrying the height read.
        logger.error("wallet_handshake_failed error=%s", exc)
    poll_task = asyncio.create_task(client.run_forever())
    yield
    poll_task.cancel()
    with suppress(asyncio.CancelledError):
        await poll_task
    await client.close()


app = FastAPI(title="xmrpay Tracker", lifespan=lifespan)
instrument_app(app)


def get_client() -> XMRClient:
    return client


def enforce_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests without the configured API key; open when none is configured."""

    if settings.api_key and x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency, and bind the correlation id for logs."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    token = trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        trace_id_ctx.reset(token)
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def _not_found(exc: PaymentNotFound) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


@app.post("/payments", response_model=AllocateResponse, dependencies=[Depends(enforce_api_key)])
async def allocate_payment(req: AllocateRequest, xmr: XMRClient = Depends(get_client)):
    """Hand out a fresh integrated address and start tracking it."""

    try:
        amount = req.piconero()
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    try:
        payment_id, address = await xmr.allocate(req.extra, amount)
    except AllocationError as exc:
        logger.error("allocate endpoint failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AllocateResponse(payment_id=payment_id, address=address)


@app.post("/payments/poll-all", dependencies=[Depends(enforce_api_key)])
async def poll_all(xmr: XMRClient = Depends(get_client)):
    """Drain the pending set now instead of waiting for the loop."""

    return (await xmr.poll_all()).model_dump(mode="json")


@app.get("/payments/{payment_id}", dependencies=[Depends(enforce_api_key)])
def get_status(payment_id: str, xmr: XMRClient = Depends(get_client)):
    try:
        return xmr.get_status(payment_id).model_dump(mode="json")
    except PaymentNotFound as exc:
        raise _not_found(exc) from exc


@app.post("/payments/{payment_id}/poll", dependencies=[Depends(enforce_api_key)])
async def poll_payment(payment_id: str, xmr: XMRClient = Depends(get_client)):
    """Query the wallet for this payment immediately."""

    try:
        record = await xmr.poll_one(payment_id)
    except PaymentNotFound as exc:
        raise _not_found(exc) from exc
    except PollUnreachable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except PollRejected as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return record.model_dump(mode="json")


@app.post("/payments/{payment_id}/enqueue", status_code=202, dependencies=[Depends(enforce_api_key)])
def enqueue_payment(payment_id: str, xmr: XMRClient = Depends(get_client)):
    try:
        xmr.enqueue(payment_id)
    except PaymentNotFound as exc:
        raise _not_found(exc) from exc
    return {"queued": payment_id.strip().lower()}


@app.patch("/payments/{payment_id}/extra", dependencies=[Depends(enforce_api_key)])
def update_extra(payment_id: str, body: ExtraUpdate, xmr: XMRClient = Depends(get_client)):
    try:
        return xmr.update_extra(payment_id, body.extra).model_dump(mode="json")
    except PaymentNotFound as exc:
        raise _not_found(exc) from exc


@app.delete("/payments/{payment_id}", status_code=204, dependencies=[Depends(enforce_api_key)])
def evict_payment(payment_id: str, xmr: XMRClient = Depends(get_client)):
    try:
        xmr.evict(payment_id)
    except PaymentNotFound as exc:
        raise _not_found(exc) from exc
    return Response(status_code=204)


@app.get("/health")
def health(xmr: XMRClient = Depends(get_client)):
    """Container health probe endpoint."""

    return {"ok": True, "height": xmr.current_height, "pending": len(xmr.poller.pending_ids())}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
