"""Async load generator: allocate many payments, enqueue them, then run one bulk poll."""

import argparse
import asyncio
import statistics
import time

import httpx


async def allocate_and_enqueue(client: httpx.AsyncClient, base_url: str, headers: dict, idx: int):
    """Allocate one payment and enqueue it; return (status_code, latency_ms, payment_id)."""

    started = time.perf_counter()
    try:
        resp = await client.post(
            f"{base_url}/payments",
            json={"amount_requested": 1_000_000_000, "extra": {"order": idx}},
            headers=headers,
        )
        if resp.status_code >= 400:
            return resp.status_code, (time.perf_counter() - started) * 1000, None
        payment_id = resp.json()["payment_id"]
        queued = await client.post(f"{base_url}/payments/{payment_id}/enqueue", headers=headers)
        return queued.status_code, (time.perf_counter() - started) * 1000, payment_id
    except httpx.HTTPError:
        return 599, (time.perf_counter() - started) * 1000, None


async def run(total: int, concurrency: int, base_url: str, api_key: str | None):
    """Execute a bounded-concurrency run and print summary stats."""

    sem = asyncio.Semaphore(concurrency)
    headers = {"x-api-key": api_key} if api_key else {}
    results = []

    async with httpx.AsyncClient(timeout=10.0) as client:
        async def worker(i: int):
            async with sem:
                return await allocate_and_enqueue(client, base_url, headers, i)

        tasks = [asyncio.create_task(worker(i)) for i in range(total)]
        for task in asyncio.as_completed(tasks):
            results.append(await task)

        started = time.perf_counter()
        bulk = await client.post(f"{base_url}/payments/poll-all", headers=headers, timeout=60.0)
        bulk_ms = (time.perf_counter() - started) * 1000

    codes = [c for c, _, _ in results]
    lats = [latency for _, latency, _ in results]
    success = sum(1 for c in codes if 200 <= c < 300)
    errors = total - success

    def pct(values, p):
        if not values:
            return 0.0
        idx = min(len(values) - 1, max(0, int((p / 100.0) * len(values)) - 1))
        return sorted(values)[idx]

    print(f"total={total}")
    print(f"success={success}")
    print(f"errors={errors}")
    print(f"p50_ms={pct(lats, 50):.2f}")
    print(f"p95_ms={pct(lats, 95):.2f}")
    print(f"avg_ms={statistics.mean(lats):.2f}")
    print(f"bulk_poll_status={bulk.status_code} bulk_poll_ms={bulk_ms:.2f}")
    if bulk.status_code == 200:
        report = bulk.json()
        print(f"bulk_drained={len(report['drained'])} rpc_calls={report['rpc_calls']} failed={len(report['errors'])}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--total", type=int, default=200)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default=None)
    args = parser.parse_args()
    asyncio.run(run(args.total, args.concurrency, args.base_url, args.api_key))
