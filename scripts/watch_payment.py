"""Poll one payment until it is confirmed, expired, or the deadline passes."""

import argparse
import asyncio
import json

import httpx

TERMINAL = {"CONFIRMED", "EXPIRED"}


async def watch(base_url: str, payment_id: str, api_key: str | None, interval: float, deadline_s: float) -> int:
    """Return 0 once the payment is confirmed, 1 otherwise."""

    headers = {"x-api-key": api_key} if api_key else {}
    loop = asyncio.get_running_loop()
    deadline = loop.time() + deadline_s
    last_status = None
    async with httpx.AsyncClient(timeout=15.0) as client:
        while loop.time() < deadline:
            resp = await client.post(f"{base_url}/payments/{payment_id}/poll", headers=headers)
            if resp.status_code == 404:
                print(f"unknown payment id {payment_id}")
                return 1
            if resp.status_code >= 500:
                print(f"wallet unavailable ({resp.status_code}), retrying")
                await asyncio.sleep(interval)
                continue
            resp.raise_for_status()
            record = resp.json()
            if record["status"] != last_status:
                print(json.dumps(record, indent=2))
                last_status = record["status"]
            if record["status"] in TERMINAL:
                return 0 if record["status"] == "CONFIRMED" else 1
            await asyncio.sleep(interval)
    print(f"deadline reached, last status={last_status}")
    return 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Watch a payment through the tracker API.")
    parser.add_argument("payment_id")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default=None)
    parser.add_argument("--interval", type=float, default=10.0)
    parser.add_argument("--deadline", type=float, default=1800.0)
    args = parser.parse_args()
    raise SystemExit(asyncio.run(watch(args.base_url, args.payment_id, args.api_key, args.interval, args.deadline)))


if __name__ == "__main__":
    main()
