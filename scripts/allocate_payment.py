"""Allocate one integrated address through the tracker API and print it."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for handing out a payment address by hand."""

    parser = argparse.ArgumentParser(description="Allocate an integrated address for a new payment.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default=None)
    parser.add_argument("--amount-xmr", default=None, help="Requested amount in XMR, e.g. 0.001")
    parser.add_argument("--extra", default=None, help="JSON object attached to the payment")
    args = parser.parse_args()

    payload = {}
    if args.amount_xmr is not None:
        payload["amount_xmr"] = args.amount_xmr
    if args.extra is not None:
        payload["extra"] = json.loads(args.extra)
    headers = {"x-api-key": args.api_key} if args.api_key else {}

    resp = httpx.post(f"{args.base_url}/payments", json=payload, headers=headers, timeout=10.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
