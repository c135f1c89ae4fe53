import argparse
import asyncio
import json
import sys

import aiohttp


DEFAULT_SERVICE_URL = "http://127.0.0.1:8000"


def build_webhook_payload(receipt_id: str, block_hash: str | None) -> dict:
    actions = {"receipt_id": receipt_id}
    if block_hash is not None:
        actions["block_hash"] = block_hash
    return {"payload": {"Actions": actions}}


async def post_update(session, url: str, payload: dict) -> int:
    endpoint = f"{url.rstrip('/')}/update-staking-pools"
    try:
        async with session.post(endpoint, json=payload) as response:
            text = await response.text()
            print(f"Service responded ({response.status}): {text}")
            return response.status
    except aiohttp.ClientError as e:
        print(f"POST to {endpoint} failed: {e}")
        return 0


async def fetch_pools(session, url: str, account_id: str) -> None:
    endpoint = f"{url.rstrip('/')}/get-staking-pools/{account_id}"
    async with session.get(endpoint) as response:
        print(f"{account_id} ({response.status}): {await response.text()}")


async def main():
    parser = argparse.ArgumentParser(
        description="Ask a running staking pools service to refresh the pool touched by a receipt."
    )
    parser.add_argument("--receipt-id", type=str, required=True, help="Receipt id (base58)")
    parser.add_argument("--block-hash", type=str, default=None, help="Block hash the receipt executed in")
    parser.add_argument("--url", type=str, default=DEFAULT_SERVICE_URL, help="Service base URL")
    parser.add_argument(
        "--account-id",
        type=str,
        default=None,
        help="Delegator account to look up after the trigger was accepted",
    )
    args = parser.parse_args()

    payload = build_webhook_payload(args.receipt_id, args.block_hash)
    print(f"Webhook payload: {json.dumps(payload, indent=2)}")

    async with aiohttp.ClientSession() as session:
        status = await post_update(session, args.url, payload)
        if status != 200:
            sys.exit(1)
        if args.account_id:
            await fetch_pools(session, args.url, args.account_id)


if __name__ == "__main__":
    asyncio.run(main())
