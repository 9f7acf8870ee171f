#!/usr/bin/env python3
"""CLI script to create an account with a starter interview configuration.

Usage:
    python scripts/seed_account.py --email founder@example.com --product "Acme Analytics"
    python scripts/seed_account.py --email founder@example.com --product "Acme" --min 2 --max 4 --webhook https://example.com/hook

Connects directly to the database using DATABASE_URL from environment or .env file.
Prints the generated access key; pass it as ``x-api-key`` from the widget.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import sys

# Ensure project root is on sys.path so we can import src.lastword
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

API_KEY_PREFIX = "lw_"


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(24)}"


async def seed(
    email: str,
    product: str,
    description: str,
    min_exchanges: int,
    max_exchanges: int,
    webhook_url: str | None,
) -> None:
    """Insert account, config, and optional webhook endpoint rows."""
    from src.lastword.core.database import get_engine, get_session, init_db
    from src.lastword.interview.config_resolver import clamp_exchanges
    from src.lastword.models.account import Account, InterviewConfig
    from src.lastword.models.notification import NotificationEndpoint

    await init_db()

    lo, hi = clamp_exchanges(min_exchanges, max_exchanges)
    api_key = generate_api_key()
    signing_secret = secrets.token_hex(32) if webhook_url else ""

    async for session in get_session():
        account = Account(email=email, api_key=api_key)
        session.add(account)
        await session.flush()

        session.add(
            InterviewConfig(
                account_id=account.id,
                product_name=product,
                product_description=description,
                min_exchanges=lo,
                max_exchanges=hi,
                retention_paths={"offboard_gracefully": {"enabled": True}},
            )
        )
        if webhook_url:
            session.add(
                NotificationEndpoint(
                    account_id=account.id,
                    name="Default webhook",
                    provider="webhook",
                    target_url=webhook_url,
                    signing_secret=signing_secret,
                )
            )
        await session.commit()
        account_id = account.id

    print("Account created:")
    print(f"  ID:      {account_id}")
    print(f"  Email:   {email}")
    print(f"  API key: {api_key}")
    print(f"  Bounds:  {lo}-{hi} exchanges")
    if webhook_url:
        print(f"  Webhook: {webhook_url}")
        print(f"  Secret:  {signing_secret}")

    engine = get_engine()
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create an account with a starter config")
    parser.add_argument("--email", required=True, help="Account owner email")
    parser.add_argument("--product", required=True, help="Product name used in prompts")
    parser.add_argument("--description", default="", help="One-paragraph product description")
    parser.add_argument("--min", dest="min_exchanges", type=int, default=3, help="Minimum exchanges")
    parser.add_argument("--max", dest="max_exchanges", type=int, default=5, help="Maximum exchanges")
    parser.add_argument("--webhook", default=None, help="Optional realtime webhook URL")
    args = parser.parse_args()

    asyncio.run(
        seed(
            args.email,
            args.product,
            args.description,
            args.min_exchanges,
            args.max_exchanges,
            args.webhook,
        )
    )


if __name__ == "__main__":
    main()
