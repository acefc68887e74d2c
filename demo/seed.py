#!/usr/bin/env python3
"""
Demo seed script — issues and activates sample cards through the API.

!! NOT FOR PRODUCTION !!
This script drives a locally running server with fake customers. It is
intended ONLY for local demos.

Usage:
    # With the API server running on localhost:8000:
    python demo/seed.py

    # Reset the database first (server must be restarted afterwards):
    python demo/seed.py --reset

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

What it shows:
  - Issuing VIRTUAL + PHYSICAL cards for approved proposals
  - Repeating a request with the same Idempotency-Key (replay, HTTP 200)
  - Activating cards through the APP and OTP channels
  - A consumed issuance request rejected for a low credit score
  - The outbox entries waiting for (or delivered by) the dispatcher
"""

import argparse
import asyncio
import os
import random
import sys
import uuid

import httpx

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo customers
# ---------------------------------------------------------------------------

CUSTOMERS = [
    {"name": "Alice Chen", "product_code": "VISA_GOLD", "limit_cents": 5_000_00,
     "delivery": {"physical": True, "virtual": True}, "card_count": 2, "credit_score": 780},
    {"name": "Bob Martinez", "product_code": "MASTERCARD_PLATINUM", "limit_cents": 12_000_00,
     "delivery": {"physical": False, "virtual": True}, "card_count": 1, "credit_score": 690},
    {"name": "Carol Nguyen", "product_code": "VISA_PLATINUM", "limit_cents": 8_500_00,
     "delivery": {"physical": True, "virtual": False}, "card_count": 2, "credit_score": 640},
    {"name": "Dave Johnson", "product_code": "MASTERCARD_GOLD", "limit_cents": 1_500_00,
     "delivery": {"physical": True, "virtual": True}, "card_count": 1, "credit_score": 520},
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def cents_to_dollars(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def issuance_body(customer: dict) -> dict:
    return {
        "customer_id": str(customer["customer_id"]),
        "proposal_id": str(uuid.uuid4()),
        "account_id": str(uuid.uuid4()),
        "product_code": customer["product_code"],
        "card_count": customer["card_count"],
        "credit_limit_cents": customer["limit_cents"],
        "delivery": customer["delivery"],
        "correlation_id": f"demo-{uuid.uuid4().hex[:12]}",
    }


async def issue_cards(client: httpx.AsyncClient, body: dict, idempotency_key: str) -> httpx.Response:
    resp = await client.post(
        f"{BASE_URL}/cards/issue",
        json=body,
        headers={"Idempotency-Key": idempotency_key},
    )
    resp.raise_for_status()
    return resp


async def activate(client: httpx.AsyncClient, card_id: str, channel: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/cards/{card_id}/activate",
        json={
            "credential": str(random.randint(100000, 999999)),
            "channel": channel,
            "correlation_id": f"demo-{uuid.uuid4().hex[:12]}",
        },
    )
    return resp.json()


async def consume_issuance_request(client: httpx.AsyncClient, customer: dict) -> dict:
    body = issuance_body(customer)
    event = {
        "customerId": body["customer_id"],
        "proposalId": body["proposal_id"],
        "accountId": body["account_id"],
        "productCode": body["product_code"],
        "cardCount": body["card_count"],
        "creditLimitCents": body["credit_limit_cents"],
        "delivery": body["delivery"],
        "correlationId": body["correlation_id"],
        "idempotencyKey": f"evt-{uuid.uuid4()}",
        "creditScore": customer["credit_score"],
    }
    resp = await client.post(f"{BASE_URL}/events/card-issuance-requested", json=event)
    resp.raise_for_status()
    return resp.json()


async def outbox_summary() -> dict[str, dict[str, int]]:
    """Count outbox entries per topic, straight from the database."""
    from sqlalchemy import func, select
    from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
    from card_issuer.config import settings
    from card_issuer.models.outbox import OutboxEntry

    engine = create_async_engine(settings.DATABASE_URL)
    session_factory = async_sessionmaker(engine, class_=AsyncSession)

    summary: dict[str, dict[str, int]] = {}
    async with session_factory() as session:
        result = await session.execute(
            select(OutboxEntry.topic, OutboxEntry.sent_at.is_(None), func.count())
            .group_by(OutboxEntry.topic, OutboxEntry.sent_at.is_(None))
        )
        for topic, pending, count in result.all():
            counts = summary.setdefault(topic, {"pending": 0, "sent": 0})
            counts["pending" if pending else "sent"] += count

    await engine.dispose()
    return summary


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed(base_url: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=30.0) as client:
        # Health check
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn card_issuer.main:app --reload\n")
            sys.exit(1)

        issued: list[dict] = []

        # --- Direct issuance ---
        for customer in CUSTOMERS[:3]:
            customer["customer_id"] = uuid.uuid4()
            print(f"Issuing cards for {customer['name']}...")
            body = issuance_body(customer)
            key = f"demo-{uuid.uuid4()}"

            resp = await issue_cards(client, body, key)
            for card in resp.json()["cards"]:
                log(f"{card['card_class']:<8s} {card['pan_token']}  exp {card['expiry']}  "
                    f"limit {cents_to_dollars(customer['limit_cents'])}")
                issued.append(card)

            # Same key again: nothing new is issued
            replay = await issue_cards(client, body, key)
            log(f"Retry with the same key -> HTTP {replay.status_code}, "
                f"replayed={replay.json()['replayed']}")

        # --- Activation ---
        print("\nActivating cards...")
        for index, card in enumerate(issued):
            if index % 2:
                continue
            channel = "APP" if index % 4 == 0 else "OTP"
            result = await activate(client, card["card_id"], channel)
            log(f"{card['card_id']} -> {result.get('status', result.get('detail'))} via {channel}")

        masked = await client.get(f"{BASE_URL}/cards/{issued[0]['card_id']}")
        log(f"Masked lookup: {masked.json()['masked_number']}")

        # --- Consumed issuance requests ---
        print("\nConsuming issuance request events...")
        for customer in CUSTOMERS[2:]:
            customer["customer_id"] = uuid.uuid4()
            outcome = await consume_issuance_request(client, customer)
            detail = outcome.get("reason") or f"{len(outcome['cardIds'])} card(s)"
            log(f"{customer['name']} (score {customer['credit_score']}): "
                f"{outcome['outcome']} — {detail}")

    # --- Outbox ---
    print("\nOutbox entries (the dispatcher publishes pending ones every poll interval):")
    for topic, counts in sorted((await outbox_summary()).items()):
        log(f"{topic:<22s} pending={counts['pending']}  sent={counts['sent']}")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "cards.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate tables, then run this script again.\n")
        sys.exit(0)
    print(f"\n  No database found at {db_path}\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Issue demo cards against a running server")
    parser.add_argument("--base-url", default=BASE_URL, help="API server URL")
    parser.add_argument("--reset", action="store_true", help="Delete the SQLite database and exit")
    args = parser.parse_args()

    if args.reset:
        reset_database()
    asyncio.run(seed(args.base_url))
