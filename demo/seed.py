#!/usr/bin/env python3
"""
Demo seed script — populates a running API with sample users and transfers.

!! NOT FOR PRODUCTION !!
This script creates test users with known passwords and random transfer
history. It is intended ONLY for local demos and frontend development.

Usage:
    # With the API server running on localhost:8000:
    python demo/seed.py

    # Also fire a burst of concurrent transfers from one account:
    python demo/seed.py --burst 50

    # Check the ledger (balances vs. transaction log) directly in the DB:
    python demo/seed.py --verify

    # Reset the database and re-seed:
    python demo/seed.py --reset

Login credentials after seeding:
    ┌──────────────────────────────┬───────────────────┐
    │ Email                        │ Password          │
    ├──────────────────────────────┼───────────────────┤
    │ alice.chen@example.com       │ AliceDemo123!     │
    │ bob.martinez@example.com     │ BobDemo123!       │
    │ carol.nguyen@example.com     │ CarolDemo123!     │
    │ dave.johnson@example.com     │ DaveDemo123!      │
    │ erin.patel@example.com       │ ErinDemo123!      │
    └──────────────────────────────┴───────────────────┘
"""

import argparse
import asyncio
import os
import random
import sys
import uuid

import httpx

BASE_URL = "http://localhost:8000"
API = "/api/v1"

USERS = [
    {"email": "alice.chen@example.com", "password": "AliceDemo123!",
     "first_name": "Alice", "last_name": "Chen"},
    {"email": "bob.martinez@example.com", "password": "BobDemo123!",
     "first_name": "Bob", "last_name": "Martinez"},
    {"email": "carol.nguyen@example.com", "password": "CarolDemo123!",
     "first_name": "Carol", "last_name": "Nguyen"},
    {"email": "dave.johnson@example.com", "password": "DaveDemo123!",
     "first_name": "Dave", "last_name": "Johnson"},
    {"email": "erin.patel@example.com", "password": "ErinDemo123!",
     "first_name": "Erin", "last_name": "Patel"},
]

DESCRIPTIONS = [
    "Dinner split", "Rent share", "Concert tickets", "Coffee", "Groceries",
    "Birthday gift", "Taxi", "Utilities", "Movie night", "Book club",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def cents_to_dollars(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def signup_or_signin(client: httpx.AsyncClient, user: dict) -> dict:
    """Sign up a user (or sign in if already registered); return token and account id."""
    resp = await client.post(f"{BASE_URL}{API}/user/signup", json=user)
    if resp.status_code == 409:
        resp = await client.post(
            f"{BASE_URL}{API}/user/signin",
            json={"email": user["email"], "password": user["password"]},
        )
    resp.raise_for_status()
    data = resp.json()
    return {"token": data["token"], "account_id": data["account_id"]}


async def send(client: httpx.AsyncClient, token: str, to: str,
               amount_cents: int, description: str) -> httpx.Response:
    # A fresh key per logical transfer makes network retries safe
    return await client.post(
        f"{BASE_URL}{API}/account/transfer",
        json={"to": to, "amount_cents": amount_cents, "description": description},
        headers={**auth_header(token), "Idempotency-Key": uuid.uuid4().hex},
    )


async def get_balance(client: httpx.AsyncClient, token: str) -> int:
    resp = await client.get(f"{BASE_URL}{API}/account/balance", headers=auth_header(token))
    resp.raise_for_status()
    return resp.json()["balance_cents"]


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed(base_url: str, transfers: int, burst: int) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn wallet.main:app --reload\n")
            sys.exit(1)

        print("Creating users...")
        people = []
        for user in USERS:
            session = await signup_or_signin(client, user)
            session["name"] = f"{user['first_name']} {user['last_name']}"
            people.append(session)
            log(f"{session['name']}: {user['email']} / {user['password']}")

        print(f"\nSending {transfers} random transfers...")
        outcomes: dict[str, int] = {}
        for _ in range(transfers):
            sender, receiver = random.sample(people, 2)
            resp = await send(
                client, sender["token"], receiver["account_id"],
                random.randint(1_00, 150_00), random.choice(DESCRIPTIONS),
            )
            key = "completed" if resp.is_success else resp.json().get("error_type", "error")
            outcomes[key] = outcomes.get(key, 0) + 1
        for outcome, count in sorted(outcomes.items()):
            log(f"{outcome}: {count}")

        if burst:
            # Everyone-to-one stampede from a single sender: no overdraft allowed
            sender = people[0]
            balance = await get_balance(client, sender["token"])
            amount = max(1, balance // max(1, burst // 2))
            print(f"\nBurst: {burst} concurrent transfers of {cents_to_dollars(amount)} "
                  f"from {sender['name']} (balance {cents_to_dollars(balance)})...")
            responses = await asyncio.gather(*(
                send(client, sender["token"], random.choice(people[1:])["account_id"],
                     amount, "Burst test")
                for _ in range(burst)
            ))
            ok = sum(1 for r in responses if r.is_success)
            log(f"succeeded: {ok}, rejected: {burst - ok}")
            log(f"{sender['name']} balance now {cents_to_dollars(await get_balance(client, sender['token']))}")

        print("\nBalances:")
        total = 0
        for person in people:
            balance = await get_balance(client, person["token"])
            total += balance
            log(f"{person['name']:<16s} {cents_to_dollars(balance):>12s}")
        log(f"{'Total':<16s} {cents_to_dollars(total):>12s}")
    print()


async def verify() -> None:
    """Run the ledger integrity check directly against DATABASE_URL."""
    sys.path.insert(0, os.path.normpath(os.path.join(os.path.dirname(__file__), "..")))
    from wallet.config import settings
    from wallet.database import Database
    from wallet.services.statement_service import verify_ledger

    database = Database(settings.DATABASE_URL)
    try:
        async with database.session() as session:
            report = await verify_ledger(session)
    finally:
        await database.dispose()

    print("\n  Ledger check")
    log(f"Total balance:         {cents_to_dollars(report['total_balance_cents'])}")
    log(f"Total opening balance: {cents_to_dollars(report['total_initial_balance_cents'])}")
    log(f"Mismatched accounts:   {report['mismatched_accounts'] or 'none'}")
    log("CONSISTENT" if report["consistent"] else "INCONSISTENT")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "wallet.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates sample users and transfers for demos.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--transfers", type=int, default=40,
        help="Number of random sequential transfers (default: 40)",
    )
    parser.add_argument(
        "--burst", type=int, default=0,
        help="Also fire this many concurrent transfers from one account",
    )
    parser.add_argument(
        "--verify", action="store_true",
        help="Run the ledger integrity check against the database and exit",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the database file and exit (restart server to recreate)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return
    if args.verify:
        await verify()
        return

    await seed(args.base_url, args.transfers, args.burst)


if __name__ == "__main__":
    asyncio.run(main())
