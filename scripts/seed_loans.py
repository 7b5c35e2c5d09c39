#!/usr/bin/env python3
"""
Insert demo loans in the initial ``new_request`` state for local development.

Usage:
    python scripts/seed_loans.py --count 10
"""

from __future__ import annotations

import argparse
import asyncio
import random
from decimal import Decimal

from app.db.session import AsyncSessionLocal, engine
from app.models.loan import Loan
from app.services.loan_store import SqlLoanStore

CITIES = [
    ("Austin", "TX"),
    ("Denver", "CO"),
    ("Phoenix", "AZ"),
    ("Tampa", "FL"),
    ("Charlotte", "NC"),
]
PROPERTY_TYPES = ["single_family", "multi_family", "condo", "mixed_use"]
TRANSACTION_TYPES = ["purchase", "refinance", "cash_out_refinance"]


def build_loan(index: int, rng: random.Random) -> Loan:
    city, state = rng.choice(CITIES)
    return Loan(
        loan_amount=Decimal(rng.randrange(150_000, 2_500_000, 5_000)),
        property_type=rng.choice(PROPERTY_TYPES),
        transaction_type=rng.choice(TRANSACTION_TYPES),
        property_address=f"{100 + index} Main St",
        property_city=city,
        property_state=state,
        borrower_id=f"demo-borrower-{index:03d}",
        borrower_name=f"Demo Borrower {index}",
    )


async def seed(count: int, seed_value: int) -> None:
    rng = random.Random(seed_value)
    async with AsyncSessionLocal() as session:
        store = SqlLoanStore(session)
        for index in range(1, count + 1):
            loan = await store.insert(build_loan(index, rng))
            print(f"Created {loan.loan_number} ({loan.property_city}, {loan.loan_amount})")
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--count", type=int, default=10)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()
    asyncio.run(seed(args.count, args.seed))


if __name__ == "__main__":
    main()
