#!/usr/bin/env python3
"""
Seed Script

Creates a demo company with a year of transactions and marks it active so
the next recurring run warms its analytics.

Usage:
    python scripts/seed.py
    python scripts/seed.py --name "Acme Ltd" --months 14
"""

import argparse
import asyncio
import logging
import random
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from finboard.database import CompanyRepository, Transaction, TransactionType, init_db, session_scope
from finboard.services import build_services
from finboard.utils.config import get_settings
from finboard.utils.dates import shift_months

DEPARTMENTS = ["Sales", "Engineering", "Marketing", "Operations"]
ACTIONS = ["invoice", "payroll", "subscription", "travel", None]


def seed_transactions(session_factory, company_id: str, months: int, rng: random.Random) -> int:
    today = date.today()
    count = 0

    with session_scope(session_factory) as db:
        for offset in range(months):
            month_start = shift_months(date(today.year, today.month, 1), -offset)
            for _ in range(rng.randint(5, 15)):
                tx_type = rng.choice([TransactionType.INCOME, TransactionType.EXPENSE])
                day = min(month_start.replace(day=rng.randint(1, 28)), today)
                db.add(Transaction(
                    name=f"{tx_type.value.title()} {count + 1}",
                    amount=Decimal(rng.randint(50, 5000)),
                    type=tx_type,
                    transaction_date=day,
                    department=rng.choice(DEPARTMENTS + [None]),
                    action=rng.choice(ACTIONS),
                    company_id=company_id,
                    created_by="seed",
                    is_locked=offset > 0,
                ))
                count += 1

    return count


async def run(name: str, months: int, seed: int):
    services = build_services(get_settings())
    init_db(services.db_engine)

    companies = CompanyRepository(services.session_factory)
    company = companies.create(name, departments=DEPARTMENTS)
    count = seed_transactions(services.session_factory, company.id, months, random.Random(seed))

    await services.tracker.track_active_company(company.id)
    await services.close()

    print(f"Seeded company {company.id} ({name}) with {count} transactions")


def main():
    parser = argparse.ArgumentParser(description="Seed demo data")
    parser.add_argument("--name", default="Demo Company")
    parser.add_argument("--months", type=int, default=13)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO, stream=sys.stdout, force=True)
    asyncio.run(run(args.name, args.months, args.seed))


if __name__ == "__main__":
    main()
