"""Seed script for the statutory bracket tables.

Run with:
    python scripts/seed_brackets.py
    python scripts/seed_brackets.py --create-tables

This stores the built-in bracket table sets in statutory_bracket_version so
the API can calculate runs.
"""

from __future__ import annotations

import argparse
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.constants import DEFAULT_BRACKET_TABLES
from payroll_run_engine.config import get_settings
from payroll_run_engine.database import dispose_db, get_session, init_db
from payroll_run_engine.models import Base, StatutoryBracketVersion
from payroll_run_engine.providers.bracket_tables import table_set_to_row


async def create_tables() -> None:
    engine, _ = init_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Created tables")


async def seed_bracket_tables(session: AsyncSession, country_code: str) -> int:
    """Insert the default bracket table sets that are not stored yet."""
    created = 0
    for table_set in DEFAULT_BRACKET_TABLES:
        result = await session.execute(
            select(StatutoryBracketVersion).where(
                StatutoryBracketVersion.country_code == country_code,
                StatutoryBracketVersion.version == table_set.version,
            )
        )
        if result.scalar_one_or_none() is not None:
            print(f"Bracket tables {table_set.version} already present")
            continue
        session.add(table_set_to_row(table_set, country_code))
        created += 1
        print(f"Created bracket tables {table_set.version} (from {table_set.effective_start})")
    await session.flush()
    return created


async def main(create: bool) -> None:
    """Run seed script."""
    settings = get_settings()
    if create:
        await create_tables()

    print("Seeding bracket tables...")
    async with get_session() as session:
        created = await seed_bracket_tables(session, settings.default_country_code)

    await dispose_db()
    print(f"\nDone! {created} bracket table set(s) seeded.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--create-tables", action="store_true", help="create the schema first")
    args = parser.parse_args()
    asyncio.run(main(args.create_tables))
