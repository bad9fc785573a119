#!/usr/bin/env python3
"""
Database Migration — Create the job mirror table from SQLAlchemy models.

Usage:
    python scripts/migrate_db.py

    # Check status only (no changes):
    python scripts/migrate_db.py --check
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run_migration(check_only: bool = False):
    from config.settings import load_settings
    load_settings()

    from sqlalchemy import inspect as sa_inspect

    from database.session import get_engine, close_db
    from database.models import Base

    engine = get_engine()
    print(f"Database: {engine.dialect.name}")
    print(f"URL: {str(engine.url).split('@')[-1]}")

    async with engine.connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: sa_inspect(sync_conn).get_table_names())

    missing = set(Base.metadata.tables.keys()) - set(existing)
    if check_only:
        print(f"Tables defined: {', '.join(Base.metadata.tables.keys())}")
        print(f"Tables existing: {', '.join(existing) or '(none)'}")
        if missing:
            print(f"Tables MISSING: {', '.join(sorted(missing))}")
            print("Run without --check to create them.")
        else:
            print("All tables exist.")
        await close_db()
        return

    print("Running database migration...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print(f"Tables created: {', '.join(sorted(missing)) or '(none)'}")

    await close_db()
    print("Migration complete.")


def main():
    parser = argparse.ArgumentParser(description="Database migration")
    parser.add_argument("--check", action="store_true", help="Check status only")
    args = parser.parse_args()

    asyncio.run(run_migration(check_only=args.check))


if __name__ == "__main__":
    main()
