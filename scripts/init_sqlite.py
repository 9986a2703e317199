#!/usr/bin/env python3
"""Create or upgrade the match database, then report its schema and row counts.

Safe to run against a database that already holds player statistics: the
base schema is `IF NOT EXISTS` and the match migration is additive.

    python scripts/init_sqlite.py [db_path]
"""
import asyncio
import sys
from pathlib import Path

# Add project root to Python path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from db import connect, get_database_stats, verify_schema
from db.migrations import MigrationError
from services.runtime import prepare_database


async def init_db(db_path: str) -> int:
    try:
        await prepare_database(db_path)
    except MigrationError as e:
        print(f"[INIT] ✗ Error: {e}", file=sys.stderr)
        return 1

    conn = await connect(db_path)
    try:
        ok, errors = await verify_schema(conn)
        if not ok:
            for error in errors:
                print(f"[INIT] ✗ {error}", file=sys.stderr)
            return 1
        stats = await get_database_stats(conn)
    finally:
        await conn.close()

    print(f"[INIT] ✓ Database at {db_path} is ready")
    for name, value in stats.items():
        print(f"[INIT]   {name}: {value}")
    return 0


if __name__ == "__main__":
    db_path = sys.argv[1] if len(sys.argv) > 1 else config.DB_PATH
    sys.exit(asyncio.run(init_db(db_path)))
