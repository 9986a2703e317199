"""Database package helpers.

Expose connection, initialization and migration helpers so callers can
import from `db` directly (e.g. `from db import ensure_db, migrate_ai_matches`).
"""

from .connections import connect, init_db, ensure_db
from .migrations import (
    MigrationError,
    create_ai_matches_table,
    extend_stats_table,
    migrate_ai_matches,
    verify_schema,
    get_database_stats,
)

__all__ = [
    "connect",
    "init_db",
    "ensure_db",
    "MigrationError",
    "create_ai_matches_table",
    "extend_stats_table",
    "migrate_ai_matches",
    "verify_schema",
    "get_database_stats",
]
