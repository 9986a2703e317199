from pathlib import Path
from typing import Dict, Optional
import aiosqlite


async def connect(db_path: str, pragmas: Optional[Dict[str, str]] = None) -> aiosqlite.Connection:
    """Open an aiosqlite connection and apply sensible pragmas.

    - Sets `row_factory` to `aiosqlite.Row` for named access.
    - Enables foreign keys by default.
    - Applies any additional PRAGMA settings supplied in `pragmas`.

    Returns an open connection; caller is responsible for closing it.
    """
    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    # Ensure foreign keys are enabled and apply additional pragmas
    await conn.execute("PRAGMA foreign_keys = ON")
    if pragmas:
        for k, v in pragmas.items():
            await conn.execute(f"PRAGMA {k} = {v}")

    await conn.commit()
    return conn


def split_statements(sql: str) -> list[str]:
    """Strip `--` comments and split a schema file into single statements."""
    statements = []
    current = []
    for line in sql.split('\n'):
        if '--' in line:
            line = line[:line.index('--')]
        line = line.strip()
        if line:
            current.append(line)
            if line.endswith(';'):
                stmt = ' '.join(current).rstrip(';').strip()
                if stmt:
                    statements.append(stmt)
                current = []
    return statements


async def init_db(db_path: str, schema_path: Optional[str] = None) -> None:
    """Initialize a SQLite database file using the provided SQL schema.

    If `schema_path` is not provided this function will look for `schema.sql`
    next to this module (i.e. `db/schema.sql`). Every statement in the schema
    is `IF NOT EXISTS`, so running it against an existing database is safe.
    """
    schema_file = (
        Path(schema_path) if schema_path else Path(__file__).parent / "schema.sql"
    )

    if not schema_file.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_file}")

    conn = await connect(db_path)
    try:
        for statement in split_statements(schema_file.read_text()):
            await conn.execute(statement)
        await conn.commit()
    finally:
        await conn.close()


async def ensure_db(db_path: str, schema_path: Optional[str] = None) -> None:
    """Create the database file if needed and apply the base schema."""
    db_file = Path(db_path)
    # Ensure parent directory exists
    if db_file.parent and not db_file.parent.exists():
        db_file.parent.mkdir(parents=True, exist_ok=True)

    await init_db(db_path, schema_path)
