import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import psycopg

from backend.app.config.env import get_db_url, get_log_level, load_env


logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  filename TEXT PRIMARY KEY,
  applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def pending_migrations(conn: psycopg.Connection, migrations_dir: Path) -> List[Path]:
    """SQL files in ``migrations_dir`` not yet recorded in ``schema_migrations``, in name order."""
    with conn.cursor() as cur:
        cur.execute(_LEDGER_DDL)
        cur.execute("SELECT filename FROM schema_migrations")
        applied = {name for (name,) in cur.fetchall()}
    conn.commit()
    return [p for p in sorted(migrations_dir.glob("*.sql")) if p.is_file() and p.name not in applied]


def migrate(
    database_url: Optional[str] = None,
    migrations_dir: Path = MIGRATIONS_DIR,
    dry_run: bool = False,
) -> List[str]:
    """Apply pending migrations, each in its own transaction. Returns the applied file names."""
    if not migrations_dir.exists():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")
    load_env()
    database_url = database_url or get_db_url()

    applied: List[str] = []
    with psycopg.connect(database_url) as conn:
        pending = pending_migrations(conn, migrations_dir)
        if not pending:
            logger.info("Schema is up to date")
        for path in pending:
            if dry_run:
                logger.info("Would apply %s", path.name)
                continue
            with conn.transaction(), conn.cursor() as cur:
                cur.execute(path.read_text(encoding="utf-8"))
                cur.execute("INSERT INTO schema_migrations (filename) VALUES (%s)", (path.name,))
            logger.info("Applied %s", path.name)
            applied.append(path.name)
    return applied


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Apply facility metrics schema migrations")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations without applying them")
    args = parser.parse_args(argv)

    logging.basicConfig(level=get_log_level())
    try:
        migrate(args.database_url, dry_run=args.dry_run)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 2
    except psycopg.OperationalError as exc:
        logger.error("Database connection failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
