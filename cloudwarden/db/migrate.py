"""
Schema migrations for ``cloudwarden/db/migrations/*.sql``.

Usage:
    python -m cloudwarden.db.migrate status
    python -m cloudwarden.db.migrate apply [--dry-run]

Plain SQL files applied in version order, one transaction each, recorded in
``schema_migrations`` with a SHA-256 checksum so edited files show as drift.
"""

from __future__ import annotations

import hashlib
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path

from psycopg2.extras import RealDictCursor

from cloudwarden.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_FILENAME_RE = re.compile(r"^(\d{3})_[\w-]+\.sql$")


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


def discover(migrations_dir: Path | None = None) -> list[Migration]:
    found = []
    for path in sorted((migrations_dir or MIGRATIONS_DIR).glob("*.sql")):
        match = _FILENAME_RE.match(path.name)
        if match:
            found.append(Migration(match.group(1), path))
    return found


def _recorded(conn) -> dict[str, str | None]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version     TEXT PRIMARY KEY,
                filename    TEXT NOT NULL,
                checksum    TEXT,
                applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        cur.execute("SELECT version, checksum FROM schema_migrations")
        return {r["version"]: r["checksum"] for r in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[tuple[str, str, str]]:
    """(version, filename, state) where state is applied, pending or drift."""
    with get_connection() as conn:
        recorded = _recorded(conn)

    rows = []
    for m in discover(migrations_dir):
        if m.version not in recorded:
            state = "pending"
        elif recorded[m.version] and recorded[m.version] != m.checksum:
            state = "drift"
        else:
            state = "applied"
        rows.append((m.version, m.path.name, state))
    return rows


def apply(migrations_dir: Path | None = None, dry_run: bool = False) -> list[str]:
    """Apply every pending migration. Returns the applied versions."""
    applied: list[str] = []
    with get_connection() as conn:
        recorded = _recorded(conn)
        conn.commit()

        for m in discover(migrations_dir):
            if m.version in recorded:
                continue
            if dry_run:
                logger.info("Would apply %s", m.path.name)
                applied.append(m.version)
                continue
            try:
                with conn.cursor() as cur:
                    cur.execute(m.path.read_text())
                    cur.execute(
                        "INSERT INTO schema_migrations (version, filename, checksum) VALUES (%s, %s, %s)",
                        (m.version, m.path.name, m.checksum),
                    )
                conn.commit()
            except Exception:
                conn.rollback()
                logger.error("Migration %s failed", m.path.name)
                raise
            logger.info("Applied %s", m.path.name)
            applied.append(m.version)
    return applied


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = sys.argv[1:] or ["status"]

    if args[0] == "status":
        for version, filename, state in status():
            print(f"{version:<8} {filename:<40} {state}")
    elif args[0] == "apply":
        versions = apply(dry_run="--dry-run" in args)
        if not versions:
            print("Nothing to apply.")
    else:
        print("Usage: python -m cloudwarden.db.migrate [status|apply [--dry-run]]", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
