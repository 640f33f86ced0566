"""Apply the bundled check-list schema migrations (NNN_name.sql, in order)."""
import argparse
import glob
import logging
import os
import sys

import psycopg2

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "migrations")


def seed_enabled_from_env():
    return os.environ.get("SEED_DATA", "").lower() == "true"


def _ensure_schema_migrations(conn):
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                filename TEXT,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        cur.execute("ALTER TABLE schema_migrations ADD COLUMN IF NOT EXISTS filename TEXT;")
    conn.commit()


def _get_applied(conn):
    with conn.cursor() as cur:
        cur.execute("SELECT version FROM schema_migrations;")
        return {row[0] for row in cur.fetchall()}


def _discover_migrations(migrations_dir=None):
    migrations = []
    for filepath in sorted(glob.glob(os.path.join(migrations_dir or MIGRATIONS_DIR, "*.sql"))):
        filename = os.path.basename(filepath)
        migrations.append((filename.split("_", 1)[0], filename, filepath))
    return migrations


def _is_seed(filename):
    return "seed" in filename.lower()


def _pending_migrations(migrations, applied, seed_enabled):
    pending = []
    for version, filename, filepath in migrations:
        if version in applied:
            logger.debug("Migration %s already applied", filename)
        elif _is_seed(filename) and not seed_enabled:
            logger.info("Skipping resident seed %s (SEED_DATA != true)", filename)
        else:
            pending.append((version, filename, filepath))
    return pending


def describe_status(migrations, applied, seed_enabled):
    """One (filename, state) pair per bundled migration: applied, pending or skipped."""
    pending = {m[0] for m in _pending_migrations(migrations, applied, seed_enabled)}
    status = []
    for version, filename, _path in migrations:
        if version in applied:
            state = "applied"
        elif version in pending:
            state = "pending"
        else:
            state = "skipped"
        status.append((filename, state))
    return status


def _apply(conn, version, filename, filepath):
    with open(filepath, "r", encoding="utf-8") as f:
        sql = f.read()
    try:
        with conn.cursor() as cur:
            cur.execute(sql)
            cur.execute(
                "INSERT INTO schema_migrations (version, filename) VALUES (%s, %s);",
                (version, filename),
            )
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        logger.error("Migration %s failed, rolled back: %s", filename, e)
        raise


def run_migrations(database_url=None, seed_enabled=None, dry_run=False):
    """Apply pending migrations; returns the filenames applied (or due, with ``dry_run``)."""
    if database_url is None:
        database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not set")
    if seed_enabled is None:
        seed_enabled = seed_enabled_from_env()

    conn = psycopg2.connect(database_url)
    try:
        _ensure_schema_migrations(conn)
        migrations = _discover_migrations()
        applied = _get_applied(conn)
        pending = _pending_migrations(migrations, applied, seed_enabled)
        if dry_run:
            for filename, state in describe_status(migrations, applied, seed_enabled):
                logger.info("%-40s %s", filename, state)
            return [m[1] for m in pending]

        for version, filename, filepath in pending:
            logger.info("Applying migration: %s", filename)
            _apply(conn, version, filename, filepath)

        if pending:
            logger.info("Applied %d migration(s)", len(pending))
        else:
            logger.info("Check-list schema is up to date")
        return [m[1] for m in pending]
    finally:
        conn.close()


def main(argv=None):
    ap = argparse.ArgumentParser(description="Apply check-list schema migrations")
    ap.add_argument("--database-url", help="Defaults to $DATABASE_URL")
    ap.add_argument("--seed", action="store_true", help="Also apply resident seed migrations")
    ap.add_argument("--status", action="store_true", help="List migration states without applying")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    try:
        run_migrations(
            database_url=args.database_url,
            seed_enabled=True if args.seed else None,
            dry_run=args.status,
        )
    except (RuntimeError, psycopg2.Error) as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
