"""
Deploy-time step for the portal: migrate, verify, seed.

  python scripts/release.py              # alembic upgrade head + ADMIN seed
  python scripts/release.py --skip-seed  # migrations only

DATABASE_URL is mandatory here; an ENV of prod/production refuses sqlite.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine, inspect

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

REQUIRED_TABLES = ("accounts", "issues", "audit_events")


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for a release.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Production releases need a Postgres DATABASE_URL, not sqlite.")
    return db_url


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def missing_tables(db_url: str) -> list[str]:
    engine = create_engine(db_url, future=True)
    try:
        insp = inspect(engine)
        return [t for t in REQUIRED_TABLES if not insp.has_table(t)]
    finally:
        engine.dispose()


def run_release(*, seed: bool = True) -> None:
    db_url = _database_url()

    print("Applying migrations...", flush=True)
    migrate(db_url)
    missing = missing_tables(db_url)
    if missing:
        raise RuntimeError(f"Schema incomplete after upgrade; missing tables: {', '.join(missing)}")
    print("Schema at head.", flush=True)

    if seed:
        from scripts import init_db

        admin = init_db.seed_only(database_url=db_url)
        print(f"ADMIN account ready: {admin.email}", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run portal release steps.")
    parser.add_argument("--skip-seed", action="store_true", help="only apply migrations")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
