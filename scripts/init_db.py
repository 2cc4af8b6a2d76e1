import os
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import Account, Base, Role  # noqa: E402
from app.portal.validation import normalize_email  # noqa: E402


@contextmanager
def _session_scope(database_url: str, *, create_tables: bool = False):
    engine = create_engine(database_url, future=True)
    if create_tables:
        Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None, create_tables: bool = False) -> Account:
    """
    Seed the ADMIN account in an idempotent way.
    Does NOT overwrite an existing admin's password; reactivates and promotes it if needed.
    """
    admin_email = normalize_email(os.environ.get("ADMIN_EMAIL") or "admin@portal.local")
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()

    with _session_scope(db_url, create_tables=create_tables) as s:
        admin = s.execute(select(Account).where(Account.email == admin_email)).scalar_one_or_none()
        now = datetime.utcnow()
        if not admin:
            admin = Account(
                name=admin_name,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                role=Role.ADMIN,
                created_at=now,
                updated_at=now,
            )
            s.add(admin)
        elif admin.role != Role.ADMIN or admin.deleted_at is not None:
            admin.role = Role.ADMIN
            admin.deleted_at = None
            admin.updated_at = now

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    return admin


def main() -> None:
    seed_only(database_url=None, create_tables="--create-tables" in sys.argv)


if __name__ == "__main__":
    main()
