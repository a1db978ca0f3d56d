from __future__ import annotations

import os
import time
import logging
import subprocess
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from formdesk.core.config import settings
from formdesk.core.logging_setup import configure_logging, prune_error_logs

logger = logging.getLogger("formdesk.migrate")


def wait_for_db(engine, timeout_s: int = 60) -> None:
    """Wait until the database is accepting connections."""
    start = time.time()
    delay = 1.0

    while True:
        try:
            with engine.begin() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError:
            if time.time() - start > timeout_s:
                raise
            logger.info("Database not ready, retrying in %.1fs", delay)
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)


def run(cmd: list[str]) -> int:
    p = subprocess.run(cmd, check=False)
    return p.returncode


def seed_superadmin(db: Session) -> bool:
    """Create the bootstrap SuperAdmin once. Returns True if a user was created."""
    from formdesk.core.security import hash_password
    from formdesk.db.models.user import Role, User, UserStatus

    email = settings.DEFAULT_SUPERADMIN_EMAIL.strip().lower()
    if db.query(User.id).filter(User.email == email).first():
        logger.info("SuperAdmin %s already exists", email)
        return False
    db.add(
        User(
            email=email,
            name=settings.DEFAULT_SUPERADMIN_NAME,
            password_hash=hash_password(settings.DEFAULT_SUPERADMIN_PASSWORD),
            role=Role.SUPERADMIN,
            status=UserStatus.ACTIVE,
        )
    )
    db.commit()
    logger.info("SuperAdmin %s created", email)
    return True


def main() -> int:
    configure_logging()
    dsn = os.getenv("MYSQL_DSN") or settings.MYSQL_DSN
    engine = create_engine(dsn, future=True, pool_pre_ping=True)

    # Wait for DB readiness (important in docker-compose)
    wait_for_db(engine, timeout_s=int(os.getenv("DB_WAIT_TIMEOUT", "90")))

    rc = run(["alembic", "upgrade", "head"])
    if rc != 0:
        logger.error("alembic upgrade failed with exit code %s", rc)
        return rc

    from formdesk.db.session import SessionLocal

    db: Session = SessionLocal()
    try:
        if settings.AUTO_CREATE_SUPERADMIN:
            seed_superadmin(db)
        pruned = prune_error_logs(db)
        if pruned:
            logger.info("Pruned %s error log entries", pruned)
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
