import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from formdesk.core.config import settings

POOL_SIZE = int(os.environ.get('DB_POOL_SIZE','10'))
MAX_OVERFLOW = int(os.environ.get('DB_MAX_OVERFLOW','20'))


def _engine_kwargs(dsn: str) -> dict:
    # SQLite (local runs / tests): one shared connection, no pool sizing.
    if dsn.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": 30,
    }


engine = create_engine(settings.MYSQL_DSN, **_engine_kwargs(settings.MYSQL_DSN))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
