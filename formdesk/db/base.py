from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns store UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
