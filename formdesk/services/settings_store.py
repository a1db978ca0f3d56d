from __future__ import annotations

import json
import logging
import math

from fastapi import Depends
from redis import RedisError
from sqlalchemy.orm import Session

from formdesk.core.config import settings
from formdesk.core.errors import ValidationError
from formdesk.core.redis import get_redis
from formdesk.db.models.system_settings import SystemSettings
from formdesk.db.session import get_db
from formdesk.utils.dates import iso

logger = logging.getLogger("formdesk.settings")

SETTINGS_ID = 1
_CACHE_KEY = "system_settings"


def serialize_settings(s: SystemSettings) -> dict:
    return {
        "id": s.id,
        "heartbeat_window": float(s.heartbeat_window),
        "createdAt": iso(s.created_at),
        "updatedAt": iso(s.updated_at),
    }


def validate_heartbeat_window(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("heartbeat_window must be a positive number")
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("heartbeat_window must be a positive number")
    return float(value)


class SettingsStore:
    """Singleton system settings with get-or-create-default semantics.

    Reads may be served from a short-lived Redis copy; a stale value within
    SETTINGS_CACHE_TTL_SECONDS is acceptable. The database stays the source of
    truth and concurrent updates are last-writer-wins.
    """

    def __init__(self, db: Session):
        self.db = db

    def _load(self) -> SystemSettings:
        s = self.db.get(SystemSettings, SETTINGS_ID)
        if s is None:
            s = SystemSettings(id=SETTINGS_ID, heartbeat_window=settings.DEFAULT_HEARTBEAT_WINDOW_HOURS)
            self.db.add(s)
            self.db.commit()
            logger.info("Created default system settings (heartbeat_window=%s)", s.heartbeat_window)
        return s

    def get(self) -> dict:
        r = get_redis()
        if r is not None:
            try:
                cached = r.get(_CACHE_KEY)
                if cached is not None:
                    return json.loads(cached)
            except (RedisError, ValueError):
                pass

        data = serialize_settings(self._load())

        if r is not None:
            try:
                r.setex(_CACHE_KEY, settings.SETTINGS_CACHE_TTL_SECONDS, json.dumps(data))
            except RedisError:
                pass
        return data

    def heartbeat_window_hours(self) -> float:
        return float(self.get()["heartbeat_window"])

    def update(self, heartbeat_window=None) -> dict:
        s = self._load()
        if heartbeat_window is not None:
            s.heartbeat_window = validate_heartbeat_window(heartbeat_window)
        self.db.commit()
        self.invalidate()
        return serialize_settings(s)

    @staticmethod
    def invalidate() -> None:
        r = get_redis()
        if r is None:
            return
        try:
            r.delete(_CACHE_KEY)
        except RedisError:
            pass


def get_settings_store(db: Session = Depends(get_db)) -> SettingsStore:
    return SettingsStore(db)
