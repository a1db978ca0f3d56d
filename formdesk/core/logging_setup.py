"""Central logging configuration.

A root stdout handler so every `formdesk.*` logger emits without per-module
setup, uvicorn loggers kept visible, and no duplicate handlers on reloads.
Warnings and errors from `formdesk.*` are additionally persisted to the
`error_logs` table unless ERROR_LOG_TO_DB is off.
"""
from __future__ import annotations

import json
import logging
import threading
import traceback
from datetime import timedelta
from logging.config import dictConfig

from sqlalchemy.orm import Session

from formdesk.core.config import settings
from formdesk.db.base import utcnow


def _dict_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s:%(name)s:%(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.error": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
        },
    }


class DatabaseLogHandler(logging.Handler):
    """Writes WARNING+ records to `error_logs` in its own session."""

    _local = threading.local()

    def __init__(self, session_factory, level: int = logging.WARNING):
        super().__init__(level=level)
        self.session_factory = session_factory

    def emit(self, record: logging.LogRecord) -> None:
        # a failing insert may itself log; never recurse into the database
        if getattr(self._local, "busy", False):
            return
        self._local.busy = True
        try:
            from formdesk.db.models.error_log import ErrorLog

            stack = None
            if record.exc_info:
                stack = "".join(traceback.format_exception(*record.exc_info))
            context = getattr(record, "context", None) or {}
            db: Session = self.session_factory()
            try:
                db.add(
                    ErrorLog(
                        level=record.levelname.lower(),
                        logger_name=record.name,
                        message=record.getMessage()[:4000],
                        stack=stack,
                        context_json=json.dumps(context, ensure_ascii=False, default=str),
                    )
                )
                db.commit()
            finally:
                db.close()
        except Exception:
            self.handleError(record)
        finally:
            self._local.busy = False


def configure_logging() -> None:
    """Configure application-wide logging once.

    If the root logger already has handlers, leave it alone to prevent
    duplicate output under reloaders/watchers.
    """
    root = logging.getLogger()
    if not root.handlers:
        dictConfig(_dict_config(settings.LOG_LEVEL.upper()))

    app_logger = logging.getLogger("formdesk")
    if settings.ERROR_LOG_TO_DB and not any(isinstance(h, DatabaseLogHandler) for h in app_logger.handlers):
        from formdesk.db.session import SessionLocal

        app_logger.addHandler(DatabaseLogHandler(SessionLocal))


def prune_error_logs(db: Session, retention_days: int | None = None) -> int:
    from formdesk.db.models.error_log import ErrorLog

    days = settings.ERROR_LOG_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = utcnow() - timedelta(days=days)
    deleted = db.query(ErrorLog).filter(ErrorLog.timestamp < cutoff).delete(synchronize_session=False)
    db.commit()
    return int(deleted or 0)
