from __future__ import annotations

import enum
import json
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base, utcnow


class SheetSyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    # form has a sheet but this response has no row pointer to update
    SKIPPED = "skipped"


ANONYMOUS = {"id": "Anonymous", "name": "Anonymous", "email": "Anonymous"}


class FormResponse(Base):
    __tablename__ = "form_responses"
    # one response per user per form; also the guard for concurrent submits
    __table_args__ = (UniqueConstraint("form_id", "user_id", name="uq_form_responses_form_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    # {question_id: value}; keys checked against the form's questions at validation time
    answers_json: Mapped[str] = mapped_column(Text, default="{}")

    # 1-based row in the external sheet, set after a successful append.
    # NULL means "never synced": edits skip the sheet instead of appending.
    google_sheet_row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sheet_sync_status: Mapped[SheetSyncStatus] = mapped_column(
        Enum(SheetSyncStatus), default=SheetSyncStatus.PENDING, index=True
    )
    sheet_sync_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sheet_sync_attempts: Mapped[int] = mapped_column(Integer, default=0)

    # respondent snapshot at submit time
    user_metadata_json: Mapped[str] = mapped_column(Text, default=lambda: json.dumps(ANONYMOUS))

    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    form = relationship("Form")
    user = relationship("User")

    @property
    def answers(self) -> dict:
        try:
            data = json.loads(self.answers_json or "{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @answers.setter
    def answers(self, value: dict) -> None:
        self.answers_json = json.dumps(value or {}, ensure_ascii=False)

    @property
    def user_metadata(self) -> dict:
        try:
            data = json.loads(self.user_metadata_json or "{}")
        except ValueError:
            data = {}
        return {**ANONYMOUS, **(data if isinstance(data, dict) else {})}

    @user_metadata.setter
    def user_metadata(self, value: dict) -> None:
        self.user_metadata_json = json.dumps({**ANONYMOUS, **(value or {})}, ensure_ascii=False)
