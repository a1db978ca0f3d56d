from __future__ import annotations

import enum
import json
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base, utcnow


class FormStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    ARCHIVED = "archived"
    # soft delete: the row stays, every listing/access path filters it out
    DELETED = "deleted"


class QuestionType(str, enum.Enum):
    SHORT_ANSWER = "short_answer"
    PARAGRAPH = "paragraph"
    MULTIPLE_CHOICE = "multiple_choice"
    CHECKBOXES = "checkboxes"
    DROPDOWN = "dropdown"
    DATE = "date"
    TIME = "time"


CHOICE_TYPES = (QuestionType.MULTIPLE_CHOICE, QuestionType.CHECKBOXES, QuestionType.DROPDOWN)


class Form(Base):
    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(Text, default="")

    # ordered list of question dicts (see utils.schema.normalize_questions)
    questions_json: Mapped[str] = mapped_column(Text, default="[]")

    status: Mapped[FormStatus] = mapped_column(Enum(FormStatus), index=True, default=FormStatus.DRAFT)
    allow_edit_response: Mapped[bool] = mapped_column(Boolean, default=False)
    google_sheet_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    redirect_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    response_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    creator = relationship("User")

    @property
    def questions(self) -> list[dict]:
        try:
            data = json.loads(self.questions_json or "[]")
        except ValueError:
            return []
        return data if isinstance(data, list) else []

    @questions.setter
    def questions(self, value: list[dict]) -> None:
        self.questions_json = json.dumps(value or [], ensure_ascii=False)
