"""Submission orchestration: validate, persist, then best-effort sheet sync.

The response row is committed before the sheet is touched. Whatever the sheet
does afterwards (error, timeout, bad pointer) is recorded on the row and
logged; it never fails the request or removes the stored response.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from formdesk.core.config import settings
from formdesk.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from formdesk.core.rbac import Action, Principal, enforce
from formdesk.db.models.form import Form, FormStatus
from formdesk.db.models.form_response import ANONYMOUS, FormResponse, SheetSyncStatus
from formdesk.db.models.user import User
from formdesk.db.session import get_db
from formdesk.services.sheets import (
    SheetsClient,
    SyncError,
    build_row,
    get_sheets_client,
    header_row,
    run_with_timeout,
)
from formdesk.utils.schema import unwrap_answers, validate_answers

logger = logging.getLogger("formdesk.submission")


@dataclass
class SubmissionResult:
    response: FormResponse
    redirect_url: Optional[str] = None


def user_snapshot(user: Optional[User]) -> dict:
    if user is None:
        return dict(ANONYMOUS)
    return {"id": str(user.id), "name": user.name or "Unknown", "email": user.email or "Unknown"}


class SubmissionService:
    def __init__(self, db: Session, sheets: Optional[SheetsClient] = None, sync_timeout: Optional[float] = None):
        self.db = db
        self.sheets = sheets
        self.sync_timeout = settings.SHEETS_SYNC_TIMEOUT_SECONDS if sync_timeout is None else sync_timeout

    def _form(self, form_id) -> Form:
        form = self.db.get(Form, form_id) if isinstance(form_id, int) else None
        if form is None or form.status == FormStatus.DELETED:
            raise NotFoundError("Form not found")
        return form

    def _already_submitted(self, form_id: int, user_id: int) -> bool:
        found = (
            self.db.query(FormResponse.id)
            .filter(FormResponse.form_id == form_id, FormResponse.user_id == user_id)
            .first()
        )
        return found is not None

    @staticmethod
    def _validate(form: Form, raw_answers) -> dict:
        answers = unwrap_answers(raw_answers)
        if answers is None:
            answers = {}
        errors = validate_answers(form.questions, answers)
        if errors:
            raise ValidationError(errors[0] if len(errors) == 1 else "Invalid answers", errors=errors)
        return answers

    def submit(self, form_id, user: User, raw_answers) -> SubmissionResult:
        enforce(Principal.from_user(user), Action.SUBMIT_RESPONSE)

        form = self._form(form_id)
        if form.status != FormStatus.PUBLISHED:
            raise NotFoundError("Form not found")

        # checked before validation; the unique constraint catches the race
        if self._already_submitted(form.id, user.id):
            raise ConflictError("You have already submitted this form.")

        answers = self._validate(form, raw_answers)

        response = FormResponse(form_id=form.id, user_id=user.id)
        response.answers = answers
        response.user_metadata = user_snapshot(user)
        response.sheet_sync_status = SheetSyncStatus.PENDING
        try:
            self.db.add(response)
            self.db.flush()
            self.db.execute(
                sa_update(Form).where(Form.id == form.id).values(response_count=Form.response_count + 1)
            )
            self.db.commit()
        except IntegrityError:
            # a concurrent submit by the same user won; this one never reaches the sheet
            self.db.rollback()
            logger.info("Duplicate submit for form %s by user %s rejected", form.id, user.id)
            raise ConflictError("You have already submitted this form.")
        logger.info("Response %s stored for form %s by user %s", response.id, form.id, user.id)

        self._sync(form, response, append=True)
        return SubmissionResult(response=response, redirect_url=form.redirect_url)

    def update(self, response_id, user: User, raw_answers) -> SubmissionResult:
        enforce(Principal.from_user(user), Action.EDIT_RESPONSE)

        response = self.db.get(FormResponse, response_id) if isinstance(response_id, int) else None
        if response is None:
            raise NotFoundError("Response not found")
        form = self._form(response.form_id)

        if not form.allow_edit_response:
            raise ForbiddenError("Editing responses is not allowed for this form")
        if response.user_id != user.id:
            raise ForbiddenError("You can only edit your own responses")

        answers = self._validate(form, raw_answers)

        # last writer wins
        response.answers = answers
        response.user_metadata = user_snapshot(user)
        self.db.commit()
        logger.info("Response %s updated by user %s", response.id, user.id)

        self._sync(form, response, append=False)
        return SubmissionResult(response=response, redirect_url=form.redirect_url)

    def _sync(self, form: Form, response: FormResponse, append: bool) -> None:
        if not form.google_sheet_url:
            self._record(response, SheetSyncStatus.SKIPPED, None, attempted=False)
            return
        if self.sheets is None:
            self._record(response, SheetSyncStatus.SKIPPED, "Sheet sync is not configured", attempted=False)
            return
        if not append and response.google_sheet_row_number is None:
            # never turned into an append: that would duplicate the row
            self._record(response, SheetSyncStatus.SKIPPED, "No sheet row to update", attempted=False)
            return

        questions = form.questions
        row = build_row(response.user_metadata, questions, response.answers)
        headers = header_row(questions)
        try:
            if append:
                pointer = run_with_timeout(
                    self.sheets.append, self.sync_timeout, form.google_sheet_url, row, headers
                )
                response.google_sheet_row_number = pointer
            else:
                run_with_timeout(
                    self.sheets.update,
                    self.sync_timeout,
                    form.google_sheet_url,
                    response.google_sheet_row_number,
                    row,
                    headers,
                )
        except SyncError as exc:
            logger.warning(
                "Sheet sync failed for response %s: %s",
                response.id,
                exc,
                extra={"context": {"response_id": response.id, "form_id": form.id, "append": append}},
            )
            self._record(response, SheetSyncStatus.FAILED, str(exc))
            return
        except Exception as exc:
            logger.exception(
                "Unexpected sheet sync error for response %s",
                response.id,
                extra={"context": {"response_id": response.id, "form_id": form.id, "append": append}},
            )
            self._record(response, SheetSyncStatus.FAILED, f"Unexpected error: {exc}")
            return
        self._record(response, SheetSyncStatus.SYNCED, None)

    def _record(
        self, response: FormResponse, status: SheetSyncStatus, error: Optional[str], attempted: bool = True
    ) -> None:
        """Second write: store the sync outcome (and pointer). Failures are logged only."""
        try:
            response.sheet_sync_status = status
            response.sheet_sync_error = error[:500] if error else None
            if attempted:
                response.sheet_sync_attempts = (response.sheet_sync_attempts or 0) + 1
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not record sheet sync outcome for response %s", response.id)


def get_submission_service(
    db: Session = Depends(get_db),
    sheets: Optional[SheetsClient] = Depends(get_sheets_client),
) -> SubmissionService:
    return SubmissionService(db, sheets)
