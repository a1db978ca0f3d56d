from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_principal
from formdesk.core.config import settings
from formdesk.core.errors import NotFoundError, ValidationError
from formdesk.core.rbac import Action, Principal, Target, can_view_form, enforce, require
from formdesk.db.models.form import Form, FormStatus
from formdesk.db.session import get_db
from formdesk.services.sheets import SheetsClient, SyncError, get_sheets_client, run_with_timeout
from formdesk.utils.pagination import clamp_page, paginate, search_filter
from formdesk.utils.schema import normalize_questions
from formdesk.utils.serialize import form_out

logger = logging.getLogger("formdesk.forms")

router = APIRouter(prefix="/forms", tags=["forms"])

# DELETED is reachable only through DELETE /forms/{id}
EDITABLE_STATUSES = (FormStatus.DRAFT, FormStatus.PUBLISHED, FormStatus.UNPUBLISHED, FormStatus.ARCHIVED)


class FormIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    questions: Optional[list] = None
    status: Optional[str] = None
    allowEditResponse: Optional[bool] = None
    googleSheetUrl: Optional[str] = None
    redirectUrl: Optional[str] = None


def _parse_status(value: str) -> FormStatus:
    try:
        status = FormStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid status \"{value}\"")
    require(status in EDITABLE_STATUSES, f"Status cannot be set to \"{status.value}\"", 400)
    return status


def _validate_sheet(sheets: Optional[SheetsClient], url: str) -> None:
    if sheets is None:
        raise ValidationError("Google Sheets integration is not configured on this server")
    try:
        info = run_with_timeout(sheets.validate_and_initialize, settings.SHEETS_SYNC_TIMEOUT_SECONDS, url)
    except SyncError as exc:
        raise ValidationError(str(exc) or "Failed to validate Google Sheet access")
    logger.info("Sheet %s validated (%s)", info.get("sheetId"), info.get("title"))


def _apply(f: Form, body: FormIn, sheets: Optional[SheetsClient]) -> None:
    fields = body.model_fields_set
    if "title" in fields:
        title = (body.title or "").strip()
        require(bool(title), "Title is required", 400)
        f.title = title
    if "description" in fields:
        f.description = body.description or ""
    if "questions" in fields:
        questions, errors = normalize_questions(body.questions)
        if errors:
            raise ValidationError(errors[0] if len(errors) == 1 else "Invalid questions", errors=errors)
        f.questions = questions
    if "status" in fields and body.status is not None:
        f.status = _parse_status(body.status)
    if "allowEditResponse" in fields and body.allowEditResponse is not None:
        f.allow_edit_response = body.allowEditResponse
    if "redirectUrl" in fields:
        f.redirect_url = (body.redirectUrl or "").strip() or None
    if "googleSheetUrl" in fields:
        url = (body.googleSheetUrl or "").strip() or None
        if url and url != f.google_sheet_url:
            _validate_sheet(sheets, url)
        f.google_sheet_url = url


def _get_form(db: Session, form_id: int) -> Form:
    f = db.get(Form, form_id)
    if f is None or f.status == FormStatus.DELETED:
        raise NotFoundError("Form not found")
    return f


@router.post("", status_code=201)
def create(
    body: FormIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    sheets: Optional[SheetsClient] = Depends(get_sheets_client),
):
    enforce(principal, Action.CREATE_FORM)
    require(bool((body.title or "").strip()), "Title is required", 400)

    f = Form(created_by=principal.id, status=FormStatus.DRAFT, response_count=0)
    f.questions = []
    _apply(f, body, sheets)
    db.add(f)
    db.commit()
    logger.info("Form %s created by %s", f.id, principal.id)
    return form_out(f)


@router.get("")
def list_forms(
    page: int = Query(1),
    limit: int = Query(10),
    search: str = Query(""),
    status: str = Query(""),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    enforce(principal, Action.VIEW_FORM)
    page, limit = clamp_page(page, limit)

    # own forms (except deleted) plus everyone's published forms
    q = db.query(Form).filter(
        or_(
            and_(Form.created_by == principal.id, Form.status != FormStatus.DELETED),
            Form.status == FormStatus.PUBLISHED,
        )
    )
    cond = search_filter(search, Form.title, Form.description)
    if cond is not None:
        q = q.filter(cond)
    if status.strip():
        try:
            q = q.filter(Form.status == FormStatus(status.strip().lower()))
        except ValueError:
            raise ValidationError(f"Invalid status \"{status}\"")
    q = q.order_by(Form.created_at.desc(), Form.id.desc())
    return paginate(q, page, limit, lambda f: form_out(f, with_questions=False))


@router.get("/{form_id}")
def get_form(form_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    enforce(principal, Action.VIEW_FORM)
    f = _get_form(db, form_id)
    require(can_view_form(principal, f), "Not authorized to view this form")
    return form_out(f)


@router.put("/{form_id}")
def update(
    form_id: int,
    body: FormIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    sheets: Optional[SheetsClient] = Depends(get_sheets_client),
):
    f = _get_form(db, form_id)
    enforce(principal, Action.UPDATE_FORM, Target.for_form(f))
    _apply(f, body, sheets)
    db.commit()
    logger.info("Form %s updated by %s", f.id, principal.id)
    return form_out(f)


@router.delete("/{form_id}")
def delete(form_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    f = _get_form(db, form_id)
    enforce(principal, Action.DELETE_FORM, Target.for_form(f))
    f.status = FormStatus.DELETED
    db.commit()
    logger.info("Form %s deleted by %s", f.id, principal.id)
    return {"message": "Form deleted successfully"}
