from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.errors import NotFoundError
from formdesk.core.rbac import Action, Principal, enforce
from formdesk.db.models.form import Form, FormStatus
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.user import User
from formdesk.db.session import get_db
from formdesk.services.submission import SubmissionResult, SubmissionService, get_submission_service
from formdesk.utils.dates import since_for
from formdesk.utils.pagination import clamp_page, paginate, search_filter
from formdesk.utils.serialize import form_out, response_out

router = APIRouter(prefix="/responses", tags=["responses"])


class SubmitIn(BaseModel):
    formId: int
    answers: Any = None


class UpdateIn(BaseModel):
    answers: Any = None


def _result_out(result: SubmissionResult) -> dict:
    out = response_out(result.response)
    out["redirectUrl"] = result.redirect_url
    return out


@router.post("", status_code=201)
def submit(
    body: SubmitIn,
    user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return _result_out(service.submit(body.formId, user, body.answers))


@router.put("/{response_id}")
def update(
    response_id: int,
    body: UpdateIn,
    user: User = Depends(get_current_user),
    service: SubmissionService = Depends(get_submission_service),
):
    return _result_out(service.update(response_id, user, body.answers))


@router.get("/my")
def my_responses(
    page: int = Query(1),
    limit: int = Query(10),
    search: str = Query(""),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    enforce(Principal.from_user(user), Action.VIEW_OWN_RESPONSES)
    page, limit = clamp_page(page, limit)
    q = (
        db.query(FormResponse)
        .join(Form, Form.id == FormResponse.form_id)
        .filter(FormResponse.user_id == user.id, Form.status != FormStatus.DELETED)
    )
    cond = search_filter(search, Form.title)
    if cond is not None:
        q = q.filter(cond)
    q = q.order_by(FormResponse.submitted_at.desc(), FormResponse.id.desc())
    return paginate(q, page, limit, lambda r: response_out(r, r.form))


@router.get("/my/forms")
def my_forms(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Forms the caller has answered, with the id of their response."""
    enforce(Principal.from_user(user), Action.VIEW_OWN_RESPONSES)
    rows = (
        db.query(FormResponse, Form)
        .join(Form, Form.id == FormResponse.form_id)
        .filter(FormResponse.user_id == user.id, Form.status != FormStatus.DELETED)
        .order_by(FormResponse.submitted_at.desc())
        .all()
    )
    return [
        {
            "form": form_out(f, with_questions=False),
            "responseId": r.id,
            "submittedAt": response_out(r)["submittedAt"],
        }
        for r, f in rows
    ]


@router.get("/my/count")
def my_count(
    timeFilter: str = Query("all"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    enforce(Principal.from_user(user), Action.VIEW_OWN_RESPONSES)
    since = since_for(timeFilter)
    q = db.query(func.count(FormResponse.id)).filter(FormResponse.user_id == user.id)
    if since is not None:
        q = q.filter(FormResponse.submitted_at >= since)
    return {"count": int(q.scalar() or 0), "timeFilter": (timeFilter or "all").lower()}


@router.get("/form/{form_id}")
def form_responses(
    form_id: int,
    page: int = Query(1),
    limit: int = Query(10),
    search: str = Query(""),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    enforce(Principal.from_user(user), Action.VIEW_FORM_RESPONSES)
    form = db.get(Form, form_id)
    if form is None or form.status == FormStatus.DELETED:
        raise NotFoundError("Form not found")
    page, limit = clamp_page(page, limit)
    q = (
        db.query(FormResponse)
        .outerjoin(User, User.id == FormResponse.user_id)
        .filter(FormResponse.form_id == form.id)
    )
    cond = search_filter(search, User.name, User.email)
    if cond is not None:
        q = q.filter(cond)
    q = q.order_by(FormResponse.submitted_at.desc(), FormResponse.id.desc())
    return paginate(q, page, limit, response_out)


@router.get("/{response_id}")
def get_response(response_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    principal = Principal.from_user(user)
    r = db.get(FormResponse, response_id)
    if r is None:
        raise NotFoundError("Response not found")
    if r.user_id == user.id:
        enforce(principal, Action.VIEW_OWN_RESPONSES)
    else:
        enforce(principal, Action.VIEW_FORM_RESPONSES)
    return response_out(r, r.form)
