from __future__ import annotations

import math
from collections import Counter
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user, get_principal
from formdesk.core.errors import ValidationError
from formdesk.core.rbac import Action, Principal, Target, can_act, enforce
from formdesk.db.base import utcnow
from formdesk.db.models.form import Form, FormStatus
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.user import User, UserStatus
from formdesk.db.session import get_db
from formdesk.services import accounts
from formdesk.services.settings_store import SettingsStore, get_settings_store
from formdesk.utils.dates import day_range, format_hour, local_hour
from formdesk.utils.pagination import clamp_page, paginate, search_filter
from formdesk.utils.serialize import user_out

router = APIRouter(prefix="/users", tags=["users"])


class UserIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    employeeId: Optional[str] = None
    vendorId: Optional[str] = None
    modulePermissions: Optional[dict] = None


class ProfileIn(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None


def _count_responses(db: Session, user_id: int, start: Optional[str] = None, end: Optional[str] = None) -> int:
    lo, hi = day_range(start, end)
    q = db.query(func.count(FormResponse.id)).filter(FormResponse.user_id == user_id)
    if lo is not None:
        q = q.filter(FormResponse.submitted_at >= lo)
    if hi is not None:
        q = q.filter(FormResponse.submitted_at < hi)
    return int(q.scalar() or 0)


def peak_activity_hours(heartbeats, window_hours: float) -> str:
    """Most common heartbeat hour (report timezone) widened to the heartbeat window."""
    hours = Counter(local_hour(hb) for hb in heartbeats if hb is not None)
    if not hours:
        return "No activity data"
    peak = hours.most_common(1)[0][0]
    if window_hours == 1:
        return f"{format_hour(peak)} - {format_hour((peak + 1) % 24)}"
    start = max(0, peak - math.floor(window_hours / 2))
    end = min(23, start + math.floor(window_hours))
    return f"{format_hour(start)} - {format_hour(end)}"


@router.get("")
def list_users(
    page: int = Query(1),
    limit: int = Query(10),
    search: str = Query(""),
    role: str = Query(""),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    enforce(principal, Action.LIST_USERS)
    page, limit = clamp_page(page, limit)
    q = db.query(User).filter(User.status == UserStatus.ACTIVE)
    cond = search_filter(search, User.email, User.name, User.employee_id, User.vendor_id)
    if cond is not None:
        q = q.filter(cond)
    if role.strip():
        q = q.filter(User.role == accounts.parse_role(role))
    q = q.order_by(User.created_at.desc(), User.id.desc())
    return paginate(q, page, limit, user_out)


@router.post("", status_code=201)
def create_user(body: UserIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    return user_out(accounts.create_account(db, principal, body.model_dump()))


@router.put("/profile")
def update_profile(body: ProfileIn, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return user_out(accounts.update_profile(db, user, body.model_dump()))


@router.get("/analytics/me")
def my_analytics(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    enforce(Principal.from_user(user), Action.VIEW_PROFILE)
    forms = (
        db.query(func.count(func.distinct(FormResponse.form_id)))
        .filter(FormResponse.user_id == user.id)
        .scalar()
    )
    return {
        "responseCount": _count_responses(db, user.id, startDate, endDate),
        "formsRespondedTo": int(forms or 0),
        "totalSubmissions": _count_responses(db, user.id),
        "startDate": startDate,
        "endDate": endDate,
    }


@router.get("/analytics/admin")
def admin_analytics(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    store: SettingsStore = Depends(get_settings_store),
):
    enforce(principal, Action.VIEW_ADMIN_ANALYTICS)
    window = store.heartbeat_window_hours()
    threshold = utcnow() - timedelta(hours=window)

    active = (
        db.query(func.count(User.id))
        .filter(User.status == UserStatus.ACTIVE, User.last_heartbeat >= threshold)
        .scalar()
    )
    drafts = (
        db.query(func.count(Form.id))
        .filter(Form.status.notin_([FormStatus.PUBLISHED, FormStatus.DELETED]))
        .scalar()
    )
    heartbeats = [
        hb
        for (hb,) in db.query(User.last_heartbeat).filter(
            User.status == UserStatus.ACTIVE, User.last_heartbeat.isnot(None)
        )
    ]
    return {
        "activeUsersCount": int(active or 0),
        "draftFormsCount": int(drafts or 0),
        "peakActivityHours": peak_activity_hours(heartbeats, window),
        "heartbeatWindowHours": window,
    }


@router.get("/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    u = accounts.get_active_user(db, user_id)
    decision = can_act(principal, Action.VIEW_USER, Target.for_user(u))
    if not decision.read_only:
        enforce(principal, Action.VIEW_USER, Target.for_user(u))
    out = user_out(u)
    out["readOnly"] = decision.read_only
    return out


@router.put("/{user_id}")
def update_user(
    user_id: int, body: UserIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)
):
    data = body.model_dump(exclude_unset=True)
    if "password" in data:
        raise ValidationError("Passwords cannot be changed here")
    return user_out(accounts.update_account(db, principal, user_id, data))


@router.delete("/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    accounts.delete_account(db, principal, user_id)
    return {"message": "User deleted successfully"}


@router.get("/{user_id}/activity")
def user_activity(
    user_id: int,
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    enforce(principal, Action.VIEW_USER_ACTIVITY)
    u = accounts.get_active_user(db, user_id)
    return {"count": _count_responses(db, u.id, startDate, endDate), "startDate": startDate, "endDate": endDate}
