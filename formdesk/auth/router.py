from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from formdesk.auth.deps import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user, get_principal
from formdesk.core.config import settings
from formdesk.core.errors import ForbiddenError, InvalidTokenError, UnauthorizedError
from formdesk.core.ratelimit import login_limiter, refresh_limiter
from formdesk.core.rbac import Principal, require
from formdesk.core.security import REFRESH, issue_access, issue_refresh, verify, verify_password
from formdesk.db.models.user import User
from formdesk.db.session import get_db
from formdesk.services.accounts import create_account
from formdesk.utils.serialize import user_out

logger = logging.getLogger("formdesk.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: str
    password: str


class RegisterIn(BaseModel):
    email: str
    password: str | None = None
    name: str = ""
    role: str | None = None
    employeeId: str | None = None
    vendorId: str | None = None
    modulePermissions: dict | None = None


def _set_cookie(resp, name: str, value: str, max_age: int) -> None:
    resp.set_cookie(
        name,
        value,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
        max_age=max_age,
    )


def _clear_cookie(resp, name: str) -> None:
    resp.delete_cookie(name, httponly=True, samesite=settings.COOKIE_SAMESITE, secure=settings.COOKIE_SECURE)


@router.post("/login")
def login(body: LoginIn, request: Request, db: Session = Depends(get_db)):
    login_limiter.check(request)
    email = (body.email or "").strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(body.password, user.password_hash):
        login_limiter.hit(request)
        logger.info("Failed login for %s", email)
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        login_limiter.hit(request)
        raise ForbiddenError("This account has been deactivated")

    resp = JSONResponse(user_out(user))
    _set_cookie(resp, ACCESS_COOKIE, issue_access(user), settings.ACCESS_TOKEN_MAX_AGE_SECONDS)
    _set_cookie(resp, REFRESH_COOKIE, issue_refresh(user.id), settings.REFRESH_TOKEN_MAX_AGE_SECONDS)
    return resp


@router.get("/csrf-token")
def csrf_token(request: Request):
    # the middleware sets the cookie on this response when the browser has none
    return {"csrfToken": request.state.csrf_token}


@router.post("/refresh")
def refresh(request: Request, db: Session = Depends(get_db)):
    refresh_limiter.check(request)
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        refresh_limiter.hit(request)
        raise UnauthorizedError("Not authorized, no refresh token")
    try:
        claims = verify(token, REFRESH)
    except InvalidTokenError:
        refresh_limiter.hit(request)
        raise
    user = db.get(User, claims["sub"])
    if not user or not user.is_active:
        refresh_limiter.hit(request)
        raise UnauthorizedError("User not found")

    resp = JSONResponse({"message": "Token refreshed", "user": user_out(user)})
    _set_cookie(resp, ACCESS_COOKIE, issue_access(user), settings.ACCESS_TOKEN_MAX_AGE_SECONDS)
    return resp


@router.post("/logout")
def logout():
    resp = JSONResponse({"message": "Logged out successfully"})
    _clear_cookie(resp, ACCESS_COOKIE)
    _clear_cookie(resp, REFRESH_COOKIE)
    return resp


@router.post("/register", status_code=201)
def register(body: RegisterIn, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)):
    require(principal.is_superadmin, "Only a SuperAdmin can register users")
    u = create_account(db, principal, body.model_dump())
    return {"message": f"User {u.name or u.email} created successfully", "success": True, "user": user_out(u)}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return user_out(user)
