import logging

from fastapi import Request, Depends
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formdesk.core.errors import ForbiddenError, InvalidTokenError, UnauthorizedError
from formdesk.core.rbac import Principal
from formdesk.core.security import ACCESS, verify
from formdesk.db.base import utcnow
from formdesk.db.models.user import User
from formdesk.db.session import get_db

logger = logging.getLogger("formdesk.auth")

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _stamp_heartbeat(db: Session, user: User) -> None:
    # best-effort; a failed stamp never fails the request
    try:
        now = utcnow()
        db.execute(update(User).where(User.id == user.id).values(last_heartbeat=now))
        db.commit()
        user.last_heartbeat = now
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Failed to update heartbeat for user %s", user.id)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise UnauthorizedError("Not authorized, no token")
    claims = verify(token, ACCESS)
    user = db.get(User, claims["sub"])
    if not user:
        raise InvalidTokenError("User not found")
    if not user.is_active:
        raise ForbiddenError("This account has been deactivated")
    _stamp_heartbeat(db, user)
    return user


def get_principal(user: User = Depends(get_current_user)) -> Principal:
    return Principal.from_user(user)
