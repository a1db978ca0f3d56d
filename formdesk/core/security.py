from __future__ import annotations

from passlib.context import CryptContext
from itsdangerous import BadData, URLSafeTimedSerializer

from formdesk.core.config import settings
from formdesk.core.errors import InvalidTokenError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"

# Signed, timestamped tokens (stateless). Each kind has its own secret + salt,
# so an access token never verifies as a refresh token and vice versa.
_serializers = {
    ACCESS: URLSafeTimedSerializer(settings.SECRET_KEY, salt="formdesk.access"),
    REFRESH: URLSafeTimedSerializer(settings.REFRESH_SECRET_KEY, salt="formdesk.refresh"),
}

_max_age = {
    ACCESS: settings.ACCESS_TOKEN_MAX_AGE_SECONDS,
    REFRESH: settings.REFRESH_TOKEN_MAX_AGE_SECONDS,
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def issue_access(user) -> str:
    role = getattr(user.role, "value", user.role)
    return _serializers[ACCESS].dumps({"sub": int(user.id), "role": role, "typ": ACCESS})


def issue_refresh(user_id: int) -> str:
    return _serializers[REFRESH].dumps({"sub": int(user_id), "typ": REFRESH})


def verify(token: str, kind: str = ACCESS, max_age_seconds: int | None = None) -> dict:
    """Return the token claims or raise InvalidTokenError.

    Fails closed: bad signature, expiry, malformed payload or a token of the
    other kind all raise; there is no partial result.
    """
    if kind not in _serializers:
        raise ValueError(f"unknown token kind: {kind}")
    if not token:
        raise InvalidTokenError("Not authorized, no token")
    max_age = _max_age[kind] if max_age_seconds is None else max_age_seconds
    try:
        claims = _serializers[kind].loads(token, max_age=max_age)
    except BadData:
        raise InvalidTokenError("Not authorized, token failed")

    if not isinstance(claims, dict) or claims.get("typ") != kind:
        raise InvalidTokenError("Not authorized, token failed")
    sub = claims.get("sub")
    if not isinstance(sub, int) or isinstance(sub, bool):
        raise InvalidTokenError("Not authorized, token failed")
    return claims
