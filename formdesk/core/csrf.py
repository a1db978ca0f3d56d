"""Double-submit CSRF check.

The token lives in a readable (non-httpOnly) cookie; browsers copy it into the
X-CSRF-Token header on every state-changing request. A cross-site page can make
the browser send the cookie but cannot read it to forge the header.
"""
from __future__ import annotations

import hmac
import secrets

from fastapi import Request

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")
# the refresh cookie alone authorizes a refresh; the client may not hold a token yet
EXEMPT_PATHS = ("/auth/refresh",)


def new_token() -> str:
    return secrets.token_urlsafe(32)


def needs_check(request: Request) -> bool:
    if request.method.upper() in SAFE_METHODS:
        return False
    return request.url.path.rstrip("/") not in EXEMPT_PATHS


def check(request: Request) -> str | None:
    """Error message for a failed check, None when the request passes."""
    cookie = request.cookies.get(CSRF_COOKIE)
    header = request.headers.get(CSRF_HEADER)
    if not cookie or not header:
        return "CSRF token missing. Please refresh and try again."
    if not hmac.compare_digest(cookie.encode(), header.encode()):
        return "Invalid CSRF token. Please refresh and try again."
    return None
