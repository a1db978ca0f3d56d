"""Small HTTP client for the formdesk API.

Keeps the auth cookies between calls. A 401 from any path other than
/auth/refresh triggers one silent refresh; the original request is then
retried exactly once. A second 401 is returned to the caller as-is.

State-changing requests carry the X-CSRF-Token header, copied from the
csrf_token cookie or fetched from /auth/csrf-token. A CSRF 403 refetches the
token and retries once.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger("formdesk.client")

REFRESH_PATH = "/auth/refresh"
CSRF_PATH = "/auth/csrf-token"
CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


class SessionExpired(Exception):
    """Refreshing the access token failed; the caller has to log in again."""


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return ""
    return str(body.get("detail") or "") if isinstance(body, dict) else ""


class FormdeskClient:
    def __init__(self, base_url: str, timeout: float = 30.0, transport: httpx.BaseTransport | None = None):
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self._csrf_token: str | None = None

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "FormdeskClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def csrf_token(self, fresh: bool = False) -> str | None:
        token = None if fresh else (self._http.cookies.get(CSRF_COOKIE) or self._csrf_token)
        if token is None:
            resp = self._http.get(CSRF_PATH)
            if resp.status_code == 200:
                token = resp.json().get("csrfToken")
            else:
                logger.info("CSRF token fetch failed with %s", resp.status_code)
        self._csrf_token = token
        return token

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if method.upper() in SAFE_METHODS or path.rstrip("/") == REFRESH_PATH:
            return self._http.request(method, path, **kwargs)

        def attempt(token: str | None) -> httpx.Response:
            headers = dict(kwargs.get("headers") or {})
            if token:
                headers[CSRF_HEADER] = token
            return self._http.request(method, path, **{**kwargs, "headers": headers})

        resp = attempt(self.csrf_token())
        if resp.status_code == 403 and "CSRF" in _detail(resp):
            logger.info("CSRF token rejected for %s %s, refetching", method, path)
            resp = attempt(self.csrf_token(fresh=True))
        return resp

    def login(self, email: str, password: str) -> dict:
        resp = self._send("POST", "/auth/login", json={"email": email, "password": password})
        resp.raise_for_status()
        return resp.json()

    def logout(self) -> None:
        self._send("POST", "/auth/logout")
        self._http.cookies.clear()
        self._csrf_token = None

    def refresh(self) -> bool:
        resp = self._http.post(REFRESH_PATH)
        if resp.status_code != 200:
            logger.info("Token refresh failed with %s", resp.status_code)
            return False
        return True

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        resp = self._send(method, path, **kwargs)
        if resp.status_code != 401 or path.rstrip("/") == REFRESH_PATH:
            return resp
        if not self.refresh():
            raise SessionExpired("Session expired, please log in again")
        return self._send(method, path, **kwargs)

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("DELETE", path, **kwargs)

    def submit_response(self, form_id: int, answers: dict) -> dict:
        resp = self.post("/responses", json={"formId": form_id, "answers": answers})
        resp.raise_for_status()
        return resp.json()
