from __future__ import annotations

import time
import logging

from fastapi import FastAPI, Request, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from formdesk.core.config import settings
from formdesk.core import csrf
from formdesk.core.errors import AppError, UnauthorizedError
from formdesk.core.logging_setup import configure_logging
from formdesk.core.ratelimit import api_limiter
from formdesk.db.session import get_db
from formdesk.auth.deps import ACCESS_COOKIE, get_current_user

# Import models to populate SQLAlchemy metadata (needed for create_all)
import formdesk.db.models  # noqa: F401

from formdesk.auth.router import router as auth_router
from formdesk.modules.forms.router import router as forms_router
from formdesk.modules.responses.router import router as responses_router
from formdesk.modules.users.router import router as users_router
from formdesk.modules.system_settings.router import router as system_settings_router


configure_logging()
logger = logging.getLogger("formdesk.main")

app = FastAPI(title=settings.APP_NAME)

# CORS (Access-Control-Allow-*) - configurable
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
)

# Compression for JSON (helps under load)
app.add_middleware(GZipMiddleware, minimum_size=800)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start = time.perf_counter()
    resp = await call_next(request)
    resp.headers["X-Process-Time-ms"] = f"{(time.perf_counter() - start) * 1000:.2f}"
    return resp


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    resp = await call_next(request)
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["X-Frame-Options"] = "SAMEORIGIN"
    resp.headers["Referrer-Policy"] = "same-origin"
    resp.headers["Permissions-Policy"] = "geolocation=(), camera=(), microphone=()"
    return resp


# Raised exceptions skip the app handlers inside these functions, so they answer directly.
# Registration order is inside-out: the body limit runs first.

@app.middleware("http")
async def csrf_protect(request: Request, call_next):
    token = request.cookies.get(csrf.CSRF_COOKIE)
    issued = token is None
    request.state.csrf_token = token or csrf.new_token()

    error = csrf.check(request) if csrf.needs_check(request) else None
    if error:
        logger.info("CSRF check failed for %s %s", request.method, request.url.path)
        resp = JSONResponse(status_code=403, content={"detail": error})
    else:
        resp = await call_next(request)

    if issued:
        resp.set_cookie(
            csrf.CSRF_COOKIE,
            request.state.csrf_token,
            httponly=False,
            samesite=settings.COOKIE_SAMESITE,
            secure=settings.COOKIE_SECURE,
            max_age=settings.CSRF_COOKIE_MAX_AGE_SECONDS,
        )
    return resp


@app.middleware("http")
async def limit_requests(request: Request, call_next):
    if not request.url.path.startswith("/health") and not api_limiter.allow(request):
        return JSONResponse(
            status_code=429, content={"detail": "Too many requests from this IP, please try again later"}
        )
    return await call_next(request)


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > settings.MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    resp = JSONResponse(status_code=exc.status_code, content=exc.to_dict())
    # 401: the client refreshes once, then sends the user to login
    if isinstance(exc, UnauthorizedError):
        resp.headers["X-Session-Expired"] = "1"
        resp.delete_cookie(ACCESS_COOKIE)
    elif exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return resp


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        errors.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled exception",
        exc_info=exc,
        extra={"context": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# Routers
app.include_router(auth_router)
app.include_router(forms_router)
app.include_router(responses_router)
app.include_router(users_router)
app.include_router(system_settings_router)


@app.get("/health", response_class=JSONResponse)
def health():
    return {"status": "ok", "app": settings.APP_NAME}


@app.get("/health/db", response_class=JSONResponse)
def health_db(db=Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database health check failed")
        return JSONResponse(status_code=503, content={"status": "error", "database": False})
    return {"status": "ok", "database": True}


@app.get("/health/auth", response_class=JSONResponse)
def health_auth(user=Depends(get_current_user)):
    return {"status": "ok", "authenticated": True, "user_id": user.id}
