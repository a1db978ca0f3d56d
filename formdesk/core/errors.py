from __future__ import annotations


class AppError(Exception):
    """Operational error with an HTTP status.

    Raised from services and routers; `main.py` turns it into a JSON response.
    `errors` carries per-field details (e.g. every failed answer) so the caller
    can correct the request.
    """

    status_code: int = 500

    def __init__(self, message: str = "", errors: list[str] | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message or self.__class__.__name__
        self.errors = list(errors or [])
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body: dict = {"detail": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(AppError):
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class InvalidTokenError(UnauthorizedError):
    pass


class ForbiddenError(AppError):
    status_code = 403


class ReadOnlyError(ForbiddenError):
    """The resource may be viewed but not changed by this principal."""

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["readOnly"] = True
        return body


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    status_code = 409


class RateLimitedError(AppError):
    status_code = 429


_BY_STATUS: dict[int, type[AppError]] = {
    400: ValidationError,
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    429: RateLimitedError,
}


def error_for_status(status_code: int, message: str) -> AppError:
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        return AppError(message, status_code=status_code)
    return cls(message)
