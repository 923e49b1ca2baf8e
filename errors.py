"""Error vocabulary shared by the complaint engine and the HTTP layer.

Every domain error carries the HTTP status it maps to. Responses are small
JSON objects with a single ``detail`` field; driver errors and tracebacks are
logged, never returned.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)


class ComplaintServiceError(Exception):
    status_code = 500
    default_message = "internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(ComplaintServiceError):
    status_code = 400
    default_message = "Invalid request data."


class NotAuthenticated(ComplaintServiceError):
    status_code = 401
    default_message = "Not authorized, no token"


class Forbidden(ComplaintServiceError):
    status_code = 403
    default_message = "Not authorized"


class AccountBlocked(Forbidden):
    default_message = "Your account has been blocked."


class NotFound(ComplaintServiceError):
    status_code = 404
    default_message = "Not found"


class Conflict(ComplaintServiceError):
    status_code = 409
    default_message = "Conflict"


class IllegalTransition(Conflict):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move complaint from '{current}' to '{target}'.")


def register_error_handlers(app: FastAPI) -> None:
    """Register the standard error handlers on the application."""

    @app.exception_handler(ComplaintServiceError)
    async def _domain_error(request: Request, exc: ComplaintServiceError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        log.info("validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        return JSONResponse({"detail": "validation error", "errors": fields}, status_code=422)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        log.exception("unhandled exception", exc_info=exc)
        return JSONResponse({"detail": "internal error"}, status_code=500)
