"""Error taxonomy for the visitor approval workflow."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from utils.api_errors import error_response


class VisitorPassError(Exception):
    """Base class carrying a machine-readable ``code`` and HTTP status."""

    code = "visitor_error"
    status_code = 400

    def __init__(self, message: str = "", **details):
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)


class ValidationError(VisitorPassError):
    code = "validation_error"

    def __init__(self, missing: list[str], message: str = ""):
        self.missing = list(missing)
        super().__init__(
            message or "missing required fields: " + ", ".join(self.missing),
            missing=self.missing,
        )


class InvalidDecision(VisitorPassError):
    code = "invalid_decision"


class TokenError(VisitorPassError):
    """Decision-link failures; terminal and never retried."""

    code = "token_error"


class TokenNotFound(TokenError):
    code = "token_not_found"


class TokenExpired(TokenError):
    code = "token_expired"


class AlreadyDecided(TokenError):
    code = "already_decided"
    status_code = 409

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"visitor request already {status}", status=status)


class NotFoundError(VisitorPassError):
    code = "not_found"
    status_code = 404


class QrEncodingError(VisitorPassError):
    code = "qr_encoding_failed"
    status_code = 500


class RenderError(VisitorPassError):
    code = "render_failed"
    status_code = 500


class MailError(VisitorPassError):
    code = "mail_failed"
    status_code = 502


class StoreUnavailable(VisitorPassError):
    code = "redis_unavailable"
    status_code = 503


class DuplicateCode(VisitorPassError):
    code = "duplicate_visitor_code"
    status_code = 409


class PassNotIssued(VisitorPassError):
    """A pass exists only for approved requests."""

    code = "pass_not_issued"
    status_code = 409


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors onto standardized JSON error payloads."""

    @app.exception_handler(VisitorPassError)
    async def _visitor_error_handler(_: Request, exc: VisitorPassError):
        return error_response(
            exc.code,
            exc.message,
            status_code=exc.status_code,
            details=exc.details or None,
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(_: Request, exc: RequestValidationError):
        fields = [str(err["loc"][-1]) for err in exc.errors() if err.get("loc")]
        err = ValidationError(fields, "invalid fields: " + ", ".join(fields))
        return error_response(
            err.code, err.message, status_code=err.status_code, details=err.details
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception):
        if isinstance(exc, StarletteHTTPException):
            return await http_exception_handler(request, exc)
        logger.exception("Unhandled application error: {}", exc)
        return JSONResponse({"detail": "Internal Server Error"}, status_code=500)
