"""Standardized JSON envelopes for the visitor API."""

from __future__ import annotations

from typing import Any, Mapping

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def error_response(
    code: str,
    message: str,
    *,
    status_code: int = 400,
    details: Mapping[str, Any] | None = None,
) -> JSONResponse:
    """Return a JSONResponse with a standardized error payload.

    Args:
        code: Machine-readable error code such as ``token_expired``.
        message: Human-readable error message.
        status_code: HTTP status code for the response.
        details: Optional extra context, e.g. the list of missing fields.
    """

    payload: dict[str, Any] = {"ok": False, "code": code, "message": message}
    if details:
        payload["details"] = jsonable_encoder(details)
    return JSONResponse(payload, status_code=status_code)


def ok_response(data: Any, *, status_code: int = 200, **extra: Any) -> JSONResponse:
    """Wrap ``data`` in the success envelope used by visitor endpoints."""
    payload: dict[str, Any] = {"ok": True, "data": jsonable_encoder(data)}
    payload.update(extra)
    return JSONResponse(payload, status_code=status_code)
