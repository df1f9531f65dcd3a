"""Visitor registration, decision and pass routes."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import HTMLResponse, Response
from fastapi.templating import Jinja2Templates
from loguru import logger

from core.exceptions import (
    AlreadyDecided,
    InvalidDecision,
    TokenError,
    TokenExpired,
    VisitorPassError,
)
from modules import export
from modules.notifications import pass_filename
from modules.pass_renderer import render_pass_page
from modules.visitor_lifecycle import VisitorLifecycle
from schemas.visitor import (
    DecisionResponse,
    RegistrationResponse,
    VisitorRegistration,
    VisitorRequest,
    VisitorStatus,
)
from utils.api_errors import ok_response
from utils.deps import get_lifecycle, get_templates
from utils.image import decode_base64_image
from utils.time import iso_utc

logger = logger.bind(module="visitors")

router = APIRouter()


def _decision_payload(record: VisitorRequest) -> DecisionResponse:
    return DecisionResponse(
        id=record.id,
        status=record.status,
        decision_at=iso_utc(record.decision_at) if record.decision_at else None,
        approved_by=record.approved_by,
    )


def _result_page(
    templates: Jinja2Templates,
    request: Request,
    title: str,
    message: str,
    tone: str,
    status_code: int = 200,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "decision_result.html",
        {"title": title, "message": message, "tone": tone},
        status_code=status_code,
    )


@router.post("/api/visitors/register", status_code=201)
async def visitor_register(
    payload: VisitorRegistration = Body(...),
    lifecycle: VisitorLifecycle = Depends(get_lifecycle),
):
    """Register a visitor and email the host for a decision."""
    record = await asyncio.to_thread(lifecycle.register, payload)
    data = RegistrationResponse(
        id=record.id,
        status=record.status,
        visitor_code=record.visitor_code,
        expires_at=iso_utc(record.expires_at),
        qr_code=record.qr_code,
    )
    return ok_response(
        data,
        status_code=201,
        message="Visitor registered successfully. Approval email sent to host.",
    )


@router.get("/api/visitors")
async def visitor_list(lifecycle: VisitorLifecycle = Depends(get_lifecycle)):
    """Return every visitor record, newest first."""
    records = await asyncio.to_thread(lifecycle.list_all)
    return ok_response([r.public_dict() for r in records])


@router.get("/api/visitors/export")
async def visitor_export(
    fmt: str = "csv", lifecycle: VisitorLifecycle = Depends(get_lifecycle)
) -> Response:
    """Export all visitor records as CSV or Excel."""
    records = await asyncio.to_thread(lifecycle.list_all)
    rows = export.visitor_rows(records)
    if fmt == "xlsx":
        return export.export_excel(rows, export.VISITOR_COLUMNS, "visitors")
    return export.export_csv(rows, export.VISITOR_COLUMNS, "visitors")


@router.get("/api/visitors/decision/{token}", name="visitor_decision")
async def visitor_decision(
    token: str,
    request: Request,
    status: str = Query(""),
    lifecycle: VisitorLifecycle = Depends(get_lifecycle),
    templates: Jinja2Templates = Depends(get_templates),
) -> HTMLResponse:
    """Handle the approve/reject link opened by the host."""
    try:
        record = await asyncio.to_thread(lifecycle.decide, token, status)
    except InvalidDecision as exc:
        return _result_page(
            templates, request, "Invalid Decision", exc.message, "error", exc.status_code
        )
    except AlreadyDecided as exc:
        return _result_page(
            templates,
            request,
            "Already Processed",
            f"This visitor request has already been {exc.status}.",
            "notice",
            exc.status_code,
        )
    except TokenExpired as exc:
        return _result_page(
            templates, request, "Link Expired", exc.message, "error", exc.status_code
        )
    except TokenError as exc:
        return _result_page(
            templates, request, "Invalid or Expired Link", exc.message, "error", exc.status_code
        )
    except VisitorPassError as exc:
        logger.error("Decision failed: {}", exc)
        return _result_page(
            templates,
            request,
            "Server Error",
            "An unexpected error occurred. Please try again or contact support.",
            "error",
            exc.status_code,
        )
    approved = record.status == VisitorStatus.APPROVED
    return _result_page(
        templates,
        request,
        f"Visitor {record.name} has been {record.status.value.upper()}",
        "A notification has been sent to the visitor."
        if record.email
        else "The visitor has no email address on file.",
        "success" if approved else "error",
    )


@router.post("/api/visitors/{visitor_id}/status")
async def visitor_update_status(
    visitor_id: str,
    status: str = Query(""),
    lifecycle: VisitorLifecycle = Depends(get_lifecycle),
):
    """Apply a decision addressed by record id (admin console)."""
    record = await asyncio.to_thread(lifecycle.decide_by_id, visitor_id, status)
    return ok_response(_decision_payload(record))


@router.post("/api/visitors/{visitor_id}/expire")
async def visitor_expire(
    visitor_id: str, lifecycle: VisitorLifecycle = Depends(get_lifecycle)
):
    """Report that the visitor's countdown reached zero."""
    record = await asyncio.to_thread(lifecycle.expire, visitor_id)
    return ok_response(_decision_payload(record))


@router.post("/api/visitors/{visitor_id}/resend")
async def visitor_resend(
    visitor_id: str, lifecycle: VisitorLifecycle = Depends(get_lifecycle)
):
    record = await asyncio.to_thread(lifecycle.resend_host_notification, visitor_id)
    return ok_response({"id": record.id, "resent": True})


@router.get("/api/visitors/{visitor_id}")
async def visitor_get(
    visitor_id: str, lifecycle: VisitorLifecycle = Depends(get_lifecycle)
):
    record = await asyncio.to_thread(lifecycle.get, visitor_id)
    return ok_response(record.public_dict())


@router.get("/api/visitors/{visitor_id}/pass")
async def visitor_pass(
    visitor_id: str, lifecycle: VisitorLifecycle = Depends(get_lifecycle)
) -> Response:
    """Download the PDF pass of an approved visitor."""
    record = await asyncio.to_thread(lifecycle.get, visitor_id)
    pdf = await asyncio.to_thread(lifecycle.render_pass, visitor_id)
    return Response(
        pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{pass_filename(record)}"'},
    )


@router.get("/pass/{visitor_id}", response_class=HTMLResponse)
async def pass_page(
    visitor_id: str, lifecycle: VisitorLifecycle = Depends(get_lifecycle)
) -> HTMLResponse:
    """Render the print-styled pass page captured by the PDF renderer."""
    record = await asyncio.to_thread(lifecycle.get, visitor_id)
    return HTMLResponse(render_pass_page(record))


@router.get("/qrcode/{visitor_id}.png")
async def qrcode_image(
    visitor_id: str, lifecycle: VisitorLifecycle = Depends(get_lifecycle)
) -> Response:
    record = await asyncio.to_thread(lifecycle.get, visitor_id)
    return Response(decode_base64_image(record.qr_code), media_type="image/png")
