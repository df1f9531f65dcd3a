"""Visitor pass PDF generation.

Two strategies produce the same pass:

* :class:`HtmlPassRenderer` renders the print-styled pass page through
  WeasyPrint. The page carries a ``pass-ready`` element only once the
  fields are present and both embedded images decode; rendering is bounded
  by a timeout.
* :class:`CanvasPassRenderer` draws the fields directly with ReportLab.

:class:`PassRenderer` tries the first and falls back to the second, so
callers always receive PDF bytes for a valid record.
"""

from __future__ import annotations

import io
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape
from loguru import logger
from PIL import Image
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from config import PASS_TIMINGS
from config import config as cfg
from core.exceptions import RenderError, ValidationError
from schemas.visitor import VisitorRequest, VisitorStatus
from utils.image import decode_base64_image, image_mime
from utils.time import format_ts

logger = logger.bind(module="pass_renderer")

READY_MARKER = 'id="pass-ready"'
PASS_TEMPLATE = "pass.html"

# Jinja environment for offline template rendering
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


def build_environment(template_dir: str | Path = TEMPLATE_DIR) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml"]),
    )


_env = build_environment()

STATUS_COLORS = {
    VisitorStatus.PENDING: "#f0ad4e",
    VisitorStatus.APPROVED: "#2ecc71",
    VisitorStatus.REJECTED: "#dc3545",
    VisitorStatus.EXPIRED: "#6c757d",
}


def check_renderable(visitor: VisitorRequest) -> None:
    """Raise :class:`ValidationError` if the record lacks pass fields."""
    missing = [f for f in ("name", "visitor_code") if not getattr(visitor, f, "")]
    if missing:
        raise ValidationError(missing, "visitor record cannot be rendered")


def image_decodes(data: str) -> bool:
    """Return True when ``data`` holds an image Pillow can identify."""
    try:
        with Image.open(io.BytesIO(decode_base64_image(data))) as img:
            img.verify()
    except (ValueError, OSError, SyntaxError) as exc:
        logger.debug("Embedded pass image does not decode: {}", exc)
        return False
    return True


def page_ready(visitor: VisitorRequest) -> bool:
    """Return True once the pass page has every field and image it shows."""
    if not (visitor.name and visitor.visitor_code):
        return False
    if not image_decodes(visitor.qr_code):
        return False
    return not visitor.photo or image_decodes(visitor.photo)


def pass_context(visitor: VisitorRequest) -> dict:
    """Return the template fields shared by both strategies."""
    branding = cfg.get("branding", {})
    photo_url = ""
    if visitor.photo:
        photo_url = (
            visitor.photo
            if visitor.photo.startswith("data:")
            else f"data:{image_mime(visitor.photo)};base64,{visitor.photo}"
        )
    return {
        "visitor": visitor,
        "name": visitor.name,
        "code": visitor.visitor_code,
        "purpose": visitor.purpose,
        "to_meet": visitor.to_meet or cfg.get("default_host", ""),
        "approved_by": visitor.approved_by or "",
        "status": visitor.status.value,
        "status_color": STATUS_COLORS.get(visitor.status, "#6c757d"),
        "date": format_ts(visitor.created_at, "%d %b %Y"),
        "time": format_ts(visitor.created_at, "%I:%M %p"),
        "photo_url": photo_url,
        "qr_img": visitor.qr_code,
        "company": branding.get("company_name", ""),
        "page_size": branding.get("print_layout", "A4"),
        "ready": page_ready(visitor),
    }


# render_pass_page routine
def render_pass_page(visitor: VisitorRequest, env: Environment | None = None) -> str:
    """Return the print-styled HTML pass page for ``visitor``."""
    template = (env or _env).get_template(PASS_TEMPLATE)
    return template.render(**pass_context(visitor))


class PassRenderStrategy(Protocol):
    name: str

    def render(self, visitor: VisitorRequest) -> bytes: ...


class HtmlPassRenderer:
    """Render the pass page to PDF with WeasyPrint."""

    name = "html"

    def __init__(
        self,
        env: Environment | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
    ):
        self.env = env or _env
        self.timeout = timeout
        self.base_url = base_url or str(TEMPLATE_DIR)

    def build_page(self, visitor: VisitorRequest) -> str:
        html = render_pass_page(visitor, self.env)
        if READY_MARKER not in html:
            raise RenderError(f"pass page for {visitor.id} never became ready")
        return html

    def _write_pdf(self, html: str) -> bytes:
        from weasyprint import HTML

        return HTML(string=html, base_url=self.base_url).write_pdf(
            presentational_hints=True
        )

    def render(self, visitor: VisitorRequest) -> bytes:
        html = self.build_page(visitor)
        timeout = self.timeout if self.timeout is not None else PASS_TIMINGS.render_timeout_secs
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pass-render")
        try:
            future = executor.submit(self._write_pdf, html)
            try:
                pdf = future.result(timeout=timeout)
            except FutureTimeout as exc:
                raise RenderError(f"pass rendering exceeded {timeout}s") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        if not pdf or not pdf.startswith(b"%PDF"):
            raise RenderError("renderer returned no PDF data")
        return pdf


class CanvasPassRenderer:
    """Draw the pass fields directly onto an A4 page with ReportLab."""

    name = "canvas"

    def __init__(self, compress: bool = False):
        self.compress = compress

    def _draw_image(self, pdf: canvas.Canvas, data: str, x, y, w, h) -> bool:
        if not data:
            return False
        try:
            image = ImageReader(io.BytesIO(decode_base64_image(data)))
            pdf.drawImage(image, x, y, w, h, preserveAspectRatio=True, mask="auto")
        except Exception as exc:
            logger.warning("Skipping unreadable image on pass: {}", exc)
            return False
        return True

    def render(self, visitor: VisitorRequest) -> bytes:
        ctx = pass_context(visitor)
        buf = io.BytesIO()
        pdf = canvas.Canvas(buf, pagesize=A4, pageCompression=1 if self.compress else 0)
        pdf.setTitle(f"Visitor Pass {ctx['code']}")
        width, height = A4

        pdf.setFillColor(colors.HexColor("#e0f7fa"))
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        card_x, card_w, card_h = 25 * mm, width - 50 * mm, 180 * mm
        card_y = height - 30 * mm - card_h
        pdf.setFillColor(colors.white)
        pdf.setStrokeColor(colors.HexColor("#cccccc"))
        pdf.roundRect(card_x, card_y, card_w, card_h, 7 * mm, stroke=1, fill=1)

        center = card_x + card_w / 2
        top = card_y + card_h
        pdf.setFillColor(colors.HexColor("#1e3d59"))
        pdf.setFont("Helvetica-Bold", 20)
        pdf.drawCentredString(center, top - 15 * mm, "Visitor Gate Pass")
        if ctx["company"]:
            pdf.setFont("Helvetica", 10)
            pdf.setFillColor(colors.gray)
            pdf.drawCentredString(center, top - 22 * mm, f"Issued by {ctx['company']}")

        self._draw_image(
            pdf, visitor.photo, center - 17 * mm, top - 62 * mm, 34 * mm, 34 * mm
        )

        pdf.setFillColor(colors.HexColor("#1e3d59"))
        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawCentredString(center, top - 72 * mm, ctx["name"])

        details = [
            ("Visitor Code", ctx["code"]),
            ("Purpose", ctx["purpose"]),
            ("Meeting With", ctx["to_meet"]),
            ("Date & Time", f"{ctx['date']} {ctx['time']}"),
        ]
        if visitor.status == VisitorStatus.APPROVED:
            details.append(("Status", f"APPROVED by {ctx['approved_by']}"))
        else:
            details.append(("Status", ctx["status"].upper()))
        y = top - 85 * mm
        for label, value in details:
            pdf.setFont("Helvetica-Bold", 12)
            pdf.setFillColor(colors.HexColor("#333333"))
            pdf.drawString(card_x + 15 * mm, y, f"{label}:")
            pdf.setFont("Helvetica", 12)
            pdf.setFillColor(colors.black)
            pdf.drawString(card_x + 50 * mm, y, value or "N/A")
            y -= 9 * mm

        self._draw_image(
            pdf, visitor.qr_code, card_x + card_w - 55 * mm, card_y + 22 * mm, 40 * mm, 40 * mm
        )

        pdf.setFillColor(colors.HexColor(ctx["status_color"]))
        pdf.rect(card_x, card_y, card_w, 15 * mm, stroke=0, fill=1)
        pdf.setFillColor(colors.white)
        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawCentredString(center, card_y + 5 * mm, "GATE PASS")

        pdf.showPage()
        pdf.save()
        return buf.getvalue()


class PassRenderer:
    """Try the primary strategy and fall back on any failure."""

    def __init__(
        self,
        primary: PassRenderStrategy | None = None,
        fallback: PassRenderStrategy | None = None,
    ):
        self.primary = primary or HtmlPassRenderer()
        self.fallback = fallback or CanvasPassRenderer()

    def render(self, visitor: VisitorRequest) -> bytes:
        """Return PDF bytes for ``visitor``.

        Only an unrenderable record raises; primary-path failures of any
        kind are logged and answered by the fallback strategy.
        """
        check_renderable(visitor)
        try:
            pdf = self.primary.render(visitor)
            if not pdf or not pdf.startswith(b"%PDF"):
                raise RenderError("primary renderer returned no PDF data")
            return pdf
        except Exception as exc:
            logger.warning(
                "{} pass rendering failed for {}: {}; using {} renderer",
                self.primary.name,
                visitor.visitor_code,
                exc,
                self.fallback.name,
            )
        return self.fallback.render(visitor)
