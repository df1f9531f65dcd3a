"""Compose and send visitor workflow emails."""

from __future__ import annotations

from urllib.parse import quote

from jinja2 import Environment
from loguru import logger

from config import PASS_TIMINGS
from config import config as cfg
from modules.email_utils import Attachment, Mailer
from modules.pass_renderer import build_environment
from schemas.visitor import VisitorRequest, VisitorStatus
from utils.time import format_ts

logger = logger.bind(module="notifications")


def decision_links(token: str, base_url: str | None = None) -> tuple[str, str]:
    """Return ``(approve_url, reject_url)`` addressed by ``token``."""
    base = (base_url or cfg.get("base_url", "")).rstrip("/")
    url = f"{base}/api/visitors/decision/{quote(token, safe='')}"
    return f"{url}?status={VisitorStatus.APPROVED.value}", f"{url}?status={VisitorStatus.REJECTED.value}"


def pass_filename(visitor: VisitorRequest) -> str:
    return f"visitor-pass-{visitor.visitor_code}.pdf"


class NotificationDispatcher:
    """Send host and visitor messages through an injected :class:`Mailer`.

    Delivery is best effort: every method logs failures and returns
    ``False`` instead of raising, so a committed status change is never
    undone by a mail problem.
    """

    def __init__(
        self,
        mailer: Mailer,
        env: Environment | None = None,
        base_url: str | None = None,
    ):
        self.mailer = mailer
        self.env = env or build_environment()
        self.base_url = base_url

    def _render(self, template: str, **context) -> str:
        return self.env.get_template(f"emails/{template}").render(**context)

    def _send(self, to: str, subject: str, html: str, attachments=()) -> bool:
        try:
            message_id = self.mailer.send(to, subject, html, attachments)
        except Exception as exc:
            logger.error("Failed to send '{}' to {}: {}", subject, to, exc)
            return False
        logger.info("Sent '{}' to {} ({})", subject, to, message_id)
        return True

    # notify_host routine
    def notify_host(self, visitor: VisitorRequest) -> bool:
        if not visitor.host_email:
            logger.warning("No host email for visitor {}", visitor.visitor_code)
            return False
        approve_url, reject_url = decision_links(visitor.decision_token, self.base_url)
        html = self._render(
            "host_request.html",
            visitor=visitor,
            approve_url=approve_url,
            reject_url=reject_url,
            ttl_minutes=max(1, PASS_TIMINGS.token_ttl_secs // 60),
        )
        return self._send(
            visitor.host_email,
            f"Approval Needed: Visitor {visitor.name} wants to meet you",
            html,
        )

    # notify_visitor_approved routine
    def notify_visitor_approved(
        self, visitor: VisitorRequest, pass_bytes: bytes | None
    ) -> bool:
        if not visitor.email:
            logger.info("Visitor {} has no email; skipping approval mail", visitor.visitor_code)
            return False
        html = self._render(
            "visitor_approved.html",
            visitor=visitor,
            has_pass=bool(pass_bytes),
            date=format_ts(visitor.created_at, "%d %b %Y"),
            time=format_ts(visitor.created_at, "%I:%M %p"),
            company=cfg.get("branding", {}).get("company_name", ""),
        )
        attachments = []
        subject = "Your Visit Has Been Approved"
        if pass_bytes:
            attachments.append(Attachment(pass_filename(visitor), pass_bytes))
            subject += " - Visitor Pass Attached"
        return self._send(visitor.email, subject, html, attachments)

    # notify_visitor_rejected routine
    def notify_visitor_rejected(self, visitor: VisitorRequest) -> bool:
        if not visitor.email:
            logger.info("Visitor {} has no email; skipping rejection mail", visitor.visitor_code)
            return False
        html = self._render("visitor_rejected.html", visitor=visitor)
        return self._send(visitor.email, "Your Visit Request Has Been Declined", html)
