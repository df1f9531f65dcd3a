"""SMTP mail sending for visitor notifications."""

from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Protocol, Sequence

from loguru import logger

from core.exceptions import MailError

logger = logger.bind(module="email")


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class Mailer(Protocol):
    """Capability used by the notification dispatcher."""

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Sequence[Attachment] = (),
    ) -> str: ...


def build_message(
    subject: str,
    html: str,
    recipients: Sequence[str],
    from_addr: str,
    attachments: Sequence[Attachment] = (),
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = ", ".join(recipients)
    domain = from_addr.split("@", 1)[1] if "@" in from_addr else None
    msg["Message-ID"] = make_msgid(domain=domain)
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")
    for att in attachments:
        maintype, _, subtype = att.content_type.partition("/")
        msg.add_attachment(
            att.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=att.filename,
        )
    return msg


# send_email routine
def send_email(
    subject: str,
    html: str,
    recipients: Sequence[str],
    cfg: dict,
    attachments: Sequence[Attachment] = (),
    timeout: float = 15.0,
) -> str:
    """Send an HTML email using the SMTP settings in ``cfg``.

    Returns the ``Message-ID`` of the sent mail. Any SMTP or socket failure
    is raised as :class:`MailError`.
    """
    host = cfg.get("smtp_host")
    if not host:
        raise MailError("smtp_host not configured")
    if not recipients:
        raise MailError("no recipients")
    port = int(cfg.get("smtp_port") or (465 if cfg.get("use_ssl") else 587))
    from_addr = cfg.get("from_addr") or cfg.get("smtp_user") or ""
    msg = build_message(subject, html, recipients, from_addr, attachments)
    try:
        if cfg.get("use_ssl"):
            server = smtplib.SMTP_SSL(
                host, port, timeout=timeout, context=ssl.create_default_context()
            )
        else:
            server = smtplib.SMTP(host, port, timeout=timeout)
        with server:
            if cfg.get("use_tls", True) and not cfg.get("use_ssl"):
                server.starttls(context=ssl.create_default_context())
            if cfg.get("smtp_user"):
                server.login(cfg["smtp_user"], cfg.get("smtp_pass", ""))
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email sending failed to {}: {}", ", ".join(recipients), exc)
        raise MailError(f"failed to send '{subject}'") from exc
    logger.info("Email sent: {}", msg["Message-ID"])
    return msg["Message-ID"]


class SmtpMailer:
    """:class:`Mailer` bound to one SMTP configuration."""

    def __init__(self, cfg: dict):
        self.cfg = dict(cfg or {})

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        return send_email(subject, html, [to], self.cfg, attachments)
