"""Visitor request state machine.

Status moves only from ``pending`` to one of the terminal states
``approved``, ``rejected`` or ``expired``. Every transition goes through
:meth:`VisitorStore.conditional_update_status`, so when two events race
exactly one of them commits and runs its side effects.

Side effects run after the commit and never undo it:

=========  ===============  ==========  ==============================
current    event            next        side effect
=========  ===============  ==========  ==============================
pending    decide approved  approved    render pass, mail with attachment
pending    decide rejected  rejected    mail without attachment
pending    expire           expired     none
terminal   decide           unchanged   :class:`AlreadyDecided`
terminal   expire           unchanged   none
=========  ===============  ==========  ==============================
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime
from typing import Callable, Iterable

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from config import PASS_TIMINGS
from config import config as cfg
from core.exceptions import (
    AlreadyDecided,
    DuplicateCode,
    InvalidDecision,
    NotFoundError,
    PassNotIssued,
    ValidationError,
)
from modules import qr_encoder
from modules.decision_tokens import DecisionTokenStore
from modules.notifications import NotificationDispatcher
from modules.pass_renderer import PassRenderer
from modules.visitor_store import VisitorStore
from schemas.visitor import (
    DECISIONS,
    RegistrationRequiredFields,
    VisitorRegistration,
    VisitorRequest,
    VisitorStatus,
)
from utils.image import decode_base64_image
from utils.time import now_ts

logger = logger.bind(module="lifecycle")

Listener = Callable[[str, VisitorRequest], None]


def missing_registration_fields(reg: VisitorRegistration) -> list[str]:
    """Return list of missing required fields for a registration."""
    try:
        RegistrationRequiredFields(**reg.model_dump())
        return []
    except PydanticValidationError as exc:
        return [str(err.get("loc", [""])[0]) for err in exc.errors()]


def resolve_host_email(reg: VisitorRegistration) -> str:
    """Return the submitted host email, the configured one for ``to_meet``,
    or the default host email."""
    if reg.host_email:
        return reg.host_email
    hosts = cfg.get("hosts") or {}
    if reg.to_meet and hosts.get(reg.to_meet):
        return hosts[reg.to_meet]
    return cfg.get("default_host_email", "")


def parse_decision(value) -> VisitorStatus:
    try:
        decision = VisitorStatus(str(value or "").strip().lower())
    except ValueError:
        decision = None
    if decision not in DECISIONS:
        raise InvalidDecision("Please use 'approved' or 'rejected' status.")
    return decision


class VisitorLifecycle:
    """Registration, decision and expiry of visitor requests."""

    def __init__(
        self,
        store: VisitorStore,
        tokens: DecisionTokenStore,
        renderer: PassRenderer,
        dispatcher: NotificationDispatcher,
        *,
        clock: Callable[[], float] = now_ts,
        listeners: Iterable[Listener] = (),
    ):
        self.store = store
        self.tokens = tokens
        self.renderer = renderer
        self.dispatcher = dispatcher
        self.clock = clock
        self._listeners: list[Listener] = list(listeners)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str, record: VisitorRequest) -> None:
        for listener in self._listeners:
            try:
                listener(event, record)
            except Exception:
                logger.exception("Listener failed for {} on {}", event, record.id)

    def generate_code(self, at: float | None = None) -> str:
        """Return a human-readable ``PREFIX-YEAR-NNNN`` visitor code."""
        year = datetime.fromtimestamp(self.clock() if at is None else at).year
        prefix = str(cfg.get("visitor_code_prefix", "LOGIC")).upper()
        return f"{prefix}-{year}-{1000 + secrets.randbelow(9000)}"

    # register routine
    def register(self, fields: VisitorRegistration | dict) -> VisitorRequest:
        """Create a pending request and ask the host for a decision.

        Raises :class:`ValidationError` before anything is written. The QR
        artifact is built before the record is stored, so a
        :class:`QrEncodingError` leaves no record behind.
        """
        if isinstance(fields, VisitorRegistration):
            reg = fields
        else:
            try:
                reg = VisitorRegistration.model_validate(fields)
            except PydanticValidationError as exc:
                bad = [str(err.get("loc", [""])[0]) for err in exc.errors()]
                raise ValidationError(bad, "invalid registration fields") from exc
        missing = missing_registration_fields(reg)
        host_email = resolve_host_email(reg)
        if not host_email:
            missing.append("host_email")
        if missing:
            raise ValidationError(missing)
        try:
            decode_base64_image(reg.photo)
        except ValueError as exc:
            raise ValidationError(["photo"], "photo is not a valid base64 image") from exc

        now = self.clock()
        expires_at = now + PASS_TIMINGS.request_ttl_secs
        retries = int(cfg.get("code_retry_limit", 5))
        for attempt in range(1, retries + 1):
            code = self.generate_code(now)
            if self.store.code_exists(code):
                logger.debug("Visitor code {} taken (attempt {})", code, attempt)
                continue
            qr = qr_encoder.encode(code, reg.name, expires_at)
            token, token_expires_at = self.tokens.generate(now)
            record = VisitorRequest(
                id=uuid.uuid4().hex,
                name=reg.name,
                mobile=reg.mobile,
                email=reg.email,
                national_id=reg.national_id,
                purpose=reg.purpose,
                to_meet=reg.to_meet,
                host_email=host_email,
                photo=reg.photo,
                visitor_code=code,
                qr_code=qr.data_uri,
                qr_payload=qr.payload,
                decision_token=token,
                token_expires_at=token_expires_at,
                expires_at=expires_at,
                status=VisitorStatus.PENDING,
                created_at=now,
            )
            try:
                self.store.create(record)
            except DuplicateCode:
                logger.debug("Visitor code {} claimed concurrently (attempt {})", code, attempt)
                continue
            break
        else:
            raise DuplicateCode(f"no free visitor code after {retries} attempts")

        logger.info("Registered visitor {} ({})", record.visitor_code, record.id)
        self._emit("visitor_registered", record)
        if not self.dispatcher.notify_host(record):
            logger.warning(
                "Visitor {} was registered but host {} may not have been notified",
                record.visitor_code,
                host_email,
            )
        return record

    # decide routine
    def decide(self, token: str, decision) -> VisitorRequest:
        """Apply a host decision addressed by the emailed token."""
        status = parse_decision(decision)
        record = self.tokens.validate(token)
        return self._apply_decision(record, status)

    def decide_by_id(
        self, visitor_id: str, decision, approver: str | None = None
    ) -> VisitorRequest:
        """Apply a decision addressed by record id.

        Callers are responsible for authorizing this entry point.
        """
        status = parse_decision(decision)
        record = self.get(visitor_id)
        if not record.is_pending:
            raise AlreadyDecided(record.status.value)
        return self._apply_decision(record, status, approver)

    def _apply_decision(
        self,
        record: VisitorRequest,
        status: VisitorStatus,
        approver: str | None = None,
    ) -> VisitorRequest:
        fields = {"decision_at": self.clock(), "approved_by": None}
        if status == VisitorStatus.APPROVED:
            fields["approved_by"] = approver or record.to_meet or cfg.get("default_host", "Host")
        updated = self.store.conditional_update_status(
            record.id, VisitorStatus.PENDING, status, fields
        )
        if updated is None:
            current = self.store.find_by_id(record.id)
            raise AlreadyDecided(current.status.value if current else "processed")
        logger.info("Visitor {} {}", updated.visitor_code, updated.status.value)
        self._emit("visitor_decision", updated)
        self._notify_decision(updated)
        return updated

    def _notify_decision(self, record: VisitorRequest) -> None:
        try:
            if record.status == VisitorStatus.APPROVED:
                try:
                    pdf = self.renderer.render(record)
                except Exception:
                    logger.exception("Pass generation failed for {}", record.visitor_code)
                    pdf = None
                self.dispatcher.notify_visitor_approved(record, pdf)
            else:
                self.dispatcher.notify_visitor_rejected(record)
        except Exception:
            logger.exception("Decision notification failed for {}", record.visitor_code)

    def _expire(self, record: VisitorRequest) -> tuple[VisitorRequest, bool]:
        if not record.is_pending:
            return record, False
        updated = self.store.conditional_update_status(
            record.id, VisitorStatus.PENDING, VisitorStatus.EXPIRED
        )
        if updated is None:
            return self.store.find_by_id(record.id) or record, False
        logger.info("Visitor {} expired", updated.visitor_code)
        self._emit("visitor_expired", updated)
        return updated, True

    # expire routine
    def expire(self, visitor_id: str) -> VisitorRequest:
        """Expire a pending request; a decided one is returned unchanged."""
        record, _ = self._expire(self.get(visitor_id))
        return record

    def expire_due(self) -> int:
        """Expire every pending request past its window; return the count."""
        count = 0
        for visitor_id in self.store.due_for_expiry(self.clock()):
            record = self.store.find_by_id(visitor_id)
            if record is None:
                continue
            _, changed = self._expire(record)
            count += int(changed)
        if count:
            logger.info("Expired {} pending visitor requests", count)
        return count

    def resend_host_notification(self, visitor_id: str) -> VisitorRequest:
        """Re-issue the decision token and mail the host again.

        The request window is extended to cover the new link.
        """
        record = self.get(visitor_id)
        if not record.is_pending:
            raise AlreadyDecided(record.status.value)
        self.tokens.issue(visitor_id)
        record = self.get(visitor_id)
        if not self.dispatcher.notify_host(record):
            logger.warning("Resent approval request for {} was not delivered", record.visitor_code)
        return record

    def get(self, visitor_id: str) -> VisitorRequest:
        record = self.store.find_by_id(visitor_id)
        if record is None:
            raise NotFoundError(f"visitor {visitor_id} not found")
        return record

    def list_all(self) -> list[VisitorRequest]:
        return self.store.list_all(newest_first=True)

    def render_pass(self, visitor_id: str) -> bytes:
        """Return the pass PDF of an approved request."""
        record = self.get(visitor_id)
        if record.status != VisitorStatus.APPROVED:
            raise PassNotIssued(f"visitor request is {record.status.value}")
        return self.renderer.render(record)
