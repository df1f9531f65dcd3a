"""Purpose: Test visitor_lifecycle module."""

import re

import pytest

from config import set_config
from core.exceptions import (
    AlreadyDecided,
    DuplicateCode,
    InvalidDecision,
    NotFoundError,
    PassNotIssued,
    QrEncodingError,
    RenderError,
    TokenExpired,
    TokenNotFound,
    ValidationError,
)
from modules import visitor_lifecycle
from modules.notifications import decision_links
from modules.visitor_store import CODE_KEY
from schemas.visitor import VisitorStatus


# Test registration stores a pending request and mails the host
def test_register_creates_pending_request(lifecycle, registration, mailer, clock):
    rec = lifecycle.register(registration)
    assert rec.status == VisitorStatus.PENDING
    assert re.fullmatch(r"LOGIC-\d{4}-\d{4}", rec.visitor_code)
    assert rec.expires_at == clock() + 600
    assert rec.token_expires_at == clock() + 600
    assert rec.host_email == "ravi@example.com"
    assert rec.national_id == "123412341234"
    assert rec.qr_code.startswith("data:image/png;base64,")
    assert rec.qr_data()["code"] == rec.visitor_code
    assert lifecycle.get(rec.id) == rec

    (msg,) = mailer.sent
    assert msg["to"] == "ravi@example.com"
    approve, _ = decision_links(rec.decision_token, "http://gate.test")
    assert approve in msg["html"]


def test_register_uses_default_host_email(lifecycle, registration):
    registration["toMeet"] = "Someone Else"
    assert lifecycle.register(registration).host_email == "frontdesk@example.com"


def test_register_prefers_submitted_host_email(lifecycle, registration):
    registration["hostEmail"] = "boss@example.com"
    assert lifecycle.register(registration).host_email == "boss@example.com"


# Test all missing fields are reported together and nothing is stored
def test_register_missing_fields(lifecycle, registration, mailer):
    registration.update(name="  ", photo="")
    with pytest.raises(ValidationError) as exc:
        lifecycle.register(registration)
    assert set(exc.value.missing) == {"name", "photo"}
    assert lifecycle.list_all() == []
    assert mailer.sent == []


def test_register_without_any_host_email(lifecycle, registration, settings):
    set_config({**settings, "default_host_email": "", "hosts": {}})
    with pytest.raises(ValidationError) as exc:
        lifecycle.register(registration)
    assert exc.value.missing == ["host_email"]


def test_register_rejects_bad_photo(lifecycle, registration):
    registration["photo"] = "data:image/png;base64,@@@"
    with pytest.raises(ValidationError) as exc:
        lifecycle.register(registration)
    assert exc.value.missing == ["photo"]


# Test a QR failure leaves no record and sends no mail
def test_qr_failure_leaves_no_record(lifecycle, registration, mailer, monkeypatch):
    def fail(*a, **k):
        raise QrEncodingError("too long")

    monkeypatch.setattr(visitor_lifecycle.qr_encoder, "encode", fail)
    with pytest.raises(QrEncodingError):
        lifecycle.register(registration)
    assert lifecycle.list_all() == []
    assert mailer.sent == []


# Test a colliding visitor code is retried with a fresh one
def test_register_retries_taken_code(lifecycle, registration, redis_client, monkeypatch):
    redis_client.set(CODE_KEY.format("LOGIC-2026-1111"), "someone")
    codes = iter(["LOGIC-2026-1111", "LOGIC-2026-2222"])
    monkeypatch.setattr(lifecycle, "generate_code", lambda at=None: next(codes))
    assert lifecycle.register(registration).visitor_code == "LOGIC-2026-2222"


def test_register_gives_up_when_codes_exhausted(lifecycle, registration, redis_client, monkeypatch):
    redis_client.set(CODE_KEY.format("LOGIC-2026-1111"), "someone")
    monkeypatch.setattr(lifecycle, "generate_code", lambda at=None: "LOGIC-2026-1111")
    with pytest.raises(DuplicateCode):
        lifecycle.register(registration)


# Test a host mail failure does not undo registration
def test_mail_failure_keeps_registration(lifecycle, registration, mailer):
    mailer.fail = True
    rec = lifecycle.register(registration)
    assert lifecycle.get(rec.id).status == VisitorStatus.PENDING


# Test approval commits and mails the visitor their pass
def test_approve_sends_pass(lifecycle, registration, mailer, clock):
    rec = lifecycle.register(registration)
    clock.advance(120)
    approved = lifecycle.decide(rec.decision_token, "approved")
    assert approved.status == VisitorStatus.APPROVED
    assert approved.decision_at == clock()
    assert approved.approved_by == "Ravi"

    msg = mailer.sent[-1]
    assert msg["to"] == "asha@example.com"
    (att,) = msg["attachments"]
    assert att.filename == f"visitor-pass-{rec.visitor_code}.pdf"
    assert att.content.startswith(b"%PDF")
    assert lifecycle.render_pass(rec.id).startswith(b"%PDF")


def test_approved_by_defaults_to_default_host(lifecycle, registration):
    registration.update(toMeet="", hostEmail="boss@example.com")
    rec = lifecycle.register(registration)
    assert lifecycle.decide(rec.decision_token, "APPROVED").approved_by == "Front Desk"


def test_reject_sends_decline(lifecycle, registration, mailer):
    rec = lifecycle.register(registration)
    rejected = lifecycle.decide(rec.decision_token, "rejected")
    assert rejected.status == VisitorStatus.REJECTED
    assert rejected.approved_by is None
    assert mailer.sent[-1]["subject"] == "Your Visit Request Has Been Declined"
    assert mailer.sent[-1]["attachments"] == []
    with pytest.raises(PassNotIssued):
        lifecycle.render_pass(rec.id)


# Test a second decision on the same link changes nothing
def test_decision_is_idempotent(lifecycle, registration, mailer):
    rec = lifecycle.register(registration)
    lifecycle.decide(rec.decision_token, "approved")
    sent = len(mailer.sent)
    with pytest.raises(AlreadyDecided) as exc:
        lifecycle.decide(rec.decision_token, "rejected")
    assert exc.value.status == "approved"
    assert lifecycle.get(rec.id).status == VisitorStatus.APPROVED
    assert len(mailer.sent) == sent


def test_decide_after_token_expiry(lifecycle, registration, clock):
    rec = lifecycle.register(registration)
    clock.advance(601)
    with pytest.raises(TokenExpired):
        lifecycle.decide(rec.decision_token, "approved")
    assert lifecycle.get(rec.id).status == VisitorStatus.PENDING


def test_decide_invalid_inputs(lifecycle, registration):
    rec = lifecycle.register(registration)
    with pytest.raises(InvalidDecision):
        lifecycle.decide(rec.decision_token, "maybe")
    with pytest.raises(InvalidDecision):
        lifecycle.decide(rec.decision_token, "expired")
    with pytest.raises(TokenNotFound):
        lifecycle.decide("f" * 32, "approved")
    assert lifecycle.get(rec.id).status == VisitorStatus.PENDING


# Test a failing renderer still approves and mails without attachment
def test_render_failure_does_not_block_approval(lifecycle, registration, mailer, monkeypatch):
    def fail(visitor):
        raise RenderError("no fonts")

    monkeypatch.setattr(lifecycle.renderer, "render", fail)
    rec = lifecycle.register(registration)
    approved = lifecycle.decide(rec.decision_token, "approved")
    assert approved.status == VisitorStatus.APPROVED
    assert mailer.sent[-1]["subject"] == "Your Visit Has Been Approved"
    assert mailer.sent[-1]["attachments"] == []


def test_visitor_mail_failure_keeps_decision(lifecycle, registration, mailer):
    rec = lifecycle.register(registration)
    mailer.fail = True
    assert lifecycle.decide(rec.decision_token, "approved").status == VisitorStatus.APPROVED
    assert lifecycle.get(rec.id).status == VisitorStatus.APPROVED


def test_decide_by_id(lifecycle, registration):
    rec = lifecycle.register(registration)
    approved = lifecycle.decide_by_id(rec.id, "approved", approver="Security")
    assert approved.approved_by == "Security"
    with pytest.raises(AlreadyDecided):
        lifecycle.decide_by_id(rec.id, "rejected")
    with pytest.raises(NotFoundError):
        lifecycle.decide_by_id("ghost", "approved")


# Test expiry leaves decided requests untouched
def test_expire(lifecycle, registration):
    first = lifecycle.register(registration)
    expired = lifecycle.expire(first.id)
    assert expired.status == VisitorStatus.EXPIRED
    assert expired.decision_at is None
    with pytest.raises(AlreadyDecided) as exc:
        lifecycle.decide(first.decision_token, "approved")
    assert exc.value.status == "expired"

    second = lifecycle.register(registration)
    lifecycle.decide(second.decision_token, "rejected")
    assert lifecycle.expire(second.id).status == VisitorStatus.REJECTED


def test_expire_due(lifecycle, registration, clock, mailer):
    old = lifecycle.register(registration)
    clock.advance(300)
    fresh = lifecycle.register(registration)
    clock.advance(301)
    sent = len(mailer.sent)
    assert lifecycle.expire_due() == 1
    assert lifecycle.get(old.id).status == VisitorStatus.EXPIRED
    assert lifecycle.get(fresh.id).status == VisitorStatus.PENDING
    assert lifecycle.expire_due() == 0
    assert len(mailer.sent) == sent


def test_resend_host_notification(lifecycle, registration, mailer):
    rec = lifecycle.register(registration)
    resent = lifecycle.resend_host_notification(rec.id)
    assert resent.decision_token != rec.decision_token
    approve, _ = decision_links(resent.decision_token, "http://gate.test")
    assert approve in mailer.sent[-1]["html"]
    with pytest.raises(TokenNotFound):
        lifecycle.decide(rec.decision_token, "approved")
    lifecycle.decide(resent.decision_token, "approved")
    with pytest.raises(AlreadyDecided):
        lifecycle.resend_host_notification(rec.id)


def test_listeners_receive_events(lifecycle, registration):
    events = []
    lifecycle.add_listener(lambda event, rec: events.append((event, rec.status.value)))
    lifecycle.add_listener(lambda event, rec: 1 / 0)
    rec = lifecycle.register(registration)
    lifecycle.decide(rec.decision_token, "rejected")
    assert events == [("visitor_registered", "pending"), ("visitor_decision", "rejected")]


def test_list_all_newest_first(lifecycle, registration, clock):
    first = lifecycle.register(registration)
    clock.advance(1)
    second = lifecycle.register(registration)
    assert [r.id for r in lifecycle.list_all()] == [second.id, first.id]


# Test a resent link stays usable after the original window has passed
def test_resend_extends_request_window(lifecycle, registration, clock):
    rec = lifecycle.register(registration)
    clock.advance(540)
    resent = lifecycle.resend_host_notification(rec.id)
    assert resent.expires_at == resent.token_expires_at == clock() + 600
    clock.advance(120)
    assert lifecycle.expire_due() == 0
    assert lifecycle.decide(resent.decision_token, "approved").status == VisitorStatus.APPROVED


# Test numeric phone and ID values are accepted as strings
def test_register_accepts_numeric_fields(lifecycle, registration):
    registration.update(mobile=9000000001, aadhar=123412341234)
    rec = lifecycle.register(registration)
    assert rec.mobile == "9000000001"
    assert rec.national_id == "123412341234"


def test_register_rejects_unusable_field_types(lifecycle, registration, mailer):
    registration["mobile"] = ["9000000001"]
    with pytest.raises(ValidationError) as exc:
        lifecycle.register(registration)
    assert exc.value.missing == ["mobile"]
    assert lifecycle.list_all() == []
    assert mailer.sent == []
