"""Shared pytest fixtures for app testing."""

import io
import sys
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from config import set_config
from core.config import load_config
from core.exceptions import MailError, RenderError
from modules.decision_tokens import DecisionTokenStore
from modules.notifications import NotificationDispatcher
from modules.pass_renderer import CanvasPassRenderer, PassRenderer
from modules.visitor_lifecycle import VisitorLifecycle
from modules.visitor_store import VisitorStore
from schemas.visitor import VisitorRequest, VisitorStatus
from utils.image import to_data_uri

START_TS = 1_767_225_600.0  # 2026-01-01 00:00:00 UTC


class FakeClock:
    """Manually advanced clock injected wherever ``now_ts`` is used."""

    def __init__(self, now: float = START_TS):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class RecordingMailer:
    """Mailer that keeps sent messages in memory."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html, attachments=()):
        if self.fail:
            raise MailError("smtp down")
        self.sent.append(
            {"to": to, "subject": subject, "html": html, "attachments": list(attachments)}
        )
        return f"<msg-{len(self.sent)}@test>"


class BrokenRenderer:
    """Primary strategy that always fails, forcing the fallback."""

    name = "broken"

    def __init__(self):
        self.calls = 0

    def render(self, visitor):
        self.calls += 1
        raise RenderError("page never became ready")


def _png_data_uri(color="navy") -> str:
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), color).save(buf, format="PNG")
    return to_data_uri(buf.getvalue(), "image/png")


PHOTO = _png_data_uri()


@pytest.fixture(autouse=True)
def _reset_config():
    set_config({})
    yield
    set_config({})


@pytest.fixture
def settings():
    cfg = load_config(
        "",
        data={
            "base_url": "http://gate.test",
            "default_host": "Front Desk",
            "default_host_email": "frontdesk@example.com",
            "hosts": {"Ravi": "ravi@example.com"},
        },
    )
    set_config(cfg)
    return cfg


@pytest.fixture
def photo() -> str:
    return PHOTO


@pytest.fixture
def registration() -> dict:
    return {
        "name": "Asha",
        "mobile": "9000000001",
        "email": "asha@example.com",
        "aadhar": "123412341234",
        "purpose": "Interview",
        "toMeet": "Ravi",
        "photo": PHOTO,
    }


@pytest.fixture(scope="function")
def redis_client():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def store(redis_client) -> VisitorStore:
    return VisitorStore(redis_client)


@pytest.fixture
def renderer() -> PassRenderer:
    return PassRenderer(primary=BrokenRenderer(), fallback=CanvasPassRenderer())


@pytest.fixture
def lifecycle(settings, store, clock, mailer, renderer) -> VisitorLifecycle:
    tokens = DecisionTokenStore(store, clock=clock)
    dispatcher = NotificationDispatcher(mailer, base_url=settings["base_url"])
    return VisitorLifecycle(store, tokens, renderer, dispatcher, clock=clock)


@pytest.fixture
def make_record(clock):
    def _make(**overrides) -> VisitorRequest:
        now = clock()
        fields = {
            "id": "v1",
            "name": "Asha",
            "mobile": "9000000001",
            "email": "asha@example.com",
            "national_id": "123412341234",
            "purpose": "Interview",
            "to_meet": "Ravi",
            "host_email": "ravi@example.com",
            "photo": PHOTO,
            "visitor_code": "LOGIC-2026-1234",
            "qr_code": _png_data_uri("black"),
            "decision_token": "a" * 32,
            "token_expires_at": now + 600,
            "expires_at": now + 600,
            "status": VisitorStatus.PENDING,
            "created_at": now,
        }
        fields.update(overrides)
        return VisitorRequest(**fields)

    return _make


@pytest.fixture
def client(settings, redis_client, mailer, renderer):
    import app as app_module

    application = app_module.create_app()
    app_module.build_services(
        application, settings, redis_client, mailer=mailer, renderer=renderer
    )
    with TestClient(application) as c:
        yield c
