"""Application entry point orchestrating services and routers."""

from __future__ import annotations

import json
import os
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from loguru import logger

import logging_config

# allow imports relative to this directory without hardcoding its name
if str(Path(__file__).resolve().parent) not in sys.path:
    sys.path.insert(0, str(Path(__file__).resolve().parent))

from fastapi import FastAPI, Request
from fastapi.templating import Jinja2Templates
from redis import Redis
from redis.exceptions import RedisError

from config import config as shared_config
from config import set_config
from core.config import load_config
from core.exceptions import register_exception_handlers
from modules.decision_tokens import DecisionTokenStore
from modules.email_utils import Mailer, SmtpMailer
from modules.notifications import NotificationDispatcher
from modules.pass_renderer import PassRenderer
from modules.visitor_lifecycle import VisitorLifecycle
from modules.visitor_store import VisitorStore
from routers import visitors
from startup import start_background_workers, stop_background_workers
from utils.redis import get_sync_client

logger = logger.bind(module="app")

BASE_DIR = Path(__file__).parent
TEMPLATE_DIR = BASE_DIR / "templates"


def _read_config(path: str) -> dict[str, Any]:
    logger.info("Loading config from {}", path)
    try:
        return load_config(path)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.exception("Failed to read config: {}", e)
        raise SystemExit(1)


def _connect_redis(url: str) -> Redis:
    """Connect to Redis and return client or exit on failure."""
    try:
        client = get_sync_client(url)
        logger.info("Connected to Redis at {}", url)
        return client
    except (RedisError, OSError) as e:
        logger.exception("Redis connection failed: {}", e)
        raise SystemExit(1)


# Wire the visitor workflow onto app.state
def build_services(
    app: FastAPI,
    cfg: dict[str, Any],
    redis_client: Redis,
    *,
    mailer: Mailer | None = None,
    renderer: PassRenderer | None = None,
) -> VisitorLifecycle:
    """Create the store, token, renderer and mail services for ``app``."""
    set_config(cfg)
    store = VisitorStore(redis_client)
    tokens = DecisionTokenStore(store)
    dispatcher = NotificationDispatcher(
        mailer or SmtpMailer(cfg.get("email") or {}), base_url=cfg.get("base_url")
    )
    lifecycle = VisitorLifecycle(store, tokens, renderer or PassRenderer(), dispatcher)

    app.state.config = cfg
    app.state.redis_client = redis_client
    app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    app.state.lifecycle = lifecycle
    return lifecycle


# Initialize configuration and services
def init_app(app: FastAPI, config_path: str = "config.json") -> dict[str, Any]:
    """Load configuration, connect to Redis and configure application state."""
    config_path_local = (
        config_path if os.path.isabs(config_path) else str(BASE_DIR / config_path)
    )
    cfg = _read_config(config_path_local)
    logging_config.set_log_level(cfg.get("log_level", logging_config.LOG_LEVEL))
    redis_client = _connect_redis(cfg["redis_url"])
    build_services(app, cfg, redis_client)
    app.state.config_path = config_path_local
    return cfg


# Lifespan handler consolidating startup and shutdown logic
@asynccontextmanager
async def lifespan(app: FastAPI):
    start_time = time.time()
    if getattr(app.state, "lifecycle", None) is None:
        init_app(app, os.getenv("CONFIG_PATH", "config.json"))
    cfg = app.state.config

    tasks = await start_background_workers(app, cfg)
    app.state.worker_tasks = tasks
    logger.info("Startup complete in {:.2f}s", time.time() - start_time)
    try:
        yield
    finally:
        await stop_background_workers(tasks)
        logger.info("All workers stopped")


def create_app() -> FastAPI:
    """Return a new application with routes and error handlers attached."""
    application = FastAPI(title="Visitor Pass Service", lifespan=lifespan)
    register_exception_handlers(application)
    application.include_router(visitors.router)

    @application.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Report liveness and whether Redis answers."""
        redis_ok = False
        client = getattr(request.app.state, "redis_client", None)
        if client is not None:
            try:
                redis_ok = bool(client.ping())
            except (RedisError, OSError):
                redis_ok = False
        return {"status": "ok", "redis": redis_ok}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", shared_config.get("port", 8000))),
    )
