import asyncio
from typing import Any, Awaitable, Callable

from fastapi import FastAPI
from loguru import logger

from config import PASS_TIMINGS
from core.exceptions import StoreUnavailable
from modules.visitor_lifecycle import VisitorLifecycle


async def start_worker(name: str, coro: Callable[[], Awaitable[None]]) -> None:
    """Run a worker coroutine with standard logging and error handling."""
    logger.info("Starting {}", name)
    try:
        await coro()
    except (RuntimeError, OSError) as e:
        logger.exception("{} failed: {}", name, e)
        raise
    finally:
        logger.info("{} stopped", name)


async def expiry_sweeper(
    lifecycle: VisitorLifecycle, interval: float | None = None
) -> None:
    """Expire abandoned pending requests until cancelled.

    A failing pass is logged and the loop carries on with the next one.
    """
    while True:
        try:
            await asyncio.to_thread(lifecycle.expire_due)
        except StoreUnavailable as e:
            logger.warning("Expiry sweep skipped: {}", e)
        except Exception:
            logger.exception("Expiry sweep failed")
        await asyncio.sleep(interval or PASS_TIMINGS.sweep_interval_secs)


async def start_background_workers(
    app: FastAPI, cfg: dict[str, Any]
) -> list[asyncio.Task[None]]:
    """Create background tasks for the running application."""
    lifecycle: VisitorLifecycle = app.state.lifecycle
    interval = float(cfg.get("sweep_interval_secs", PASS_TIMINGS.sweep_interval_secs))
    worker_defs = [
        ("expiry-sweeper", lambda: expiry_sweeper(lifecycle, interval)),
    ]
    return [
        asyncio.create_task(start_worker(name, worker), name=name)
        for name, worker in worker_defs
    ]


async def stop_background_workers(tasks: list[asyncio.Task[None]]) -> None:
    logger.info("Cancelling background tasks")
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Task {} cancelled", task.get_name() or id(task))
        except (RuntimeError, OSError) as e:
            logger.exception("Task {} error: {}", task.get_name() or id(task), e)
