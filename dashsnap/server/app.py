"""HTTP boundary: manual trigger, schedule listing and health."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from dashsnap import __version__
from dashsnap.browser.errors import CaptureExecutionError, ScheduleNotFoundError
from dashsnap.browser.health import HealthMonitor
from dashsnap.browser.launcher import ChromiumLauncher
from dashsnap.browser.navigation import NavigationController
from dashsnap.browser.recovery import RecoveryManager
from dashsnap.browser.session import BrowserSessionManager
from dashsnap.capture.scheduler import CaptureScheduler
from dashsnap.config.loader import ensure_workspace
from dashsnap.config.schema import Config
from dashsnap.cron.store import ScheduleStore

router = APIRouter()


def get_scheduler(request: Request) -> CaptureScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


@router.post("/api/schedules/{schedule_id}/send")
async def send_schedule(schedule_id: str, scheduler: CaptureScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    try:
        result = await scheduler.execute_now(schedule_id)
    except ScheduleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except CaptureExecutionError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"Manual send of {schedule_id} failed")
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {**result.to_dict(), "success": True}


@router.get("/api/schedules")
async def list_schedules(scheduler: CaptureScheduler = Depends(get_scheduler)) -> list[dict[str, Any]]:
    return [s.model_dump(mode="json") for s in scheduler.store.load()]


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    session: BrowserSessionManager | None = getattr(request.app.state, "session", None)
    if session is None:
        browser: dict[str, Any] = {"healthy": False, "reason": "browser not initialized"}
    else:
        browser = session.stats()

    healthy = bool(browser.get("healthy"))
    body = {
        "status": "ok" if healthy else "degraded",
        "browser": browser,
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(body, status_code=200 if healthy else 503)


def create_app(
    scheduler: CaptureScheduler | None = None,
    session: BrowserSessionManager | None = None,
    lifespan: Any = None,
) -> FastAPI:
    """Build the FastAPI app around already constructed components."""
    app = FastAPI(title="dashsnap", version=__version__, lifespan=lifespan)
    app.state.scheduler = scheduler
    app.state.session = session
    app.state.started_at = time.monotonic()
    app.include_router(router)
    return app


def build_session(config: Config) -> BrowserSessionManager:
    health = HealthMonitor(
        max_failures=config.health.max_failures,
        stale_after=config.health.stale_after_s,
    )
    recovery = RecoveryManager(
        health,
        max_attempts=config.recovery.max_attempts,
        backoff_base=config.recovery.backoff_base_s,
        backoff_max=config.recovery.backoff_max_s,
        ping_timeout=config.recovery.ping_timeout_s,
    )
    return BrowserSessionManager(
        ChromiumLauncher(config.browser),
        health=health,
        recovery=recovery,
        restart_after_captures=config.browser.restart_after_captures,
        shutdown_timeout=config.browser.shutdown_timeout_s,
    )


def build_scheduler(config: Config, session: BrowserSessionManager) -> CaptureScheduler:
    navigator = NavigationController(
        config.target.url,
        token=config.target.token,
        client_side_routing=config.target.client_side_routing,
        default_wait_ms=config.scheduler.default_wait_ms,
        cold_start_extra_ms=config.scheduler.cold_start_extra_wait_ms,
    )
    return CaptureScheduler(
        session,
        navigator,
        ScheduleStore(config.schedules_path),
        ensure_workspace(config),
        config=config.scheduler,
        browser_config=config.browser,
        header_height=config.target.header_height,
    )


def build_app(config: Config) -> FastAPI:
    """
    Build the full service: browser session, scheduler and HTTP app.

    The scheduler starts with the app and is stopped, followed by the
    browser, when the app shuts down.
    """
    session = build_session(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        scheduler = build_scheduler(config, session)
        await scheduler.start()
        app.state.scheduler = scheduler
        logger.info(f"dashsnap ready on {config.server.host}:{config.server.port}")
        try:
            yield
        finally:
            app.state.scheduler = None
            await scheduler.stop()
            await session.shutdown()

    return create_app(session=session, lifespan=lifespan)
