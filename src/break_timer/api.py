"""
Break Timer API: FastAPI local server around one BreakTimerService.

This server provides:
- Timer status and work/break controls for the popup UI
- Activity and focus event intake from the browser activity source
- Break settings (work threshold)
- Recent notification intents and server logs for polling clients
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .activity import ActivityRouter, BrowserFocusChanged, TabActivated, UserActivity
from .config import EngineConfig, get_config
from .logs import install_log_buffer, logger, recent_logs
from .notifications import BreakType, CollectingDispatcher
from .service import BreakTimerService
from .settings import SettingsManager
from .store import SqliteStore


# Pydantic Models
class StartBreakRequest(BaseModel):
    break_type: BreakType
    duration_minutes: Optional[float] = None


class FocusRequest(BaseModel):
    focused: bool


class ThresholdRequest(BaseModel):
    minutes: int


class OperationResponse(BaseModel):
    success: bool
    status: dict


def _service(request: Request) -> BreakTimerService:
    return request.app.state.service


def _router(request: Request) -> ActivityRouter:
    return request.app.state.router


def _result(service: BreakTimerService, ok: bool, operation: str) -> OperationResponse:
    if not ok:
        status = service.get_timer_status()
        raise HTTPException(
            status_code=409,
            detail=f"{operation} not allowed in mode {status.mode.value}",
        )
    return OperationResponse(success=True, status=service.get_timer_status().to_export_dict())


def create_app(config: EngineConfig | None = None) -> FastAPI:
    config = config or get_config()
    install_log_buffer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = AsyncIOScheduler()
        store = SqliteStore(config.db_path)
        await store.init()
        settings = SettingsManager(store)
        await settings.load()
        dispatcher = CollectingDispatcher()
        service = BreakTimerService(
            store, settings, scheduler, dispatcher=dispatcher, config=config
        )
        scheduler.start()
        await service.start()
        app.state.service = service
        app.state.settings = settings
        app.state.dispatcher = dispatcher
        app.state.router = ActivityRouter(service, scheduler, config.tab_debounce_ms)
        logger.info(f"Break timer API started (db={config.db_path})")
        yield

        await app.state.router.flush()
        await service.stop()
        scheduler.shutdown(wait=False)
        logger.info("Break timer API stopped")

    app = FastAPI(
        title="Break Timer API",
        description="Work/break timer engine with restart recovery",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ---- Timer ----

    @app.get("/api/timer")
    async def get_timer(request: Request):
        return _service(request).get_timer_status().to_export_dict()

    @app.post("/api/timer/start", response_model=OperationResponse)
    async def start_timer(request: Request):
        service = _service(request)
        return _result(service, await service.start_work_timer(), "start")

    @app.post("/api/timer/pause", response_model=OperationResponse)
    async def pause_timer(request: Request):
        service = _service(request)
        return _result(service, await service.pause_work_timer(), "pause")

    @app.post("/api/timer/resume", response_model=OperationResponse)
    async def resume_timer(request: Request):
        service = _service(request)
        return _result(service, await service.resume_work_timer(), "resume")

    @app.post("/api/timer/reset", response_model=OperationResponse)
    async def reset_timer(request: Request):
        """Manual break trigger: the user already took a break elsewhere."""
        service = _service(request)
        return _result(service, await service.reset_work_timer(), "reset")

    # ---- Breaks ----

    @app.post("/api/break/start", response_model=OperationResponse)
    async def start_break(body: StartBreakRequest, request: Request):
        service = _service(request)
        if body.duration_minutes is not None and body.duration_minutes <= 0:
            raise HTTPException(status_code=422, detail="duration_minutes must be positive")
        ok = await service.start_break(body.break_type, body.duration_minutes)
        return _result(service, ok, "start_break")

    @app.post("/api/break/end", response_model=OperationResponse)
    async def end_break(request: Request):
        service = _service(request)
        return _result(service, await service.end_break(), "end_break")

    @app.post("/api/break/cancel", response_model=OperationResponse)
    async def cancel_break(request: Request):
        service = _service(request)
        return _result(service, await service.cancel_break(), "cancel_break")

    # ---- Activity source ----

    @app.post("/api/activity")
    async def post_activity(request: Request):
        await _router(request).handle(UserActivity())
        return {"success": True}

    @app.post("/api/focus")
    async def post_focus(body: FocusRequest, request: Request):
        await _router(request).handle(BrowserFocusChanged(body.focused))
        return {"success": True, "focused": body.focused}

    @app.post("/api/tabs/{tab_id}/activate")
    async def activate_tab(tab_id: int, request: Request):
        await _router(request).handle(TabActivated(tab_id))
        return {"success": True, "tab_id": tab_id}

    # ---- Settings ----

    @app.get("/api/settings")
    async def get_settings(request: Request):
        return request.app.state.settings.get_settings().to_storage()

    @app.put("/api/settings/threshold")
    async def put_threshold(body: ThresholdRequest, request: Request):
        if not await _service(request).update_work_time_threshold(body.minutes):
            raise HTTPException(
                status_code=422,
                detail=f"Invalid work time threshold: {body.minutes} minutes",
            )
        return {"success": True, "minutes": body.minutes}

    # ---- Polling ----

    @app.get("/api/intents")
    async def get_intents(request: Request, drain: bool = True):
        dispatcher: CollectingDispatcher = request.app.state.dispatcher
        intents = dispatcher.drain() if drain else dispatcher.recent
        return {"intents": [intent.to_dict() for intent in intents]}

    @app.get("/api/logs")
    async def get_logs(limit: int = 50):
        return {"logs": recent_logs(limit)}

    @app.get("/health")
    async def health_check(request: Request):
        service = _service(request)
        return {
            "status": "healthy",
            "mode": service.engine.mode.value,
            "pending_checkpoint": service.needs_checkpoint,
        }

    return app
