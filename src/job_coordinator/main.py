"""HTTP entry point: wires the coordinator runtime into a FastAPI app."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
import signal
from typing import Any

from fastapi import FastAPI, Request
from starlette.responses import Response
import uvicorn

from job_coordinator import __version__
from job_coordinator.api.jobs import router as jobs_router
from job_coordinator.api.runs import router as runs_router
from job_coordinator.api.scheduler import router as scheduler_router
from job_coordinator.api.workers import router as workers_router
from job_coordinator.config import Settings, get_settings
from job_coordinator.database import (
    check_store_consistency,
    close_database,
    initialize_database,
)
from job_coordinator.errors import WorkerAlreadyRunningError
from job_coordinator.runtime import CoordinatorRuntime, build_runtime
from job_coordinator.services.schedules import ScheduleService, set_schedule_service
from job_coordinator.services.scheduler import SchedulerService
from job_coordinator.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = ["app", "create_app", "lifespan", "main"]

_lifecycle_logger = logging.getLogger("job_coordinator.lifecycle")


@dataclass
class RequestTracker:
    """Counts in-flight HTTP requests so shutdown can wait for them."""

    inflight: int = 0
    drained: asyncio.Event = field(default_factory=asyncio.Event)
    shutdown_requested: asyncio.Event = field(default_factory=asyncio.Event)
    shutdown_signal: str | None = None

    def __post_init__(self) -> None:
        self.drained.set()

    def enter(self) -> None:
        self.inflight += 1
        self.drained.clear()

    def leave(self) -> None:
        self.inflight = max(0, self.inflight - 1)
        if self.inflight == 0:
            self.drained.set()

    async def wait_drained(self, timeout_seconds: float) -> bool:
        if self.inflight == 0:
            return True
        try:
            await asyncio.wait_for(self.drained.wait(), timeout=timeout_seconds)
        except TimeoutError:
            return False
        return True


def _install_signal_handlers(tracker: RequestTracker) -> Callable[[], None]:
    """Chain SIGTERM/SIGINT to record the shutdown; returns an undo callable."""

    previous: dict[signal.Signals, Any] = {}

    def _on_signal(signum: int, frame: object | None) -> None:
        received = signal.Signals(signum)
        if not tracker.shutdown_requested.is_set():
            tracker.shutdown_signal = received.name
            tracker.shutdown_requested.set()
            _lifecycle_logger.warning(
                "shutdown_signal_received", extra={"signal": received.name}
            )
        chained = previous[received]
        if callable(chained):
            chained(signum, frame)

    for handled in (signal.SIGTERM, signal.SIGINT):
        previous[handled] = signal.getsignal(handled)
        signal.signal(handled, _on_signal)

    def _restore() -> None:
        for handled, handler in previous.items():
            signal.signal(handled, handler)

    return _restore


async def _autostart_worker(runtime: CoordinatorRuntime) -> bool:
    try:
        await runtime.worker_manager.start()
    except WorkerAlreadyRunningError as error:
        _lifecycle_logger.warning(
            "worker_autostart_skipped",
            extra={"pool": error.pool, "reason": error.reason},
        )
        return False
    return True


async def _start_coordinator(app: FastAPI, settings: Settings) -> None:
    await initialize_database()
    await check_store_consistency()

    runtime = build_runtime(settings)
    scheduler_service = SchedulerService.from_settings(settings)
    schedule_service = ScheduleService(
        scheduler=scheduler_service,
        enqueue_service=runtime.enqueue_service,
        reaper=runtime.reaper,
        settings=settings,
    )
    set_schedule_service(schedule_service)
    app.state.runtime = runtime
    app.state.scheduler_service = scheduler_service
    app.state.schedule_service = schedule_service

    # Close runs orphaned by a previous process before any worker claims.
    sweep = await runtime.reaper.handle_startup_sweep(settings.stalled_threshold_ms)
    schedule_service.register_jobs()
    await scheduler_service.start()
    worker_started = settings.WORKER_AUTOSTART and await _autostart_worker(runtime)

    _lifecycle_logger.info(
        "startup_complete",
        extra={
            "job_count": len(runtime.registry),
            "schedule_count": len(schedule_service.definitions),
            "stalled_runs_reaped": sweep.reaped_count,
            "scheduler_enabled": scheduler_service.enabled,
            "worker_started": worker_started,
        },
    )


async def _stop_coordinator(app: FastAPI, settings: Settings) -> None:
    tracker: RequestTracker = app.state.request_tracker
    grace = settings.SHUTDOWN_GRACE_PERIOD_SECONDS
    drained = await tracker.wait_drained(grace)

    runtime: CoordinatorRuntime = app.state.runtime
    worker_stopped = await runtime.worker_manager.stop(timeout_seconds=grace)
    await app.state.scheduler_service.shutdown()
    _lifecycle_logger.info(
        "shutdown_summary",
        extra={
            "requests_drained": drained,
            "inflight_requests": tracker.inflight,
            "worker_stopped": worker_stopped,
            "signal": tracker.shutdown_signal,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    app.state.request_tracker = RequestTracker()
    restore_signals = _install_signal_handlers(app.state.request_tracker)
    try:
        await _start_coordinator(app, settings)
        try:
            yield
        finally:
            await _stop_coordinator(app, settings)
    finally:
        restore_signals()
        await close_database()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)

    app = FastAPI(title="Job Coordinator", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.request_tracker = RequestTracker()

    @app.middleware("http")
    async def track_inflight_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        tracker: RequestTracker = request.app.state.request_tracker
        tracker.enter()
        try:
            return await call_next(request)
        finally:
            tracker.leave()

    add_request_logging_middleware(app)
    for router in (runs_router, jobs_router, workers_router, scheduler_router):
        app.include_router(router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "job_coordinator.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=False,
    )
