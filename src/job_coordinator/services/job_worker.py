"""Queue-polling worker and the in-process manager that starts and stops it."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from job_coordinator.config import Settings
from job_coordinator.errors import JobCancelledError, WorkerAlreadyRunningError
from job_coordinator.jobs.registry import JobRegistry
from job_coordinator.jobs.types import normalize_handler_result
from job_coordinator.models import JobRun
from job_coordinator.services.job_context import JobContext
from job_coordinator.services.job_logger import JobLogger, JobLogService
from job_coordinator.services.job_runs import JobRunService, RunOutcome
from job_coordinator.services.worker_registry import WorkerRegistryService
from job_coordinator.utils.clock import NowFactory, ensure_utc, utc_now

_worker_logger = logging.getLogger("job_coordinator.worker")

WORKER_SHUTDOWN_ERROR = "interrupted: worker shutdown"


@dataclass(slots=True, frozen=True)
class WorkerOptions:
    """Timing and policy knobs for one worker process."""

    pool: str = "job_worker"
    poll_interval_seconds: float = 5.0
    heartbeat_interval_seconds: float = 10.0
    liveness_window_ms: int = 30_000
    lease_ttl_ms: int = 30_000
    require_dependencies: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkerOptions:
        return cls(
            pool=settings.WORKER_POOL,
            poll_interval_seconds=settings.WORKER_POLL_INTERVAL_SECONDS,
            heartbeat_interval_seconds=settings.WORKER_HEARTBEAT_INTERVAL_SECONDS,
            liveness_window_ms=settings.liveness_window_ms,
            lease_ttl_ms=settings.WORKER_LEASE_TTL_SECONDS * 1000,
            require_dependencies=settings.WORKER_REQUIRE_DEPENDENCIES,
        )


def format_job_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class JobWorker:
    """Claim queued runs one at a time and execute their registered handlers.

    Starting refuses when another worker in the pool is heartbeating or holds
    the pool lease. While started, a background task refreshes the worker
    heartbeat and renews the lease; losing the lease stops the worker after
    its current run.
    """

    def __init__(
        self,
        *,
        registry: JobRegistry,
        run_service: JobRunService,
        worker_registry: WorkerRegistryService,
        log_service: JobLogService,
        options: WorkerOptions | None = None,
        now_factory: NowFactory | None = None,
        hostname: str | None = None,
        pid: int | None = None,
    ) -> None:
        self._registry = registry
        self._run_service = run_service
        self._worker_registry = worker_registry
        self._log_service = log_service
        self._options = options or WorkerOptions()
        self._now_factory = now_factory or utc_now
        self._hostname = hostname or socket.gethostname()
        self._pid = pid if pid is not None else os.getpid()

        self._worker_id: str | None = None
        self._stop_requested = asyncio.Event()
        self._lease_lost = False
        self._poll_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._current_run_id: int | None = None
        self.jobs_processed = 0

    @property
    def pool(self) -> str:
        return self._options.pool

    @property
    def worker_id(self) -> str | None:
        return self._worker_id

    @property
    def current_run_id(self) -> int | None:
        return self._current_run_id

    @property
    def started(self) -> bool:
        return self._worker_id is not None

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self, *, run_loops: bool = True) -> str:
        """Register this worker and take the pool lease.

        With ``run_loops`` false only registration happens; callers drive the
        worker through :meth:`run_once`.
        """

        if self.started:
            raise WorkerAlreadyRunningError(self.pool, "this worker is already started")

        await self._worker_registry.expire_stale_instances(
            self.pool, liveness_window_ms=self._options.liveness_window_ms
        )
        active = await self._worker_registry.count_active(
            self.pool, liveness_window_ms=self._options.liveness_window_ms
        )
        if active > 0:
            raise WorkerAlreadyRunningError(
                self.pool, f"{active} worker(s) heartbeating in the liveness window"
            )

        worker_id = uuid4().hex
        acquired = await self._worker_registry.acquire_lease(
            self.pool, worker_id, ttl_ms=self._options.lease_ttl_ms
        )
        if not acquired:
            raise WorkerAlreadyRunningError(self.pool, "pool lease is held")

        await self._worker_registry.register(
            pool=self.pool,
            hostname=self._hostname,
            pid=self._pid,
            worker_id=worker_id,
        )
        self._worker_id = worker_id
        self._stop_requested.clear()
        self._lease_lost = False

        if run_loops:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name=f"worker-heartbeat-{worker_id}"
            )
            self._poll_task = asyncio.create_task(
                self._poll_loop(), name=f"worker-poll-{worker_id}"
            )

        _worker_logger.info(
            "worker_started",
            extra={
                "worker_id": worker_id,
                "pool": self.pool,
                "require_dependencies": self._options.require_dependencies,
            },
        )
        return worker_id

    async def stop(self, *, timeout_seconds: float | None = None) -> bool:
        """Stop polling, let the current run finish, then release the pool.

        A run still executing after ``timeout_seconds`` is interrupted and
        recorded as failed.
        """

        worker_id = self._worker_id
        if worker_id is None:
            return False

        self._stop_requested.set()
        if self._poll_task is not None:
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._poll_task), timeout=timeout_seconds
                )
            except TimeoutError:
                _worker_logger.warning(
                    "worker_stop_timeout",
                    extra={"worker_id": worker_id, "run_id": self._current_run_id},
                )
                self._poll_task.cancel()
                await asyncio.gather(self._poll_task, return_exceptions=True)

        if self._worker_id is None:
            # The poll loop already released the pool after losing the lease.
            return True
        await self._release_pool(worker_id, reason="stopped")
        return True

    async def _release_pool(self, worker_id: str, *, reason: str) -> None:
        heartbeat_task = self._heartbeat_task
        if heartbeat_task is not None and heartbeat_task is not asyncio.current_task():
            heartbeat_task.cancel()
            await asyncio.gather(heartbeat_task, return_exceptions=True)

        await self._worker_registry.release_lease(self.pool, worker_id)
        await self._worker_registry.deregister(worker_id)

        self._heartbeat_task = None
        self._worker_id = None
        if self._poll_task is not asyncio.current_task():
            self._poll_task = None
        _worker_logger.info(
            "worker_stopped",
            extra={
                "worker_id": worker_id,
                "pool": self.pool,
                "reason": reason,
                "jobs_processed": self.jobs_processed,
            },
        )

    async def wait_stopped(self) -> None:
        if self._poll_task is not None:
            await asyncio.gather(self._poll_task, return_exceptions=True)

    async def run_once(self) -> int | None:
        """Claim and execute at most one run; return its id."""

        worker_id = self._require_worker_id()
        run = await self._run_service.claim(
            worker_id, require_dependencies=self._options.require_dependencies
        )
        if run is None:
            return None

        await self._execute(run, worker_id)
        return run.id

    async def send_heartbeat(self) -> bool:
        """Refresh the worker heartbeat and renew the lease."""

        worker_id = self._require_worker_id()
        await self._worker_registry.heartbeat(worker_id)
        return await self._worker_registry.renew_lease(
            self.pool, worker_id, ttl_ms=self._options.lease_ttl_ms
        )

    async def _poll_loop(self) -> None:
        while not self._stop_requested.is_set():
            try:
                processed = await self.run_once()
            except Exception:
                _worker_logger.exception(
                    "worker_poll_failed", extra={"worker_id": self._worker_id}
                )
                processed = None

            if processed is not None:
                continue

            try:
                await asyncio.wait_for(
                    self._stop_requested.wait(),
                    timeout=self._options.poll_interval_seconds,
                )
            except TimeoutError:
                continue

        worker_id = self._worker_id
        if self._lease_lost and worker_id is not None:
            try:
                await self._release_pool(worker_id, reason="lease_lost")
            except Exception:
                _worker_logger.exception(
                    "worker_release_failed", extra={"worker_id": worker_id}
                )

    async def _heartbeat_loop(self) -> None:
        while not self._stop_requested.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_requested.wait(),
                    timeout=self._options.heartbeat_interval_seconds,
                )
                return
            except TimeoutError:
                pass

            try:
                lease_held = await self.send_heartbeat()
            except Exception:
                _worker_logger.exception(
                    "worker_heartbeat_failed", extra={"worker_id": self._worker_id}
                )
                continue

            if not lease_held:
                _worker_logger.error(
                    "worker_lease_lost_stopping",
                    extra={"worker_id": self._worker_id, "pool": self.pool},
                )
                self._lease_lost = True
                self._stop_requested.set()
                return

    async def _execute(self, run: JobRun, worker_id: str) -> None:
        run_id = run.id
        self._current_run_id = run_id
        job_logger = JobLogger(
            job_run_id=run_id,
            job_name=run.job_name,
            worker_id=worker_id,
            run_service=self._run_service,
            log_service=self._log_service,
            now_factory=self._now_factory,
        )
        _worker_logger.info(
            "job_run_started",
            extra={"run_id": run_id, "job_name": run.job_name, "worker_id": worker_id},
        )

        run_heartbeat = asyncio.create_task(
            self._run_heartbeat_loop(run_id, worker_id),
            name=f"run-heartbeat-{run_id}",
        )
        try:
            outcome = await self._invoke(run, worker_id, job_logger)
        except asyncio.CancelledError:
            await self._run_service.finish(
                run_id,
                RunOutcome.failed(WORKER_SHUTDOWN_ERROR, job_logger.summary()),
                worker_id=worker_id,
            )
            raise
        finally:
            run_heartbeat.cancel()
            await asyncio.gather(run_heartbeat, return_exceptions=True)
            self._current_run_id = None

        await self._run_service.finish(run_id, outcome, worker_id=worker_id)
        await self._worker_registry.increment_jobs_processed(worker_id)
        self.jobs_processed += 1
        _worker_logger.info(
            "job_run_completed",
            extra={
                "run_id": run_id,
                "job_name": run.job_name,
                "worker_id": worker_id,
                "status": outcome.status.value,
            },
        )

    async def _invoke(
        self, run: JobRun, worker_id: str, job_logger: JobLogger
    ) -> RunOutcome:
        definition = self._registry.get(run.job_name)
        if definition is None:
            error = f"UnknownJobError: Unknown job '{run.job_name}'"
            await job_logger.error(error)
            return RunOutcome.failed(error)

        context = JobContext(
            run_id=run.id,
            job_name=run.job_name,
            worker_id=worker_id,
            run_service=self._run_service,
            logger=job_logger,
            params=dict(run.params),
        )
        try:
            if inspect.iscoroutinefunction(definition.execute):
                result = definition.execute(dict(run.params), context)
            else:
                # Blocking handlers must not starve the heartbeat tasks.
                result = await asyncio.to_thread(
                    definition.execute, dict(run.params), context
                )
            if inspect.isawaitable(result):
                result = await result
            job_outcome = normalize_handler_result(result)
        except JobCancelledError as cancelled:
            _worker_logger.info(
                "job_run_cancelled_cooperatively",
                extra={"run_id": run.id, "job_name": run.job_name},
            )
            return RunOutcome.cancelled(str(cancelled), summary=job_logger.summary())
        except Exception as error:
            _worker_logger.exception(
                "job_run_failed",
                extra={"run_id": run.id, "job_name": run.job_name},
            )
            message = format_job_error(error)
            await job_logger.error(message)
            return RunOutcome.failed(message, summary=job_logger.summary())

        return RunOutcome.succeeded(
            {**job_logger.summary(), **job_outcome.as_summary()}
        )

    async def _run_heartbeat_loop(self, run_id: int, worker_id: str) -> None:
        while True:
            await asyncio.sleep(self._options.heartbeat_interval_seconds)
            try:
                still_owned = await self._run_service.heartbeat(run_id, worker_id)
            except Exception:
                _worker_logger.exception(
                    "job_run_heartbeat_failed",
                    extra={"run_id": run_id, "worker_id": worker_id},
                )
                continue
            if not still_owned:
                _worker_logger.warning(
                    "job_run_heartbeat_rejected",
                    extra={"run_id": run_id, "worker_id": worker_id},
                )
                return

    def _require_worker_id(self) -> str:
        if self._worker_id is None:
            raise RuntimeError("Worker is not started")
        return self._worker_id


@dataclass(slots=True, frozen=True)
class WorkerManagerStatus:
    """Local and pool-wide worker state for the admin surface."""

    pool: str
    local_running: bool
    worker_id: str | None
    current_run_id: int | None
    jobs_processed: int
    active_workers: int
    lease_holder_id: str | None


WorkerFactory = Callable[[], JobWorker]


class WorkerManager:
    """Start and stop at most one in-process worker."""

    def __init__(
        self,
        *,
        worker_factory: WorkerFactory,
        worker_registry: WorkerRegistryService,
        options: WorkerOptions,
        now_factory: NowFactory | None = None,
    ) -> None:
        self._worker_factory = worker_factory
        self._worker_registry = worker_registry
        self._options = options
        self._now_factory = now_factory or utc_now
        self._worker: JobWorker | None = None
        self._lock = asyncio.Lock()

    @property
    def worker(self) -> JobWorker | None:
        return self._worker

    async def status(self) -> WorkerManagerStatus:
        worker = self._worker
        active = await self._worker_registry.count_active(
            self._options.pool, liveness_window_ms=self._options.liveness_window_ms
        )
        lease = await self._worker_registry.get_lease(self._options.pool)
        lease_holder_id = None
        if lease is not None:
            expires_at = ensure_utc(lease.expires_at)
            if expires_at is not None and expires_at > self._now_factory():
                lease_holder_id = lease.holder_id

        local_running = worker is not None and worker.running
        return WorkerManagerStatus(
            pool=self._options.pool,
            local_running=local_running,
            worker_id=worker.worker_id if worker is not None else None,
            current_run_id=worker.current_run_id if worker is not None else None,
            jobs_processed=worker.jobs_processed if worker is not None else 0,
            active_workers=active,
            lease_holder_id=lease_holder_id,
        )

    async def start(self) -> WorkerManagerStatus:
        async with self._lock:
            previous = self._worker
            if previous is not None and previous.running:
                raise WorkerAlreadyRunningError(
                    self._options.pool, "a worker is already running in this process"
                )
            if previous is not None:
                await previous.stop()
                self._worker = None

            worker = self._worker_factory()
            await worker.start()
            self._worker = worker

        return await self.status()

    async def stop(self, *, timeout_seconds: float | None = None) -> bool:
        async with self._lock:
            worker = self._worker
            if worker is None:
                return False
            stopped = await worker.stop(timeout_seconds=timeout_seconds)
            self._worker = None
            return stopped


__all__ = [
    "JobWorker",
    "WORKER_SHUTDOWN_ERROR",
    "WorkerManager",
    "WorkerManagerStatus",
    "WorkerOptions",
    "format_job_error",
]
