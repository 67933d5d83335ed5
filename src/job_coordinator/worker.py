"""Standalone worker process entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any

from job_coordinator.config import Settings, get_settings
from job_coordinator.errors import WorkerAlreadyRunningError
from job_coordinator.runtime import build_runtime
from job_coordinator.utils.logging import setup_logging

_worker_process_logger = logging.getLogger("job_coordinator.worker.process")


async def run_worker(settings: Settings) -> int:
    """Run one pool worker until SIGINT/SIGTERM; return the exit code."""

    from job_coordinator.database import close_database, initialize_database

    await initialize_database()
    runtime = build_runtime(settings)
    manager = runtime.worker_manager

    try:
        await manager.start()
    except WorkerAlreadyRunningError as error:
        _worker_process_logger.error(
            "worker_start_refused",
            extra={"pool": error.pool, "reason": error.reason},
        )
        await close_database()
        return 1

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for handled_signal in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(handled_signal, stop_requested.set)

    active_worker = manager.worker
    waiters: list[asyncio.Task[Any]] = [asyncio.create_task(stop_requested.wait())]
    if active_worker is not None:
        waiters.append(asyncio.create_task(active_worker.wait_stopped()))

    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        for handled_signal in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(handled_signal)
        await manager.stop(timeout_seconds=settings.SHUTDOWN_GRACE_PERIOD_SECONDS)
        await close_database()

    _worker_process_logger.info("worker_process_exited")
    return 0


def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    sys.exit(asyncio.run(run_worker(settings)))


if __name__ == "__main__":
    main()
