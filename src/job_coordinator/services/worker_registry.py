"""Worker instance registry, heartbeat liveness and per-pool leases."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from job_coordinator.models import WorkerInstance, WorkerLease, WorkerStatus
from job_coordinator.utils.clock import NowFactory, ms_after, ms_before, utc_now

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_LIVENESS_WINDOW_MS = 30_000
DEFAULT_LEASE_TTL_MS = 30_000
DEFAULT_INSTANCE_LIMIT = 50

_worker_logger = logging.getLogger("job_coordinator.workers")


class WorkerRegistryService:
    """Track worker processes and arbitrate the single active worker per pool.

    ``count_active`` answers "is anyone heartbeating in this pool" and is
    advisory. The pool lease is the authoritative claim: acquiring it is an
    insert or a guarded update of an expired row, so two workers can never
    hold it at once.
    """

    def __init__(
        self,
        *,
        session_factory: SessionScopeFactory | None = None,
        now_factory: NowFactory | None = None,
    ) -> None:
        if session_factory is None:
            from job_coordinator.database import session_scope

            session_factory = session_scope

        self._session_factory = session_factory
        self._now_factory = now_factory or utc_now

    async def register(
        self,
        *,
        pool: str,
        hostname: str,
        pid: int,
        worker_id: str | None = None,
    ) -> str:
        now = self._now_factory()
        worker_id = worker_id or uuid4().hex
        async with self._session_factory() as session:
            session.add(
                WorkerInstance(
                    id=worker_id,
                    pool=pool,
                    hostname=hostname,
                    pid=pid,
                    status=WorkerStatus.RUNNING,
                    started_at=now,
                    last_heartbeat_at=now,
                    jobs_processed=0,
                )
            )

        _worker_logger.info(
            "worker_registered",
            extra={
                "worker_id": worker_id,
                "pool": pool,
                "hostname": hostname,
                "pid": pid,
            },
        )
        return worker_id

    async def heartbeat(self, worker_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkerInstance)
                .where(
                    WorkerInstance.id == worker_id,
                    WorkerInstance.status == WorkerStatus.RUNNING,
                )
                .values(last_heartbeat_at=self._now_factory())
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def deregister(self, worker_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkerInstance)
                .where(
                    WorkerInstance.id == worker_id,
                    WorkerInstance.status == WorkerStatus.RUNNING,
                )
                .values(status=WorkerStatus.STOPPED, stopped_at=self._now_factory())
                .execution_options(synchronize_session=False)
            )

        stopped = result.rowcount == 1
        if stopped:
            _worker_logger.info("worker_deregistered", extra={"worker_id": worker_id})
        return stopped

    async def count_active(
        self,
        pool: str,
        *,
        liveness_window_ms: int = DEFAULT_LIVENESS_WINDOW_MS,
    ) -> int:
        """Count ``RUNNING`` instances whose heartbeat is inside the window."""

        cutoff = ms_before(self._now_factory(), liveness_window_ms)
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count(WorkerInstance.id)).where(
                    WorkerInstance.pool == pool,
                    WorkerInstance.status == WorkerStatus.RUNNING,
                    WorkerInstance.last_heartbeat_at > cutoff,
                )
            )
        return int(count or 0)

    async def list_instances(
        self,
        pool: str | None = None,
        *,
        limit: int = DEFAULT_INSTANCE_LIMIT,
    ) -> list[WorkerInstance]:
        statement = select(WorkerInstance)
        if pool is not None:
            statement = statement.where(WorkerInstance.pool == pool)

        async with self._session_factory() as session:
            rows = await session.scalars(
                statement.order_by(WorkerInstance.started_at.desc()).limit(
                    max(limit, 1)
                )
            )
            return list(rows.all())

    async def increment_jobs_processed(self, worker_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(WorkerInstance)
                .where(WorkerInstance.id == worker_id)
                .values(jobs_processed=WorkerInstance.jobs_processed + 1)
                .execution_options(synchronize_session=False)
            )

    async def expire_stale_instances(
        self,
        pool: str,
        *,
        liveness_window_ms: int = DEFAULT_LIVENESS_WINDOW_MS,
    ) -> int:
        """Mark ``RUNNING`` instances that stopped heartbeating as ``STOPPED``."""

        now = self._now_factory()
        cutoff = ms_before(now, liveness_window_ms)
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkerInstance)
                .where(
                    WorkerInstance.pool == pool,
                    WorkerInstance.status == WorkerStatus.RUNNING,
                    WorkerInstance.last_heartbeat_at <= cutoff,
                )
                .values(status=WorkerStatus.STOPPED, stopped_at=now)
                .execution_options(synchronize_session=False)
            )

        expired = int(result.rowcount or 0)
        if expired:
            _worker_logger.warning(
                "stale_worker_instances_expired",
                extra={"pool": pool, "count": expired},
            )
        return expired

    async def acquire_lease(
        self,
        pool: str,
        holder_id: str,
        *,
        ttl_ms: int = DEFAULT_LEASE_TTL_MS,
    ) -> bool:
        """Take the pool lease unless another holder still has it live."""

        now = self._now_factory()
        expires_at = ms_after(now, ttl_ms)
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkerLease)
                .where(
                    WorkerLease.pool == pool,
                    or_(
                        WorkerLease.expires_at <= now,
                        WorkerLease.holder_id == holder_id,
                    ),
                )
                .values(
                    holder_id=holder_id,
                    acquired_at=now,
                    renewed_at=now,
                    expires_at=expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                _worker_logger.info(
                    "worker_lease_acquired",
                    extra={"pool": pool, "worker_id": holder_id},
                )
                return True

            existing = await session.scalar(
                select(WorkerLease.holder_id).where(WorkerLease.pool == pool)
            )

        if existing is not None:
            _worker_logger.info(
                "worker_lease_held",
                extra={"pool": pool, "worker_id": holder_id, "holder_id": existing},
            )
            return False

        try:
            async with self._session_factory() as session:
                session.add(
                    WorkerLease(
                        pool=pool,
                        holder_id=holder_id,
                        acquired_at=now,
                        renewed_at=now,
                        expires_at=expires_at,
                    )
                )
        except IntegrityError:
            _worker_logger.info(
                "worker_lease_insert_race_lost",
                extra={"pool": pool, "worker_id": holder_id},
            )
            return False

        _worker_logger.info(
            "worker_lease_acquired",
            extra={"pool": pool, "worker_id": holder_id},
        )
        return True

    async def renew_lease(
        self,
        pool: str,
        holder_id: str,
        *,
        ttl_ms: int = DEFAULT_LEASE_TTL_MS,
    ) -> bool:
        now = self._now_factory()
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkerLease)
                .where(WorkerLease.pool == pool, WorkerLease.holder_id == holder_id)
                .values(
                    renewed_at=now,
                    expires_at=ms_after(now, ttl_ms),
                )
                .execution_options(synchronize_session=False)
            )

        renewed = result.rowcount == 1
        if not renewed:
            _worker_logger.warning(
                "worker_lease_lost",
                extra={"pool": pool, "worker_id": holder_id},
            )
        return renewed

    async def release_lease(self, pool: str, holder_id: str) -> bool:
        """Expire the lease immediately if ``holder_id`` still holds it."""

        now = self._now_factory()
        async with self._session_factory() as session:
            result = await session.execute(
                update(WorkerLease)
                .where(WorkerLease.pool == pool, WorkerLease.holder_id == holder_id)
                .values(renewed_at=now, expires_at=now)
                .execution_options(synchronize_session=False)
            )

        released = result.rowcount == 1
        if released:
            _worker_logger.info(
                "worker_lease_released",
                extra={"pool": pool, "worker_id": holder_id},
            )
        return released

    async def get_lease(self, pool: str) -> WorkerLease | None:
        async with self._session_factory() as session:
            return await session.get(WorkerLease, pool)


__all__ = ["WorkerRegistryService"]
