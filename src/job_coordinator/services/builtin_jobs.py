"""Jobs the coordinator registers for itself."""

from __future__ import annotations

from typing import Any

from job_coordinator.jobs.registry import JobDefinition, JobRegistry
from job_coordinator.jobs.types import JobOutcome
from job_coordinator.services.job_context import JobContext
from job_coordinator.services.reaper import StalledRunReaper

REAP_STALLED_RUNS_JOB = "reap-stalled-runs"
MAINTENANCE_GROUP = "maintenance"


def register_builtin_jobs(
    registry: JobRegistry,
    *,
    reaper: StalledRunReaper,
    default_threshold_ms: int,
) -> None:
    async def reap_stalled_runs(
        params: dict[str, Any], context: JobContext
    ) -> JobOutcome:
        threshold_ms = int(params.get("threshold_ms", default_threshold_ms))
        await context.logger.set_stage("sweep")
        result = await reaper.sweep(threshold_ms)
        await context.logger.info(
            f"Reaped {result.reaped_count} stalled run(s)",
            {"run_ids": list(result.reaped_run_ids)},
        )
        return JobOutcome(
            summary={
                "reaped": result.reaped_count,
                "run_ids": list(result.reaped_run_ids),
                "threshold_ms": threshold_ms,
            }
        )

    registry.register(
        JobDefinition(
            name=REAP_STALLED_RUNS_JOB,
            execute=reap_stalled_runs,
            description="Fail RUNNING runs with stale heartbeats",
            group=MAINTENANCE_GROUP,
            default_params={"threshold_ms": default_threshold_ms},
        )
    )


__all__ = ["MAINTENANCE_GROUP", "REAP_STALLED_RUNS_JOB", "register_builtin_jobs"]
