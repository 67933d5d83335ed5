"""Typed contracts between the coordinator and registered job handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from job_coordinator.services.job_context import JobContext


@dataclass(slots=True, frozen=True)
class JobOutcome:
    """Result a handler hands back to the worker on successful completion."""

    summary: Mapping[str, Any] = field(default_factory=dict)
    message: str | None = None

    def as_summary(self) -> dict[str, Any]:
        payload = dict(self.summary)
        if self.message is not None:
            payload.setdefault("message", self.message)
        return payload


HandlerResult = JobOutcome | Mapping[str, Any] | None


class JobHandler(Protocol):
    def __call__(
        self, params: dict[str, Any], context: JobContext
    ) -> Awaitable[HandlerResult] | HandlerResult: ...


def normalize_handler_result(result: object) -> JobOutcome:
    if result is None:
        return JobOutcome()
    if isinstance(result, JobOutcome):
        return result
    if isinstance(result, Mapping):
        return JobOutcome(summary=dict(result))
    raise TypeError(
        f"Job handler returned unsupported result type {type(result).__name__}"
    )


__all__ = ["HandlerResult", "JobHandler", "JobOutcome", "normalize_handler_result"]
