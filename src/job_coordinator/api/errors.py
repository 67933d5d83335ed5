"""Translate coordinator errors into HTTP responses."""

from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from job_coordinator.errors import (
    CyclicDependencyError,
    InvalidParametersError,
    InvalidRunStateError,
    RunNotFoundError,
    ScheduledJobNotFoundError,
    SchedulerUnavailableError,
    StorageError,
    UnknownGroupError,
    UnknownJobError,
    WorkerAlreadyRunningError,
)

_api_error_logger = logging.getLogger("job_coordinator.api.errors")

STORAGE_UNAVAILABLE_DETAIL = "Job store is temporarily unavailable; retry later"


def raise_api_error(error: Exception) -> NoReturn:
    if isinstance(
        error,
        (
            UnknownJobError,
            UnknownGroupError,
            RunNotFoundError,
            ScheduledJobNotFoundError,
        ),
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(error),
        ) from error

    if isinstance(error, InvalidParametersError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(error),
        ) from error

    if isinstance(
        error,
        (
            InvalidRunStateError,
            CyclicDependencyError,
            WorkerAlreadyRunningError,
            SchedulerUnavailableError,
        ),
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error

    if isinstance(error, (StorageError, SQLAlchemyError)):
        _api_error_logger.error(
            "job_store_unavailable",
            extra={"error_type": type(error).__name__},
            exc_info=error,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=STORAGE_UNAVAILABLE_DETAIL,
            headers={"Retry-After": "5"},
        ) from error

    if isinstance(error, LookupError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(error),
        ) from error

    if isinstance(error, RuntimeError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(error),
        ) from error

    _api_error_logger.exception("unexpected_api_error")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected job coordinator failure",
    ) from error


__all__ = ["STORAGE_UNAVAILABLE_DETAIL", "raise_api_error"]
