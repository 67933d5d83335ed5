"""Utilities for shared application concerns."""

from job_coordinator import __version__
from job_coordinator.utils.clock import NowFactory, elapsed_ms, ensure_utc, utc_now
from job_coordinator.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = [
    "__version__",
    "NowFactory",
    "add_request_logging_middleware",
    "elapsed_ms",
    "ensure_utc",
    "setup_logging",
    "utc_now",
]
