"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from job_coordinator.config import Settings


def test_settings_derive_millisecond_windows() -> None:
    settings = Settings(
        WORKER_LIVENESS_WINDOW_SECONDS=45, STALLED_RUN_THRESHOLD_SECONDS=120
    )

    assert settings.liveness_window_ms == 45_000
    assert settings.stalled_threshold_ms == 120_000


def test_settings_parse_json_lists_from_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("JOB_MODULES", '["acme.jobs", "acme.reports"]')
    monkeypatch.setenv("JOB_SCHEDULES", '[{"id": "nightly", "cron": "0 3 * * *"}]')
    monkeypatch.setenv("LOG_FILE", "")

    settings = Settings()

    assert settings.JOB_MODULES == ["acme.jobs", "acme.reports"]
    assert settings.JOB_SCHEDULES == [{"id": "nightly", "cron": "0 3 * * *"}]
    assert settings.LOG_FILE is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"WORKER_POOL": ""},
        {"WORKER_POLL_INTERVAL_SECONDS": 0},
        {"WORKER_LIVENESS_WINDOW_SECONDS": 0},
        {"STALLED_RUN_THRESHOLD_SECONDS": 0},
        {"PORT": 70000},
    ],
)
def test_settings_reject_out_of_range_values(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)  # type: ignore[arg-type]
