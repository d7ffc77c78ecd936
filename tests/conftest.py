"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import threading
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from statsboard.adapters.job_runner_inprocess import InProcessJobRunner
from statsboard.adapters.job_store_memory import InMemoryJobStore
from statsboard.adapters.job_store_sqlite import SQLiteJobStore
from statsboard.config.settings import Settings
from statsboard.ports.job_runner import Worker
from statsboard.ports.job_store import JobStorePort

_SETTINGS_ENV_VARS = (
    "POSTGRES_PASSWORD",
    "JOBS_BACKEND",
    "JOB_TTL_SECONDS",
    "DB_PATH",
    "CACHE_DIR",
    "CACHE_TTL_SECONDS",
    "METRICS_ENABLED",
)


class FakeClock:
    """Manually advanced UTC clock for stores."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 9, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InlineJobRunner(InProcessJobRunner):
    """Runner that executes ``start`` on the caller's thread."""

    def start(
        self, job_id: str, worker: Worker, *, total: int | None = None
    ) -> threading.Thread:
        self.run(job_id, worker, total=total)
        return threading.current_thread()


@pytest.fixture(autouse=True)
def _isolated_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of Settings()."""

    for name in _SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryJobStore:
    return InMemoryJobStore(ttl_seconds=3600, clock=clock)


@pytest.fixture
def sqlite_store(tmp_path: Path, clock: FakeClock) -> SQLiteJobStore:
    return SQLiteJobStore(str(tmp_path / "jobs.sqlite"), clock=clock)


@pytest.fixture(params=["memory", "sqlite"])
def store(
    request: pytest.FixtureRequest, tmp_path: Path, clock: FakeClock
) -> Generator[JobStorePort, None, None]:
    """Provide each locally runnable job store backend."""

    if request.param == "memory":
        yield InMemoryJobStore(ttl_seconds=3600, clock=clock)
    else:
        yield SQLiteJobStore(str(tmp_path / "contract.sqlite"), clock=clock)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pinned to the in-memory backend."""

    return Settings(
        jobs_backend="memory",
        db_path=str(tmp_path / "statsboard.db"),
        cache_ttl_seconds=60,
    )
