from __future__ import annotations

import threading
from typing import Any

import pytest
from structlog.testing import capture_logs

from statsboard.adapters.job_runner_inprocess import (
    InProcessJobRunner,
    JobProgressReporter,
)
from statsboard.adapters.job_store_memory import InMemoryJobStore
from statsboard.adapters.job_store_sqlite import SQLiteJobStore
from statsboard.domain.exceptions import RepositoryError
from statsboard.domain.jobs import JobStatus
from statsboard.ports.job_runner import JobRunnerPort, ProgressCallback


class FlakyStore(InMemoryJobStore):
    """In-memory store whose progress or terminal writes can be made to fail."""

    def __init__(self, *, fail_progress: bool = False, fail_terminal: bool = False):
        super().__init__()
        self.fail_progress = fail_progress
        self.fail_terminal = fail_terminal

    def update(self, job_id: str, **changes: Any) -> None:
        status = changes.get("status")
        if self.fail_progress and status is None:
            raise RepositoryError("progress write refused")
        if self.fail_terminal and status in {JobStatus.COMPLETED, JobStatus.FAILED}:
            raise RepositoryError("terminal write refused")
        super().update(job_id, **changes)


def test_runner_satisfies_port(memory_store: InMemoryJobStore) -> None:
    assert isinstance(InProcessJobRunner(memory_store), JobRunnerPort)


def test_start_detaches_and_completes_job(memory_store: InMemoryJobStore) -> None:
    release = threading.Event()
    job = memory_store.create("k")

    def _worker(report: ProgressCallback) -> dict[str, int]:
        release.wait(timeout=5)
        for step in range(1, 4):
            report(step)
        return {"value": 42}

    thread = InProcessJobRunner(memory_store).start(job.id, _worker, total=3)

    running = memory_store.get_by_id(job.id)
    assert running is not None
    assert running.status is JobStatus.RUNNING
    assert running.processed == 0
    assert running.total == 3

    release.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    done = memory_store.get_by_id(job.id)
    assert done is not None
    assert done.status is JobStatus.COMPLETED
    assert done.processed == 3
    assert done.result == {"value": 42}
    assert done.error is None


def test_worker_failure_marks_job_failed_and_allows_retry(
    memory_store: InMemoryJobStore,
) -> None:
    job = memory_store.create("k", total=4)

    def _worker(report: ProgressCallback) -> None:
        report(1)
        raise ValueError("upstream feed unavailable")

    with capture_logs() as logs:
        failed = InProcessJobRunner(memory_store).run(job.id, _worker)

    assert failed is not None
    assert failed.status is JobStatus.FAILED
    assert failed.error == "upstream feed unavailable"
    assert failed.processed == 1
    assert any(entry["event"] == "job_failed" for entry in logs)

    retried = memory_store.create("k", total=4)
    assert retried.id == job.id
    assert retried.status is JobStatus.PENDING
    assert retried.processed == 0
    assert retried.error is None


def test_exception_without_message_records_type_name(
    memory_store: InMemoryJobStore,
) -> None:
    job = memory_store.create("k")

    def _worker(report: ProgressCallback) -> None:
        raise RuntimeError()

    failed = InProcessJobRunner(memory_store).run(job.id, _worker)

    assert failed is not None
    assert failed.error == "RuntimeError"


def test_progress_write_failures_do_not_fail_the_job() -> None:
    store = FlakyStore(fail_progress=True)
    job = store.create("k")

    def _worker(report: ProgressCallback) -> str:
        report(1)
        report(2)
        return "ok"

    finished = InProcessJobRunner(store).run(job.id, _worker)

    assert finished is not None
    assert finished.status is JobStatus.COMPLETED
    assert finished.result == "ok"


def test_terminal_write_failure_propagates_from_run() -> None:
    store = FlakyStore(fail_terminal=True)
    job = store.create("k")

    with pytest.raises(RepositoryError):
        InProcessJobRunner(store).run(job.id, lambda report: "ok")

    stuck = store.get_by_id(job.id)
    assert stuck is not None
    assert stuck.status is JobStatus.RUNNING


def test_terminal_write_failure_in_detached_thread_is_contained() -> None:
    store = FlakyStore(fail_terminal=True)
    job = store.create("k")

    thread = InProcessJobRunner(store).start(job.id, lambda report: "ok")
    thread.join(timeout=5)

    assert not thread.is_alive()
    stuck = store.get_by_id(job.id)
    assert stuck is not None
    assert stuck.status is JobStatus.RUNNING


def test_progress_reporter_writes_processed(memory_store: InMemoryJobStore) -> None:
    job = memory_store.create("k")
    reporter = JobProgressReporter(job_id=job.id, _store=memory_store)

    reporter(7)

    stored = memory_store.get_by_id(job.id)
    assert stored is not None
    assert stored.processed == 7


@pytest.mark.parametrize("store_name", ["memory_store", "sqlite_store"])
def test_unserializable_result_fails_the_job(
    store_name: str, request: pytest.FixtureRequest
) -> None:
    store = request.getfixturevalue(store_name)
    job = store.create("k")

    thread = InProcessJobRunner(store).start(job.id, lambda report: {1, 2})
    thread.join(timeout=5)

    assert not thread.is_alive()
    failed = store.get_by_id(job.id)
    assert failed is not None
    assert failed.status is JobStatus.FAILED
    assert failed.error is not None and "JSON" in failed.error
    assert failed.result is None


def test_job_with_unserializable_result_can_be_retried(
    sqlite_store: SQLiteJobStore,
) -> None:
    job = sqlite_store.create("k")
    InProcessJobRunner(sqlite_store).run(job.id, lambda report: object())

    retried = sqlite_store.create("k")
    finished = InProcessJobRunner(sqlite_store).run(retried.id, lambda report: [1, 2])

    assert retried.id == job.id
    assert finished is not None
    assert finished.status is JobStatus.COMPLETED
    assert finished.result == [1, 2]
