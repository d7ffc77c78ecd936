"""In-process job runner executing workers on daemon threads."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any

from statsboard.config.logging_config import get_logger
from statsboard.domain.exceptions import RepositoryError
from statsboard.domain.jobs import Job, JobStatus, encode_json_result
from statsboard.observability.metrics import JOB_DURATION_SECONDS, JOBS_FINISHED_TOTAL
from statsboard.observability.tracing import job_scope
from statsboard.ports.job_runner import JobRunnerPort, Worker
from statsboard.ports.job_store import JobStorePort

logger = get_logger(__name__)


@dataclass
class JobProgressReporter:
    """Progress callback handed to workers.

    Progress ticks are best effort: a store failure is logged and dropped.
    """

    job_id: str
    _store: JobStorePort

    def __call__(self, processed: int) -> None:
        try:
            self._store.update(self.job_id, processed=processed)
        except RepositoryError as exc:
            logger.warning(
                "job_progress_write_failed",
                job_id=self.job_id,
                processed=processed,
                error=str(exc),
            )


class InProcessJobRunner(JobRunnerPort):
    """Drives stored jobs through ``running`` to ``completed`` or ``failed``."""

    def __init__(self, store: JobStorePort):
        self._store = store

    def start(
        self, job_id: str, worker: Worker, *, total: int | None = None
    ) -> threading.Thread:
        self._mark_running(job_id, total)
        thread = threading.Thread(
            target=self._execute_detached,
            args=(job_id, worker),
            name=f"stats-job-{job_id[:8]}",
            daemon=True,
        )
        thread.start()
        return thread

    def run(
        self, job_id: str, worker: Worker, *, total: int | None = None
    ) -> Job | None:
        self._mark_running(job_id, total)
        self._execute(job_id, worker)
        return self._store.get_by_id(job_id)

    # Internal helpers -------------------------------------------------

    def _mark_running(self, job_id: str, total: int | None) -> None:
        changes: dict[str, Any] = {"status": JobStatus.RUNNING, "processed": 0}
        if total is not None:
            changes["total"] = total
        self._store.update(job_id, **changes)
        logger.info("job_started", job_id=job_id, total=total)

    def _execute_detached(self, job_id: str, worker: Worker) -> None:
        try:
            self._execute(job_id, worker)
        except RepositoryError:
            # already logged by _write_terminal; nothing retries it
            return

    def _execute(self, job_id: str, worker: Worker) -> None:
        with job_scope(job_id):
            reporter = JobProgressReporter(job_id=job_id, _store=self._store)
            start_time = time.perf_counter()
            try:
                result = worker(reporter)
                # A result the store cannot persist fails the job here
                encode_json_result(result)
            except Exception as exc:  # noqa: BLE001
                duration = time.perf_counter() - start_time
                message = str(exc) or type(exc).__name__
                logger.exception("job_failed", job_id=job_id, error=message)
                JOB_DURATION_SECONDS.labels(status=JobStatus.FAILED.value).observe(
                    duration
                )
                JOBS_FINISHED_TOTAL.labels(status=JobStatus.FAILED.value).inc()
                self._write_terminal(job_id, status=JobStatus.FAILED, error=message)
                return

            duration = time.perf_counter() - start_time
            logger.info("job_completed", job_id=job_id, duration_seconds=duration)
            JOB_DURATION_SECONDS.labels(status=JobStatus.COMPLETED.value).observe(
                duration
            )
            JOBS_FINISHED_TOTAL.labels(status=JobStatus.COMPLETED.value).inc()
            self._write_terminal(job_id, status=JobStatus.COMPLETED, result=result)

    def _write_terminal(self, job_id: str, **changes: Any) -> None:
        try:
            self._store.update(job_id, **changes)
        except RepositoryError:
            logger.exception(
                "job_terminal_write_failed",
                job_id=job_id,
                status=str(changes.get("status")),
            )
            raise


__all__ = ["InProcessJobRunner", "JobProgressReporter"]
