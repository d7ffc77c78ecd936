"""Process-local job store used when no durable database is configured.

State lives in this object only: jobs created in one process are invisible to
other processes, so cross-process de-duplication is not provided. Every access
sweeps out jobs whose ``updated_at`` is older than the TTL.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from statsboard.config.logging_config import get_logger
from statsboard.domain.job_constants import JOB_TTL_SECONDS_DEFAULT
from statsboard.domain.jobs import (
    Job,
    JobStatus,
    merge_changes,
    reset_for_retry,
    utc_now,
    validate_changes,
)
from statsboard.ports.job_store import JobStorePort

logger = get_logger(__name__)


class InMemoryJobStore(JobStorePort):
    """Job store backed by two dicts: ``id -> Job`` and ``key -> id``."""

    def __init__(
        self,
        *,
        ttl_seconds: int = JOB_TTL_SECONDS_DEFAULT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._ids_by_key: dict[str, str] = {}
        self._lock = threading.RLock()

    def get_by_id(self, job_id: str) -> Job | None:
        with self._lock:
            self._prune_expired()
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def get_by_key(self, key: str) -> Job | None:
        with self._lock:
            self._prune_expired()
            job_id = self._ids_by_key.get(key)
            if job_id is None:
                return None
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def create(self, key: str, total: int | None = None) -> Job:
        with self._lock:
            self._prune_expired()
            now = self._clock()
            existing_id = self._ids_by_key.get(key)
            existing = self._jobs.get(existing_id) if existing_id else None

            if existing is not None:
                if existing.status is not JobStatus.FAILED:
                    return existing.model_copy(deep=True)
                job = reset_for_retry(existing, total, now)
                self._jobs[job.id] = job
                logger.info("job_resurrected", job_id=job.id, key=key, total=total)
                return job.model_copy(deep=True)

            job = Job(key=key, total=total, created_at=now, updated_at=now)
            self._jobs[job.id] = job
            self._ids_by_key[key] = job.id
            logger.info("job_created", job_id=job.id, key=key, total=total)
            return job.model_copy(deep=True)

    def update(self, job_id: str, **changes: Any) -> None:
        validate_changes(changes)
        with self._lock:
            self._prune_expired()
            job = self._jobs.get(job_id)
            if job is None:
                return
            self._jobs[job_id] = merge_changes(job, changes, self._clock())

    def _prune_expired(self) -> None:
        cutoff = self._clock() - self._ttl
        expired = [job for job in self._jobs.values() if job.updated_at < cutoff]
        for job in expired:
            del self._jobs[job.id]
            if self._ids_by_key.get(job.key) == job.id:
                del self._ids_by_key[job.key]
        if expired:
            logger.debug("jobs_expired", count=len(expired))


__all__ = ["InMemoryJobStore"]
