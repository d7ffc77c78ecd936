"""Resolve a computation request to a cached result or a background job."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from statsboard.config.logging_config import get_logger
from statsboard.domain.job_constants import RESULT_CACHE_TTL_SECONDS_DEFAULT
from statsboard.domain.jobs import Job, JobStatus, encode_json_result
from statsboard.observability.metrics import JOBS_SUBMITTED_TOTAL
from statsboard.ports.job_runner import JobRunnerPort, ProgressCallback, Worker
from statsboard.ports.job_store import JobStorePort
from statsboard.ports.result_cache import ResultCachePort
from statsboard.use_cases.job_keys import build_cache_key, build_job_key

logger = get_logger(__name__)

Params = Mapping[str, Any]


@dataclass(frozen=True)
class Computation:
    """Expensive aggregation that can be requested by name.

    ``run`` receives the request parameters and a progress callback and
    returns a JSON-serializable result. ``total`` optionally estimates the
    number of progress units before the job starts.
    """

    name: str
    run: Callable[[Params, ProgressCallback], Any]
    total: Callable[[Params], int | None] | None = None
    cache_ttl_seconds: int = RESULT_CACHE_TTL_SECONDS_DEFAULT

    def worker_for(self, params: Params) -> Worker:
        def _worker(report: ProgressCallback) -> Any:
            return self.run(params, report)

        return _worker

    def estimate_total(self, params: Params) -> int | None:
        return self.total(params) if self.total is not None else None


@dataclass(frozen=True)
class Submission:
    """Outcome of a computation request: a cached result or a job to watch."""

    job: Job | None = None
    cached_result: Any = None

    @property
    def from_cache(self) -> bool:
        return self.job is None

    @property
    def ready(self) -> bool:
        return self.from_cache or (
            self.job is not None and self.job.status is JobStatus.COMPLETED
        )

    @property
    def result(self) -> Any:
        if self.job is None:
            return self.cached_result
        if self.job.status is JobStatus.COMPLETED:
            return self.job.result
        return None


def _discard_progress(processed: int) -> None:
    return None


class JobSubmitter:
    """Consumer side of the job scheduler.

    A request first consults the result cache. On a miss the job key is
    resolved to an existing job or a new one; a pending job is started on the
    runner without waiting for it, and the successful result is written to
    both the job and the cache.
    """

    def __init__(
        self,
        store: JobStorePort,
        runner: JobRunnerPort,
        cache: ResultCachePort,
        *,
        cache_ttl_seconds: int = RESULT_CACHE_TTL_SECONDS_DEFAULT,
    ) -> None:
        self._store = store
        self._runner = runner
        self._cache = cache
        self._cache_ttl_seconds = cache_ttl_seconds
        # Serialises resolve-create-start so one process never starts a job twice
        self._lock = threading.Lock()

    def submit(
        self,
        namespace: str,
        params: Params,
        worker: Worker,
        *,
        total: int | None = None,
        refresh: bool = False,
        cache_ttl_seconds: int | None = None,
    ) -> Submission:
        """Return a cached result or the job computing it.

        Args:
            namespace: Computation identifier used as key prefix
            params: Every parameter that affects the result
            worker: Computation body, invoked only when a new run starts
            total: Progress total recorded on the job
            refresh: Skip the cache and force a fresh job
            cache_ttl_seconds: Override of the result cache lifetime

        Returns:
            Submission describing the cached result or the current job state
        """
        ttl = cache_ttl_seconds or self._cache_ttl_seconds
        cache_key = build_cache_key(namespace, params)
        if not refresh:
            cached = self._cache.get(cache_key)
            if cached is not None:
                JOBS_SUBMITTED_TOTAL.labels(outcome="cache_hit").inc()
                logger.debug("computation_cache_hit", cache_key=cache_key)
                return Submission(cached_result=cached)

        job_key = build_job_key(namespace, params, refresh=refresh)
        with self._lock:
            job = self._store.get_by_key(job_key)
            if job is None:
                outcome = "created"
                job = self._store.create(job_key, total)
            elif job.status is JobStatus.FAILED:
                outcome = "retried"
                job = self._store.create(job_key, total)
            else:
                outcome = "reused"

            if job.status is JobStatus.COMPLETED:
                self._cache.set(cache_key, job.result, ttl)
                outcome = "completed"
            elif job.status is JobStatus.PENDING:
                self._runner.start(
                    job.id,
                    self._caching_worker(worker, cache_key, ttl),
                    total=total,
                )
                job = self._store.get_by_id(job.id) or job

        JOBS_SUBMITTED_TOTAL.labels(outcome=outcome).inc()
        logger.info(
            "computation_job_resolved",
            job_id=job.id,
            job_key=job_key,
            status=job.status.value,
            outcome=outcome,
        )
        return Submission(job=job)

    def compute_now(
        self,
        namespace: str,
        params: Params,
        worker: Worker,
        *,
        refresh: bool = False,
        cache_ttl_seconds: int | None = None,
    ) -> Any:
        """Compute on the caller's thread through the cache, without a job."""

        ttl = cache_ttl_seconds or self._cache_ttl_seconds
        cache_key = build_cache_key(namespace, params)
        if refresh:
            result = worker(_discard_progress)
            self._cache.set(cache_key, result, ttl)
            return result
        return self._cache.get_or_load(cache_key, ttl, lambda: worker(_discard_progress))

    def _caching_worker(self, worker: Worker, cache_key: str, ttl: int) -> Worker:
        def _worker(report: ProgressCallback) -> Any:
            result = worker(report)
            encode_json_result(result)
            self._cache.set(cache_key, result, ttl)
            return result

        return _worker


__all__ = ["Computation", "JobSubmitter", "Params", "Submission"]
