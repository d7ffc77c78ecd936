"""Prometheus metrics for job scheduling and progress streams."""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from statsboard.config.logging_config import get_logger

logger = get_logger(__name__)

JOBS_SUBMITTED_TOTAL: Final[Counter] = Counter(
    "stats_jobs_submitted_total",
    "Computation requests by how they were resolved",
    labelnames=("outcome",),
)

JOBS_FINISHED_TOTAL: Final[Counter] = Counter(
    "stats_jobs_finished_total",
    "Jobs that reached a terminal state",
    labelnames=("status",),
)

JOB_DURATION_SECONDS: Final[Histogram] = Histogram(
    "stats_job_duration_seconds",
    "Wall time spent inside job workers",
    labelnames=("status",),
)

PROGRESS_STREAMS_ACTIVE: Final[Gauge] = Gauge(
    "stats_progress_streams_active",
    "Open job progress streams",
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False


def ensure_metrics_exporter(port: int) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "JOBS_FINISHED_TOTAL",
    "JOBS_SUBMITTED_TOTAL",
    "JOB_DURATION_SECONDS",
    "PROGRESS_STREAMS_ACTIVE",
    "ensure_metrics_exporter",
]
