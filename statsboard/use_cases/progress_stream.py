"""Server-Sent Events stream reporting the live state of one job.

The stream polls the job store: one snapshot frame immediately, then one per
interval, closing after the frame that shows the job completed, failed or
missing. Progress between two polls may be skipped.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Iterator
from typing import Any

from statsboard.config.logging_config import get_logger
from statsboard.domain.job_constants import (
    STREAM_INTERVAL_DEFAULT_MS,
    STREAM_INTERVAL_MAX_MS,
    STREAM_INTERVAL_MIN_MS,
    STREAM_RETRY_HINT_MS,
)
from statsboard.observability.metrics import PROGRESS_STREAMS_ACTIVE
from statsboard.ports.job_store import JobStorePort

logger = get_logger(__name__)

MISSING_STATUS = "missing"


def clamp_interval(interval_ms: int | None) -> int:
    """Return the poll interval in milliseconds, defaulted and clamped."""

    if interval_ms is None:
        return STREAM_INTERVAL_DEFAULT_MS
    return max(STREAM_INTERVAL_MIN_MS, min(interval_ms, STREAM_INTERVAL_MAX_MS))


def format_retry_frame(retry_ms: int) -> str:
    return f"retry: {retry_ms}\n\n"


def format_data_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class ProgressChannel:
    """Produces SSE frames for job subscribers."""

    def __init__(
        self,
        store: JobStorePort,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._sleep = sleep

    def stream(self, job_id: str, interval_ms: int | None = None) -> Iterator[str]:
        """Yield SSE frames for ``job_id`` until the job settles.

        Closing the generator (the subscriber went away) stops polling at the
        next suspension point.

        Args:
            job_id: Job to watch
            interval_ms: Requested poll interval, clamped to the allowed range

        Yields:
            A ``retry:`` hint frame, then ``data:`` snapshot frames
        """
        interval = clamp_interval(interval_ms)
        frames_sent = 0
        PROGRESS_STREAMS_ACTIVE.inc()
        logger.info("progress_stream_opened", job_id=job_id, interval_ms=interval)
        try:
            yield format_retry_frame(STREAM_RETRY_HINT_MS)
            while True:
                job = self._store.get_by_id(job_id)
                if job is None:
                    payload: dict[str, Any] = {"status": MISSING_STATUS, "id": job_id}
                else:
                    payload = job.to_snapshot()
                yield format_data_frame(payload)
                frames_sent += 1

                if job is None or job.status.is_terminal:
                    return
                self._sleep(interval / 1000)
        finally:
            PROGRESS_STREAMS_ACTIVE.dec()
            logger.info(
                "progress_stream_closed", job_id=job_id, frames_sent=frames_sent
            )


__all__ = [
    "MISSING_STATUS",
    "ProgressChannel",
    "clamp_interval",
    "format_data_frame",
    "format_retry_frame",
]
