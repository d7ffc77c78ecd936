"""Port definition for driving jobs to a terminal state."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from statsboard.domain.jobs import Job

ProgressCallback = Callable[[int], None]
Worker = Callable[[ProgressCallback], Any]


@runtime_checkable
class JobRunnerPort(Protocol):
    """Interface for executing a worker on behalf of a stored job."""

    def start(
        self, job_id: str, worker: Worker, *, total: int | None = None
    ) -> threading.Thread:
        """Mark the job running and execute ``worker`` detached from the caller.

        Args:
            job_id: Identifier of a pending job.
            worker: Callable receiving a progress callback and returning the result.
            total: Optional progress total to record when the run starts.

        Returns:
            Handle of the background thread driving the job.
        """

    def run(
        self, job_id: str, worker: Worker, *, total: int | None = None
    ) -> Job | None:
        """Drive the job on the caller's thread and return its final state."""


__all__ = ["JobRunnerPort", "ProgressCallback", "Worker"]
