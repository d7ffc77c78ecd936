"""Port definition for job persistence backends."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from statsboard.domain.jobs import Job


@runtime_checkable
class JobStorePort(Protocol):
    """Interface implemented by every job store backend."""

    def get_by_id(self, job_id: str) -> Job | None:
        """Return the job with ``job_id`` or None if unknown."""

    def get_by_key(self, key: str) -> Job | None:
        """Return the most recently created job for an idempotency key."""

    def create(self, key: str, total: int | None = None) -> Job:
        """Return the active job for ``key``, resurrecting or inserting as needed.

        Args:
            key: Idempotency key derived from the computation parameters.
            total: Optional progress total recorded on new or reset jobs.

        Returns:
            The existing non-failed job unchanged, the failed job reset to
            pending under the same id, or a newly inserted pending job.
        """

    def update(self, job_id: str, **changes: Any) -> None:
        """Merge ``changes`` into a job and refresh ``updated_at``.

        Unknown ids are ignored.
        """


__all__ = ["JobStorePort"]
