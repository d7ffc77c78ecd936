"""Domain models and helpers for background jobs."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from statsboard.domain.exceptions import ValidationError


class JobStatus(StrEnum):
    """Lifecycle states of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: Final[frozenset[JobStatus]] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED}
)

UPDATABLE_FIELDS: Final[frozenset[str]] = frozenset(
    {"status", "total", "processed", "error", "result"}
)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_job_id() -> str:
    return str(uuid4())


class Job(BaseModel):
    """Trackable unit of deferred computation."""

    id: str = Field(default_factory=new_job_id)
    key: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    total: int | None = None
    processed: int | None = 0
    error: str | None = None
    result: Any = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def to_snapshot(self) -> dict[str, Any]:
        """Return the wire representation streamed to clients."""

        snapshot: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
        }
        if self.error is not None:
            snapshot["error"] = self.error
        if self.status is JobStatus.COMPLETED:
            snapshot["result"] = self.result
        return snapshot


def encode_json_result(value: Any) -> str:
    """Serialize a job result to JSON text.

    Raises:
        ValidationError: If the result cannot be represented as JSON
    """
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Job result is not JSON serializable: {exc}") from exc


def validate_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Check field names of a partial update and normalise the status value.

    Raises:
        ValidationError: If a field outside ``UPDATABLE_FIELDS`` is given,
            the status is unknown or the result is not JSON serializable
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update job fields: {sorted(unknown)}")

    normalized = dict(changes)
    if "status" in normalized:
        try:
            normalized["status"] = JobStatus(normalized["status"])
        except ValueError as exc:
            raise ValidationError(
                f"Invalid job status: {normalized['status']!r}"
            ) from exc
    if normalized.get("result") is not None:
        encode_json_result(normalized["result"])
    return normalized


def merge_changes(job: Job, changes: Mapping[str, Any], now: datetime) -> Job:
    """Return a copy of ``job`` with ``changes`` applied and ``updated_at`` bumped.

    ``updated_at`` never moves backwards, even if the clock does.
    """
    update = validate_changes(changes)
    update["updated_at"] = max(now, job.updated_at)
    return job.model_copy(update=update)


def reset_for_retry(job: Job, total: int | None, now: datetime) -> Job:
    """Resurrect a failed job: same id, back to pending with cleared outcome."""

    return job.model_copy(
        update={
            "status": JobStatus.PENDING,
            "total": total,
            "processed": 0,
            "error": None,
            "result": None,
            "updated_at": max(now, job.updated_at),
        }
    )


__all__ = [
    "TERMINAL_STATUSES",
    "UPDATABLE_FIELDS",
    "Job",
    "JobStatus",
    "encode_json_result",
    "merge_changes",
    "new_job_id",
    "reset_for_retry",
    "utc_now",
    "validate_changes",
]
