"""Row mapping helpers shared by the SQL-backed job stores."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Final

from statsboard.domain.jobs import (
    Job,
    JobStatus,
    encode_json_result,
    validate_changes,
)

JOBS_TABLE: Final[str] = "stats_jobs"
JOB_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "key",
    "status",
    "created_at",
    "updated_at",
    "total",
    "processed",
    "error",
    "result",
)


def encode_result(value: Any) -> str | None:
    """Serialize a job result to JSON text, keeping SQL NULL for ``None``."""

    if value is None:
        return None
    return encode_json_result(value)


def encode_changes(changes: Mapping[str, Any]) -> list[tuple[str, Any]]:
    """Validate a partial update and return ``(column, value)`` pairs.

    ``result`` is always rendered as JSON text; PostgreSQL casts it with
    ``::jsonb`` in the statement.

    Raises:
        ValidationError: If the update is invalid or the result is not JSON

    Returns:
        Column assignments in a stable order
    """
    normalized = validate_changes(changes)
    assignments: list[tuple[str, Any]] = []
    for column in JOB_COLUMNS:
        if column not in normalized:
            continue
        value = normalized[column]
        if column == "status":
            value = JobStatus(value).value
        elif column == "result":
            value = encode_result(value)
        assignments.append((column, value))
    return assignments


def format_timestamp(value: datetime) -> str:
    """Render timestamps with a fixed width so text ordering matches time ordering."""

    return value.isoformat(timespec="microseconds")


def row_to_job(row: Mapping[str, Any], *, result_as_text: bool) -> Job:
    """Convert a database row into a Job.

    Args:
        row: Row mapping with the ``JOB_COLUMNS`` keys
        result_as_text: ``result`` column holds JSON text that must be decoded

    Returns:
        Domain job
    """
    data = {column: row[column] for column in JOB_COLUMNS}
    for column in ("created_at", "updated_at"):
        if isinstance(data[column], str):
            data[column] = datetime.fromisoformat(data[column])
    if result_as_text and data["result"] is not None:
        data["result"] = json.loads(data["result"])
    return Job.model_validate(data)


__all__ = [
    "JOBS_TABLE",
    "JOB_COLUMNS",
    "encode_changes",
    "encode_result",
    "format_timestamp",
    "row_to_job",
]
