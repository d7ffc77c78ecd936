"""PostgreSQL implementation of the job store port."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any

from psycopg2 import Error as PsycopgError
from psycopg2.extras import RealDictCursor

from statsboard.adapters.job_store_sql import (
    JOBS_TABLE,
    encode_changes,
    row_to_job,
)
from statsboard.config.logging_config import get_logger
from statsboard.domain.exceptions import RepositoryError
from statsboard.domain.jobs import Job, JobStatus, new_job_id, utc_now
from statsboard.ports.job_store import JobStorePort

logger = get_logger(__name__)

_SELECT_LATEST_BY_KEY = f"""
    SELECT * FROM {JOBS_TABLE}
    WHERE key = %s
    ORDER BY created_at DESC, id DESC
    LIMIT 1
"""


class PostgresJobStore(JobStorePort):
    """Job store backed by the ``stats_jobs`` table.

    Rows are never deleted. ``create`` reads then writes without a lock, so
    two simultaneous creations for a new key may both insert; ``get_by_key``
    always resolves to the most recently created row.
    """

    def __init__(
        self,
        connection_provider: Callable[[], AbstractContextManager[Any]],
        *,
        clock: Callable[[], datetime] = utc_now,
        close_callback: Callable[[], None] | None = None,
    ):
        self._connection_provider = connection_provider
        self._clock = clock
        self._close_callback = close_callback

    def get_by_id(self, job_id: str) -> Job | None:
        try:
            with self._connection_provider() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"SELECT * FROM {JOBS_TABLE} WHERE id = %s", (job_id,)
                    )
                    row = cur.fetchone()
        except (PsycopgError, RepositoryError) as exc:
            logger.warning("job_store_read_failed", job_id=job_id, error=str(exc))
            return None
        return row_to_job(dict(row), result_as_text=False) if row else None

    def get_by_key(self, key: str) -> Job | None:
        try:
            with self._connection_provider() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(_SELECT_LATEST_BY_KEY, (key,))
                    row = cur.fetchone()
        except (PsycopgError, RepositoryError) as exc:
            logger.warning("job_store_read_failed", key=key, error=str(exc))
            return None
        return row_to_job(dict(row), result_as_text=False) if row else None

    def create(self, key: str, total: int | None = None) -> Job:
        now = self._clock()
        try:
            with self._connection_provider() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(_SELECT_LATEST_BY_KEY, (key,))
                    existing = cur.fetchone()
                    if existing and existing["status"] != JobStatus.FAILED.value:
                        conn.commit()
                        return row_to_job(dict(existing), result_as_text=False)

                    if existing:
                        cur.execute(
                            f"""
                            UPDATE {JOBS_TABLE}
                            SET status = %s,
                                total = %s,
                                processed = 0,
                                error = NULL,
                                result = NULL,
                                updated_at = GREATEST(updated_at, %s)
                            WHERE id = %s
                            RETURNING *
                            """,
                            (JobStatus.PENDING.value, total, now, existing["id"]),
                        )
                        event = "job_resurrected"
                    else:
                        cur.execute(
                            f"""
                            INSERT INTO {JOBS_TABLE} (
                                id, key, status, created_at, updated_at,
                                total, processed, error, result
                            ) VALUES (%s, %s, %s, %s, %s, %s, 0, NULL, NULL)
                            RETURNING *
                            """,
                            (new_job_id(), key, JobStatus.PENDING.value, now, now, total),
                        )
                        event = "job_created"
                    row = cur.fetchone()
                    conn.commit()
        except PsycopgError as exc:
            raise RepositoryError(f"Failed to create job for key {key}: {exc}") from exc

        if row is None:
            raise RepositoryError(f"Job row missing after create for key {key}")
        job = row_to_job(dict(row), result_as_text=False)
        logger.info(event, job_id=job.id, key=key, total=total)
        return job

    def update(self, job_id: str, **changes: Any) -> None:
        assignments = encode_changes(changes)
        set_parts = [
            f"{column} = %s::jsonb" if column == "result" else f"{column} = %s"
            for column, _ in assignments
        ]
        set_parts.append("updated_at = GREATEST(updated_at, %s)")
        params: list[Any] = [value for _, value in assignments]
        params.extend([self._clock(), job_id])

        try:
            with self._connection_provider() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        UPDATE {JOBS_TABLE}
                        SET {", ".join(set_parts)}
                        WHERE id = %s
                        """,
                        params,
                    )
                    conn.commit()
        except PsycopgError as exc:
            raise RepositoryError(f"Failed to update job {job_id}: {exc}") from exc

    def close(self) -> None:
        """Release the underlying connection pool, if owned."""
        if self._close_callback is not None:
            self._close_callback()


__all__ = ["PostgresJobStore"]
