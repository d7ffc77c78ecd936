"""SQLite job store for single-host durable deployments."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from statsboard.adapters.job_store_sql import (
    JOBS_TABLE,
    encode_changes,
    format_timestamp,
    row_to_job,
)
from statsboard.config.logging_config import get_logger
from statsboard.domain.exceptions import RepositoryError
from statsboard.domain.jobs import Job, JobStatus, new_job_id, utc_now
from statsboard.ports.job_store import JobStorePort

logger = get_logger(__name__)


class SQLiteJobStore(JobStorePort):
    """Job store persisted in a SQLite database file.

    A connection is opened per operation, so the store can be shared between
    request threads and runner threads.
    """

    def __init__(
        self, db_path: str, *, clock: Callable[[], datetime] = utc_now
    ) -> None:
        """Initialize the store and create the schema if needed.

        Args:
            db_path: Path to the SQLite database file
            clock: Source of UTC timestamps
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection.

        Returns:
            SQLite connection
        """
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with closing(self._get_connection()) as conn:
            yield conn

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        try:
            with self._connection() as conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {JOBS_TABLE} (
                        id TEXT PRIMARY KEY,
                        key TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        total INTEGER,
                        processed INTEGER,
                        error TEXT,
                        result TEXT
                    )
                    """
                )
                conn.execute(
                    f"""
                    CREATE INDEX IF NOT EXISTS idx_{JOBS_TABLE}_key
                    ON {JOBS_TABLE} (key, created_at)
                    """
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create job schema: {exc}") from exc
        logger.info("sqlite_job_schema_ready", db_path=str(self.db_path))

    def get_by_id(self, job_id: str) -> Job | None:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    f"SELECT * FROM {JOBS_TABLE} WHERE id = ?", (job_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("job_store_read_failed", job_id=job_id, error=str(exc))
            return None
        return row_to_job(row, result_as_text=True) if row is not None else None

    def get_by_key(self, key: str) -> Job | None:
        try:
            with self._connection() as conn:
                row = self._fetch_latest(conn, key)
        except sqlite3.Error as exc:
            logger.warning("job_store_read_failed", key=key, error=str(exc))
            return None
        return row_to_job(row, result_as_text=True) if row is not None else None

    def create(self, key: str, total: int | None = None) -> Job:
        now = format_timestamp(self._clock())
        try:
            with self._connection() as conn:
                row = self._fetch_latest(conn, key)
                if row is not None and row["status"] != JobStatus.FAILED.value:
                    return row_to_job(row, result_as_text=True)

                if row is not None:
                    job_id = row["id"]
                    conn.execute(
                        f"""
                        UPDATE {JOBS_TABLE}
                        SET status = ?, total = ?, processed = 0,
                            error = NULL, result = NULL,
                            updated_at = MAX(updated_at, ?)
                        WHERE id = ?
                        """,
                        (JobStatus.PENDING.value, total, now, job_id),
                    )
                    event = "job_resurrected"
                else:
                    job_id = new_job_id()
                    conn.execute(
                        f"""
                        INSERT INTO {JOBS_TABLE} (
                            id, key, status, created_at, updated_at,
                            total, processed, error, result
                        ) VALUES (?, ?, ?, ?, ?, ?, 0, NULL, NULL)
                        """,
                        (job_id, key, JobStatus.PENDING.value, now, now, total),
                    )
                    event = "job_created"
                conn.commit()
                created = conn.execute(
                    f"SELECT * FROM {JOBS_TABLE} WHERE id = ?", (job_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create job for key {key}: {exc}") from exc

        logger.info(event, job_id=job_id, key=key, total=total)
        return row_to_job(created, result_as_text=True)

    def update(self, job_id: str, **changes: Any) -> None:
        assignments = encode_changes(changes)
        set_clause = ", ".join(f"{column} = ?" for column, _ in assignments)
        if set_clause:
            set_clause += ", "
        params: list[Any] = [value for _, value in assignments]
        params.extend([format_timestamp(self._clock()), job_id])

        try:
            with self._connection() as conn:
                conn.execute(
                    f"""
                    UPDATE {JOBS_TABLE}
                    SET {set_clause}updated_at = MAX(updated_at, ?)
                    WHERE id = ?
                    """,
                    params,
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update job {job_id}: {exc}") from exc

    @staticmethod
    def _fetch_latest(conn: sqlite3.Connection, key: str) -> sqlite3.Row | None:
        row: sqlite3.Row | None = conn.execute(
            f"""
            SELECT * FROM {JOBS_TABLE}
            WHERE key = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1
            """,
            (key,),
        ).fetchone()
        return row


__all__ = ["SQLiteJobStore"]
