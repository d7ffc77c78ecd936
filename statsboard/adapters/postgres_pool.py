"""psycopg2 connection pool shared by PostgreSQL adapters."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from time import sleep
from typing import Any, Final

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool

from statsboard.config.logging_config import get_logger
from statsboard.domain.exceptions import RepositoryError

POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT: Final[int] = 5
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 2.0

logger = get_logger(__name__)


class PostgresConnectionPool:
    """Threaded connection pool with validated startup and retrying checkout."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_connections: int,
        max_connections: int,
        statement_timeout_ms: int,
        connect_timeout_seconds: int,
        application_name: str,
        ssl_mode: str | None = None,
    ) -> None:
        if min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if max_connections < min_connections:
            raise RepositoryError(
                "postgres_max_connections must be greater than or equal to postgres_min_connections"
            )

        self._database = database
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._in_use_count = 0
        self._lock = Lock()

        options = (
            f"-c statement_timeout={statement_timeout_ms} "
            f"-c application_name={application_name}"
        )
        conn_kwargs: dict[str, Any] = {
            "host": host,
            "port": port,
            "database": database,
            "user": user,
            "password": password,
            "connect_timeout": connect_timeout_seconds,
            "options": options,
        }
        if ssl_mode:
            conn_kwargs["sslmode"] = ssl_mode

        self._pool = self._create_pool(conn_kwargs)
        logger.info(
            "postgres_pool_initialized",
            host=host,
            port=port,
            database=database,
            min_connections=min_connections,
            max_connections=max_connections,
            statement_timeout_ms=statement_timeout_ms,
        )

    def _create_pool(
        self, conn_kwargs: dict[str, Any]
    ) -> psycopg2_pool.ThreadedConnectionPool:
        """Create a PostgreSQL connection pool and run a validation query."""
        try:
            pool = psycopg2_pool.ThreadedConnectionPool(
                self._min_connections,
                self._max_connections,
                **conn_kwargs,
            )
        except PsycopgError as exc:
            raise RepositoryError(
                f"Failed to initialize PostgreSQL pool: {exc}"
            ) from exc

        try:
            conn = pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            finally:
                pool.putconn(conn)
        except PsycopgError as exc:
            pool.closeall()
            raise RepositoryError(f"PostgreSQL validation query failed: {exc}") from exc

        return pool

    def _acquire_with_retry(self) -> extensions.connection:
        """Acquire a connection from the pool with exponential backoff."""
        attempt = 0
        delay = POOL_ACQUIRE_BASE_DELAY_SECONDS
        while True:
            attempt += 1
            try:
                conn = self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT:
                    logger.error(
                        "postgres_pool_acquire_failed",
                        attempts=attempt,
                        max_connections=self._max_connections,
                        in_use=self._in_use_count,
                    )
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc

                logger.warning(
                    "postgres_pool_exhausted_retry",
                    attempt=attempt,
                    wait_seconds=delay,
                    in_use=self._in_use_count,
                )
                sleep(delay)
                delay = min(delay * 2, POOL_ACQUIRE_MAX_DELAY_SECONDS)
                continue

            with self._lock:
                self._in_use_count += 1
            return conn

    def _release(self, conn: extensions.connection, *, close: bool) -> None:
        try:
            self._pool.putconn(conn, close=close)
        except PsycopgError:
            logger.warning(
                "postgres_putconn_failed",
                database=self._database,
                close=close,
                exc_info=True,
            )
        finally:
            with self._lock:
                if self._in_use_count > 0:
                    self._in_use_count -= 1

    @contextmanager
    def connection(self) -> Iterator[extensions.connection]:
        """Borrow a connection from the pool and ensure cleanup."""
        conn: extensions.connection | None = None
        try:
            conn = self._acquire_with_retry()
            conn.autocommit = False
            yield conn
        except PsycopgError as exc:
            if conn is not None:
                try:
                    conn.rollback()
                except PsycopgError:
                    logger.warning(
                        "postgres_connection_rollback_failed",
                        database=self._database,
                        exc_info=True,
                    )
                finally:
                    self._release(conn, close=True)
                    conn = None
            raise RepositoryError(f"PostgreSQL connection error: {exc}") from exc
        finally:
            if conn is not None:
                try:
                    status = conn.get_transaction_status()
                    if status in (
                        extensions.TRANSACTION_STATUS_INTRANS,
                        extensions.TRANSACTION_STATUS_INERROR,
                    ):
                        conn.rollback()
                except PsycopgError:
                    logger.warning(
                        "postgres_connection_cleanup_failed",
                        database=self._database,
                        exc_info=True,
                    )
                    self._release(conn, close=True)
                else:
                    self._release(conn, close=False)

    def close(self) -> None:
        """Close all connections in the pool."""
        self._pool.closeall()
        with self._lock:
            self._in_use_count = 0
        logger.info("postgres_pool_closed", database=self._database)


__all__ = ["PostgresConnectionPool"]
