"""Factory for creating the job store selected at process start."""

from statsboard.adapters.job_store_memory import InMemoryJobStore
from statsboard.adapters.job_store_postgres import PostgresJobStore
from statsboard.adapters.job_store_sqlite import SQLiteJobStore
from statsboard.adapters.postgres_pool import PostgresConnectionPool
from statsboard.config.logging_config import get_logger
from statsboard.config.settings import Settings
from statsboard.ports.job_store import JobStorePort

logger = get_logger(__name__)


def create_job_store(settings: Settings) -> JobStorePort:
    """Create the job store backend based on settings.

    Args:
        settings: Application settings

    Returns:
        Job store instance (PostgreSQL, SQLite or in-memory)

    Raises:
        ValueError: If PostgreSQL is requested without a password
        RepositoryError: On connection errors
    """
    backend = settings.resolve_jobs_backend()

    if backend == "memory":
        logger.info(
            "job_store_memory_selected",
            ttl_seconds=settings.job_ttl_seconds,
            cross_process_dedup=False,
        )
        return InMemoryJobStore(ttl_seconds=settings.job_ttl_seconds)

    if backend == "sqlite":
        logger.info("job_store_sqlite_selected", path=settings.db_path)
        return SQLiteJobStore(db_path=settings.db_path)

    if not settings.postgres_password:
        raise ValueError(
            "POSTGRES_PASSWORD environment variable must be set when using PostgreSQL"
        )

    logger.info(
        "job_store_postgres_selected",
        host=settings.postgres_host,
        port=settings.postgres_port,
        database=settings.postgres_database,
        user=settings.postgres_user,
    )
    pool = PostgresConnectionPool(
        host=settings.postgres_host,
        port=settings.postgres_port,
        database=settings.postgres_database,
        user=settings.postgres_user,
        password=settings.postgres_password.get_secret_value(),
        min_connections=settings.postgres_min_connections,
        max_connections=settings.postgres_max_connections,
        statement_timeout_ms=settings.postgres_statement_timeout_ms,
        connect_timeout_seconds=settings.postgres_connect_timeout_seconds,
        application_name=settings.postgres_application_name,
        ssl_mode=settings.postgres_ssl_mode,
    )
    return PostgresJobStore(pool.connection, close_callback=pool.close)


__all__ = ["create_job_store"]
