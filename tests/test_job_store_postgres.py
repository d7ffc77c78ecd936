from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ContextManager

import psycopg2
import pytest
from pytest_mock import MockerFixture

from statsboard.adapters.job_store_postgres import PostgresJobStore
from statsboard.domain.exceptions import RepositoryError, ValidationError
from statsboard.domain.jobs import JobStatus

NOW = datetime(2024, 9, 1, 12, 0, tzinfo=UTC)


def _make_connection(
    mocker: MockerFixture,
) -> tuple[Any, Any, Callable[[], ContextManager[Any]]]:
    """Create mocked psycopg connection and cursor."""

    connection = mocker.MagicMock()
    cursor = mocker.MagicMock()
    cursor_cm = mocker.MagicMock()
    cursor_cm.__enter__.return_value = cursor
    cursor_cm.__exit__.return_value = False
    connection.cursor.return_value = cursor_cm

    @contextmanager
    def _connection_ctx() -> Iterator[Any]:
        yield connection

    def _provider() -> ContextManager[Any]:
        return _connection_ctx()

    return connection, cursor, _provider


def _store(connection_provider: Callable[[], ContextManager[Any]]) -> PostgresJobStore:
    return PostgresJobStore(connection_provider, clock=lambda: NOW)


def _build_row(**overrides: Any) -> dict[str, Any]:
    """Return dictionary that mirrors a stats_jobs row."""

    row: dict[str, Any] = {
        "id": "5d1c8f7e-0000-4000-8000-000000000001",
        "key": "nfl:summary-job:season=2024",
        "status": JobStatus.PENDING.value,
        "created_at": NOW,
        "updated_at": NOW,
        "total": None,
        "processed": 0,
        "error": None,
        "result": None,
    }
    row.update(overrides)
    return row


def _executed_sql(cursor: Any) -> list[str]:
    return [" ".join(call.args[0].split()) for call in cursor.execute.call_args_list]


def test_create_inserts_new_row(mocker: MockerFixture) -> None:
    connection, cursor, provider = _make_connection(mocker)
    row = _build_row(total=5)
    cursor.fetchone.side_effect = [None, row]

    job = _store(provider).create(row["key"], total=5)

    statements = _executed_sql(cursor)
    assert statements[0].startswith("SELECT * FROM stats_jobs WHERE key = %s")
    assert statements[1].startswith("INSERT INTO stats_jobs")
    connection.commit.assert_called_once()
    assert job.id == row["id"]
    assert job.status is JobStatus.PENDING
    assert job.total == 5


def test_create_returns_existing_active_row(mocker: MockerFixture) -> None:
    connection, cursor, provider = _make_connection(mocker)
    row = _build_row(status=JobStatus.RUNNING.value, processed=3)
    cursor.fetchone.return_value = row

    job = _store(provider).create(row["key"], total=10)

    assert cursor.execute.call_count == 1
    assert job.status is JobStatus.RUNNING
    assert job.processed == 3


def test_create_resurrects_failed_row(mocker: MockerFixture) -> None:
    connection, cursor, provider = _make_connection(mocker)
    failed = _build_row(status=JobStatus.FAILED.value, error="boom", processed=2)
    reset = _build_row(total=7)
    cursor.fetchone.side_effect = [failed, reset]

    job = _store(provider).create(failed["key"], total=7)

    update_sql = _executed_sql(cursor)[1]
    assert update_sql.startswith("UPDATE stats_jobs")
    assert "GREATEST(updated_at, %s)" in update_sql
    params = cursor.execute.call_args_list[1].args[1]
    assert params == (JobStatus.PENDING.value, 7, NOW, failed["id"])
    connection.commit.assert_called_once()
    assert job.id == failed["id"]
    assert job.status is JobStatus.PENDING
    assert job.error is None


def test_create_wraps_driver_errors(mocker: MockerFixture) -> None:
    _, cursor, provider = _make_connection(mocker)
    cursor.execute.side_effect = psycopg2.OperationalError("connection reset")

    with pytest.raises(RepositoryError):
        _store(provider).create("k")


def test_get_by_id_maps_row(mocker: MockerFixture) -> None:
    _, cursor, provider = _make_connection(mocker)
    cursor.fetchone.return_value = _build_row(
        status=JobStatus.COMPLETED.value, result={"leaders": ["A", "B"]}
    )

    job = _store(provider).get_by_id("5d1c8f7e-0000-4000-8000-000000000001")

    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert job.result == {"leaders": ["A", "B"]}


def test_get_by_key_returns_none_when_absent(mocker: MockerFixture) -> None:
    _, cursor, provider = _make_connection(mocker)
    cursor.fetchone.return_value = None

    assert _store(provider).get_by_key("missing") is None
    assert "ORDER BY created_at DESC, id DESC" in _executed_sql(cursor)[0]


def test_reads_degrade_to_none_when_database_unavailable() -> None:
    def _provider() -> ContextManager[Any]:
        raise psycopg2.OperationalError("could not connect to server")

    store = PostgresJobStore(_provider)

    assert store.get_by_id("any") is None
    assert store.get_by_key("any") is None


def test_update_sets_only_given_columns(mocker: MockerFixture) -> None:
    connection, cursor, provider = _make_connection(mocker)

    _store(provider).update("job-1", status=JobStatus.RUNNING, processed=4)

    sql = _executed_sql(cursor)[0]
    params = cursor.execute.call_args.args[1]
    assert "status = %s, processed = %s" in sql
    assert "updated_at = GREATEST(updated_at, %s)" in sql
    assert "total" not in sql
    assert params == ["running", 4, NOW, "job-1"]
    connection.commit.assert_called_once()


def test_update_encodes_result_as_jsonb(mocker: MockerFixture) -> None:
    _, cursor, provider = _make_connection(mocker)

    _store(provider).update("job-1", result={"rows": [1, 2]})

    sql = _executed_sql(cursor)[0]
    params = cursor.execute.call_args.args[1]
    assert "result = %s::jsonb" in sql
    assert json.loads(params[0]) == {"rows": [1, 2]}


def test_update_rejects_unknown_fields_before_querying(mocker: MockerFixture) -> None:
    _, cursor, provider = _make_connection(mocker)

    with pytest.raises(ValidationError):
        _store(provider).update("job-1", created_at=NOW)

    cursor.execute.assert_not_called()


def test_update_wraps_driver_errors(mocker: MockerFixture) -> None:
    _, cursor, provider = _make_connection(mocker)
    cursor.execute.side_effect = psycopg2.OperationalError("server closed")

    with pytest.raises(RepositoryError):
        _store(provider).update("job-1", processed=1)


def test_close_invokes_callback(mocker: MockerFixture) -> None:
    _, _, provider = _make_connection(mocker)
    close = mocker.Mock()

    PostgresJobStore(provider, close_callback=close).close()

    close.assert_called_once_with()
