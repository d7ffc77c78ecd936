from __future__ import annotations

import json
import threading
import time
from typing import Any

import pytest
from flask import Flask
from flask.testing import FlaskClient

from statsboard.adapters.job_store_memory import InMemoryJobStore
from statsboard.adapters.result_cache_ttl import TTLResultCache
from statsboard.config.settings import Settings
from statsboard.domain.jobs import JobStatus
from statsboard.ports.job_runner import ProgressCallback
from statsboard.presentation.web import EXTENSION_KEY, Services, create_app
from statsboard.use_cases.submit_job import Computation

RELEASE = threading.Event()


def _double(params: Any, report: ProgressCallback) -> dict[str, int]:
    report(1)
    return {"value": int(params["value"]) * 2}


def _slow_leaders(params: Any, report: ProgressCallback) -> list[str]:
    RELEASE.wait(timeout=5)
    report(2)
    return [f"leader-{params['season']}"]


@pytest.fixture
def app(settings: Settings, memory_store: InMemoryJobStore) -> Flask:
    RELEASE.clear()
    flask_app = create_app(
        settings,
        store=memory_store,
        cache=TTLResultCache(),
        computations={
            "double": Computation(name="double", run=_double),
            "leaders": Computation(
                name="nfl:leaders", run=_slow_leaders, total=lambda params: 2
            ),
        },
        sleep=lambda seconds: None,
    )
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


def _wait_for_status(client: FlaskClient, job_id: str, status: str) -> dict[str, Any]:
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        body = client.get(f"/api/jobs/{job_id}").get_json()
        if body["status"] == status:
            return body
        time.sleep(0.01)
    pytest.fail(f"job {job_id} never reached {status}")


def test_services_are_registered(app: Flask, memory_store: InMemoryJobStore) -> None:
    services = app.extensions[EXTENSION_KEY]

    assert isinstance(services, Services)
    assert services.store is memory_store
    assert set(services.computations) == {"double", "leaders"}


def test_unknown_job_returns_404(client: FlaskClient) -> None:
    response = client.get("/api/jobs/does-not-exist")

    assert response.status_code == 404
    assert response.get_json() == {"error": "Job not found."}


def test_job_status_includes_result_when_completed(
    client: FlaskClient, memory_store: InMemoryJobStore
) -> None:
    job = memory_store.create("k", total=3)
    memory_store.update(job.id, status=JobStatus.COMPLETED, processed=3, result=[1])

    body = client.get(f"/api/jobs/{job.id}").get_json()

    assert body == {
        "jobId": job.id,
        "status": "completed",
        "total": 3,
        "processed": 3,
        "error": None,
        "result": [1],
    }


def test_job_status_omits_result_while_running(
    client: FlaskClient, memory_store: InMemoryJobStore
) -> None:
    job = memory_store.create("k")
    memory_store.update(job.id, status=JobStatus.RUNNING, processed=1)

    body = client.get(f"/api/jobs/{job.id}").get_json()

    assert body["status"] == "running"
    assert "result" not in body


def test_stream_sends_headers_and_frames(
    client: FlaskClient, memory_store: InMemoryJobStore
) -> None:
    job = memory_store.create("k")
    memory_store.update(job.id, status=JobStatus.FAILED, error="boom")

    response = client.get(f"/api/jobs/{job.id}/stream?interval=not-a-number")

    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    assert response.headers["Cache-Control"] == "no-cache, no-transform"
    assert response.headers["X-Accel-Buffering"] == "no"
    retry, data, _ = response.get_data(as_text=True).split("\n\n")
    assert retry == "retry: 5000"
    payload = json.loads(data.removeprefix("data: "))
    assert payload["status"] == "failed"
    assert payload["error"] == "boom"


def test_stream_for_unknown_job_reports_missing(client: FlaskClient) -> None:
    response = client.get("/api/jobs/ghost/stream")

    assert response.get_data(as_text=True) == (
        'retry: 5000\n\ndata: {"status": "missing", "id": "ghost"}\n\n'
    )


def test_request_id_is_echoed(client: FlaskClient) -> None:
    response = client.get("/api/jobs/x", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_is_generated_when_absent(client: FlaskClient) -> None:
    response = client.get("/api/jobs/x")

    assert response.headers["X-Request-ID"]


def test_unknown_computation_returns_404(client: FlaskClient) -> None:
    response = client.get("/api/computations/nope")

    assert response.status_code == 404
    assert response.get_json() == {"error": "Unknown computation: nope"}


def test_unsupported_mode_returns_400(client: FlaskClient) -> None:
    response = client.get("/api/computations/double?value=1&mode=batch")

    assert response.status_code == 400


def test_sync_mode_returns_result(client: FlaskClient) -> None:
    response = client.get("/api/computations/double?value=21&mode=sync")

    assert response.status_code == 200
    assert response.get_json() == {"result": {"value": 42}}


def test_async_mode_returns_job_then_cached_result(client: FlaskClient) -> None:
    accepted = client.get("/api/computations/leaders?season=2024")

    assert accepted.status_code == 202
    body = accepted.get_json()
    assert body["status"] == "running"
    assert body["total"] == 2
    assert body["processed"] == 0
    assert body["error"] is None

    duplicate = client.get("/api/computations/leaders?season=2024")
    assert duplicate.status_code == 202
    assert duplicate.get_json()["jobId"] == body["jobId"]

    RELEASE.set()
    finished = _wait_for_status(client, body["jobId"], "completed")
    assert finished["result"] == ["leader-2024"]

    cached = client.get("/api/computations/leaders?season=2024")
    assert cached.status_code == 200
    assert cached.get_json() == {"result": ["leader-2024"]}
