"""Flask application exposing job status, job progress streams and computations."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Final

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request

from statsboard.adapters.job_runner_inprocess import InProcessJobRunner
from statsboard.adapters.job_store_factory import create_job_store
from statsboard.adapters.result_cache_ttl import TTLResultCache
from statsboard.config.logging_config import get_logger
from statsboard.config.settings import Settings, get_settings
from statsboard.domain.exceptions import RepositoryError, UnknownComputationError
from statsboard.domain.job_constants import CONTROL_PARAMS
from statsboard.domain.jobs import Job, JobStatus
from statsboard.observability.tracing import correlation_scope
from statsboard.ports.job_store import JobStorePort
from statsboard.ports.result_cache import ResultCachePort
from statsboard.use_cases.progress_stream import ProgressChannel
from statsboard.use_cases.submit_job import Computation, JobSubmitter

logger = get_logger(__name__)

EXTENSION_KEY: Final[str] = "statsboard"
REQUEST_ID_HEADER: Final[str] = "X-Request-ID"
STREAM_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})

jobs_bp = Blueprint("jobs", __name__)


@dataclass
class Services:
    """Collaborators shared by the request handlers of one app."""

    store: JobStorePort
    channel: ProgressChannel
    submitter: JobSubmitter
    computations: dict[str, Computation] = field(default_factory=dict)


def _services() -> Services:
    services: Services = current_app.extensions[EXTENSION_KEY]
    return services


def _parse_flag(raw: str | None) -> bool:
    return raw is not None and raw.strip().lower() in _TRUTHY


def _job_status_body(job: Job) -> dict[str, Any]:
    body: dict[str, Any] = {
        "jobId": job.id,
        "status": job.status.value,
        "total": job.total,
        "processed": job.processed or 0,
        "error": job.error,
    }
    if job.status is JobStatus.COMPLETED:
        body["result"] = job.result
    return body


@jobs_bp.get("/api/jobs/<job_id>")
def get_job(job_id: str) -> Any:
    job = _services().store.get_by_id(job_id)
    if job is None:
        return jsonify({"error": "Job not found."}), 404
    return jsonify(_job_status_body(job))


@jobs_bp.get("/api/jobs/<job_id>/stream")
def stream_job(job_id: str) -> Response:
    # Read request args while still inside the request context
    interval_ms = request.args.get("interval", type=int)
    frames = _services().channel.stream(job_id, interval_ms)
    return Response(frames, mimetype="text/event-stream", headers=STREAM_HEADERS)


@jobs_bp.get("/api/computations/<name>")
def run_computation(name: str) -> Any:
    services = _services()
    computation = services.computations.get(name)
    if computation is None:
        raise UnknownComputationError(name)

    mode = request.args.get("mode", "async")
    if mode not in {"sync", "async"}:
        return jsonify({"error": f"Unsupported mode: {mode}"}), 400

    refresh = _parse_flag(request.args.get("refresh"))
    params = {
        key: value for key, value in request.args.items() if key not in CONTROL_PARAMS
    }
    worker = computation.worker_for(params)

    if mode == "sync":
        result = services.submitter.compute_now(
            computation.name,
            params,
            worker,
            refresh=refresh,
            cache_ttl_seconds=computation.cache_ttl_seconds,
        )
        return jsonify({"result": result})

    submission = services.submitter.submit(
        computation.name,
        params,
        worker,
        total=computation.estimate_total(params),
        refresh=refresh,
        cache_ttl_seconds=computation.cache_ttl_seconds,
    )
    if submission.ready or submission.job is None:
        return jsonify({"result": submission.result})
    return jsonify(_job_status_body(submission.job)), 202


@jobs_bp.errorhandler(UnknownComputationError)
def _unknown_computation(exc: UnknownComputationError) -> Any:
    return jsonify({"error": str(exc)}), 404


@jobs_bp.errorhandler(RepositoryError)
def _repository_unavailable(exc: RepositoryError) -> Any:
    logger.error("job_store_unavailable", error=str(exc))
    return jsonify({"error": "Job store unavailable."}), 503


def _open_correlation_scope() -> None:
    stack = ExitStack()
    g.correlation_id = stack.enter_context(
        correlation_scope(request.headers.get(REQUEST_ID_HEADER))
    )
    g.correlation_stack = stack


def _echo_correlation_id(response: Response) -> Response:
    correlation_id = g.get("correlation_id")
    if correlation_id:
        response.headers[REQUEST_ID_HEADER] = correlation_id
    return response


def _close_correlation_scope(exc: BaseException | None) -> None:
    stack: ExitStack | None = g.pop("correlation_stack", None)
    if stack is not None:
        stack.close()


def create_app(
    settings: Settings | None = None,
    *,
    store: JobStorePort | None = None,
    cache: ResultCachePort | None = None,
    computations: Mapping[str, Computation] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Flask:
    """Build the Flask app and its job scheduling services.

    Args:
        settings: Application settings (global settings when omitted)
        store: Job store override; selected from settings when omitted
        cache: Result cache override; memory/disk cache from settings when omitted
        computations: Computations exposed under ``/api/computations/<name>``
        sleep: Sleep function used between progress stream polls

    Returns:
        Configured Flask application
    """
    settings = settings or get_settings()
    store = store if store is not None else create_job_store(settings)
    cache = cache if cache is not None else TTLResultCache(settings.cache_dir)

    services = Services(
        store=store,
        channel=ProgressChannel(store, sleep=sleep),
        submitter=JobSubmitter(
            store,
            InProcessJobRunner(store),
            cache,
            cache_ttl_seconds=settings.cache_ttl_seconds,
        ),
        computations=dict(computations or {}),
    )

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = services
    app.before_request(_open_correlation_scope)
    app.after_request(_echo_correlation_id)
    app.teardown_request(_close_correlation_scope)
    app.register_blueprint(jobs_bp)

    logger.info(
        "app_created",
        store=type(store).__name__,
        computations=sorted(services.computations),
    )
    return app


__all__ = ["EXTENSION_KEY", "Services", "create_app", "jobs_bp"]
