#!/usr/bin/env python3
"""
HTTP entrypoint for the statsboard job scheduler.

Serves job status and progress streams. Applications that expose their own
computations build the app with ``create_app(computations=...)`` instead.

Usage:
    python app.py
    gunicorn --threads 8 'app:app'
"""

import os

from statsboard.config.logging_config import get_logger, setup_logging
from statsboard.config.settings import get_settings
from statsboard.observability.metrics import ensure_metrics_exporter
from statsboard.presentation.web import create_app

settings = get_settings()
setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)
if settings.metrics_enabled:
    ensure_metrics_exporter(settings.metrics_port)

logger = get_logger(__name__)
app = create_app(settings)

if __name__ == "__main__":
    host = os.getenv("STATSBOARD_HOST", "127.0.0.1")
    port = int(os.getenv("STATSBOARD_PORT", "5000"))
    logger.info("http_server_starting", host=host, port=port)
    # Threaded so progress streams do not block other requests
    app.run(host=host, port=port, threaded=True)
