"""
Per-request id and duration.

Every response carries ``X-Request-ID`` (echoed from the caller or freshly
generated) and ``X-Request-Duration-Ms``. API requests are logged with the
project / workflow ids taken from the URL; generation-backed calls slower
than SLOW_REQUEST_MS are logged as warnings.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 5000
_PROBE_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready", "/api/v1/health/live"})


def _log_level(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Install the before/after hooks; call before any other before_request hook."""

    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_request(response):
        started = g.get("request_started")
        if started is None:
            return response
        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path.startswith("/api/") and request.path not in _PROBE_PATHS:
            view_args = request.view_args or {}
            logger.log(
                _log_level(response.status_code, duration_ms),
                "%s %s -> %d in %.0fms", request.method, request.path, response.status_code, duration_ms,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "project_id": view_args.get("project_id"),
                    "workflow_run_id": view_args.get("workflow_id"),
                    "step_id": view_args.get("step_id"),
                },
            )
        return response
