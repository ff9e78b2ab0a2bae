"""
Request timing middleware.

Assigns g.request_id (honouring an inbound X-Request-ID), measures the
request and echoes both back as X-Request-ID / X-Request-Duration-Ms.

Log level per request:
    5xx                      ERROR
    slower than threshold    WARNING
    everything else          DEBUG
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

# Paths excluded from request logs (health checks, assets)
_QUIET_PREFIXES = ("/api/v1/health", "/static")

SLOW_THRESHOLD_MS = 1000


def _level_for(status_code: int, duration_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_timer(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path.startswith(_QUIET_PREFIXES):
            return response

        view_args = request.view_args or {}
        logger.log(
            _level_for(response.status_code, duration_ms),
            "%s %s -> %d (%.0fms)",
            request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "requisition_id": view_args.get("requisition_id"),
            },
        )
        return response
