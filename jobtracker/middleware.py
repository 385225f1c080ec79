import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import trace_id_var
from .services.prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.http")

EXCLUDE_PATHS = {"/api/health", "/api/metrics/prometheus"}


class TracingMiddleware(BaseHTTPMiddleware):
    """Request tracing and structured request logging"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        trace_id_var.set(trace_id)
        start_time = time.time()

        try:
            response = await call_next(request)
            latency_ms = round((time.time() - start_time) * 1000, 2)
            self._log_request(request.method, request.url.path, response.status_code, latency_ms)
            prometheus_metrics.increment_requests(response.status_code, request.url.path)
            response.headers["X-Request-ID"] = trace_id
            return response
        except Exception as e:
            latency_ms = round((time.time() - start_time) * 1000, 2)
            logger.error(f"Request failed: {e}", extra={
                "component": "api",
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "latency_ms": latency_ms,
            })
            prometheus_metrics.increment_requests(500, request.url.path)
            raise
        finally:
            trace_id_var.set(None)

    def _log_request(self, method: str, path: str, status: int, latency_ms: float):
        if path in EXCLUDE_PATHS:
            return
        if status >= 400:
            level = logging.ERROR if status >= 500 else logging.WARNING
        else:
            level = logging.INFO
        logger.log(level, "HTTP Request", extra={
            "component": "api",
            "method": method,
            "path": path,
            "status": status,
            "latency_ms": latency_ms,
        })
