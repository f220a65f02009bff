from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "wgdash_http_requests_total",
    "HTTP requests processed by wgdash",
    labelnames=["component", "method", "route", "status"],
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "wgdash_http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["component", "method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
_CONTROL_COMMANDS_TOTAL = Counter(
    "wgdash_control_commands_total",
    "Commands issued against the WireGuard control channel",
    labelnames=["kind", "outcome"],
)
_CONTROL_COMMAND_DURATION_SECONDS = Histogram(
    "wgdash_control_command_duration_seconds",
    "Control channel command duration in seconds",
    labelnames=["kind"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def observe_control_command(kind: str, outcome: str, elapsed: float) -> None:
    _CONTROL_COMMANDS_TOTAL.labels(kind, outcome).inc()
    _CONTROL_COMMAND_DURATION_SECONDS.labels(kind).observe(max(0.0, elapsed))


def _route_template(request: Request) -> str:
    path = getattr(request.scope.get("route"), "path", None)
    if isinstance(path, str) and path:
        return path
    return "unmatched"


def install_http_observability(app: FastAPI, *, component: str) -> None:
    logger = logging.getLogger(f"wgdash.{component}.http")

    @app.middleware("http")
    async def _wgdash_http_observer(request: Request, call_next):  # noqa: ANN001, ANN202
        request_id = (request.headers.get("x-request-id") or "").strip() or uuid.uuid4().hex[:16]
        method = request.method.upper()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception:
            logger.exception("request_failed method=%s path=%s request_id=%s", method, request.url.path, request_id)
            raise
        finally:
            elapsed = max(0.0, time.perf_counter() - started)
            route = _route_template(request)
            _HTTP_REQUESTS_TOTAL.labels(component, method, route, str(status_code)).inc()
            _HTTP_REQUEST_DURATION_SECONDS.labels(component, method, route).observe(elapsed)
            level = logging.WARNING if status_code >= 500 else logging.INFO
            logger.log(
                level,
                "request method=%s route=%s status=%s duration_ms=%.2f request_id=%s",
                method,
                route,
                status_code,
                elapsed * 1000,
                request_id,
            )
