from __future__ import annotations

"""Prometheus metrics for the co-authoring API.

An HTTP middleware records request latency per method/path/status; the AI
gateway reports attempts and final outcomes through the counters below.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "coauthor_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

AI_ATTEMPTS = Counter(
    "coauthor_ai_attempts_total",
    "Upstream AI generation attempts",
    labelnames=("operation", "result"),
)

AI_OUTCOMES = Counter(
    "coauthor_ai_requests_total",
    "AI generation requests by final outcome",
    labelnames=("operation", "outcome"),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /projects/{id}) to a coarse label.

    Keeps the first segment, or the first two under /api.
    """
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api" and len(segs) > 1:
        return "/api/" + segs[1]
    return "/" + segs[0]


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.endswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(time.perf_counter() - start)
        return response

    return middleware
