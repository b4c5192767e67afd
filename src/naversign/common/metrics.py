"""Prometheus metrics for naversign."""

import time

from prometheus_client import Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

# === Counters ===

SIGNATURES_TOTAL = Counter(
    "naversign_signatures_total",
    "Total signature generation attempts",
    ["mode", "outcome"],  # outcome: success, rejected, error, timeout
)

VERIFICATIONS_TOTAL = Counter(
    "naversign_verifications_total",
    "Total signature verifications",
    ["mode", "result"],  # result: valid, invalid, rejected, error, timeout
)

HTTP_REQUESTS_TOTAL = Counter(
    "naversign_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

# === Histograms ===

HASH_LATENCY = Histogram(
    "naversign_hash_latency_seconds",
    "bcrypt computation latency in seconds",
    ["operation", "mode"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

HTTP_REQUEST_LATENCY = Histogram(
    "naversign_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


# === Helper Functions ===


def record_signature(mode: str, outcome: str, latency: float | None = None) -> None:
    """Record a signature generation."""
    SIGNATURES_TOTAL.labels(mode=mode, outcome=outcome).inc()
    if latency is not None:
        HASH_LATENCY.labels(operation="generate", mode=mode).observe(latency)


def record_verification(mode: str, result: str, latency: float | None = None) -> None:
    """Record a signature verification."""
    VERIFICATIONS_TOTAL.labels(mode=mode, result=result).inc()
    if latency is not None:
        HASH_LATENCY.labels(operation="verify", mode=mode).observe(latency)


def record_http_request(
    method: str,
    endpoint: str,
    status: int,
    latency: float,
) -> None:
    """Record an HTTP request."""
    HTTP_REQUESTS_TOTAL.labels(
        method=method,
        endpoint=endpoint,
        status=str(status),
    ).inc()
    HTTP_REQUEST_LATENCY.labels(
        method=method,
        endpoint=endpoint,
    ).observe(latency)


# === HTTP Endpoint ===


class MetricsMiddleware(BaseHTTPMiddleware):
    """HTTP request metrics middleware."""

    def __init__(
        self,
        app: ASGIApp,
        exclude_paths: list[str] | None = None,
        known_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self._exclude_paths = set(exclude_paths or [])
        self._known_paths = set(known_paths) if known_paths is not None else None

    def _endpoint_label(self, request: Request) -> str:
        path = request.url.path
        # Collapse unmatched paths so scanners cannot inflate label cardinality
        if self._known_paths is not None and path not in self._known_paths:
            return "unmatched"
        return path

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exclude_paths:
            return await call_next(request)

        endpoint = self._endpoint_label(request)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            record_http_request(
                method=request.method,
                endpoint=endpoint,
                status=500,
                latency=duration,
            )
            raise

        duration = time.perf_counter() - start
        record_http_request(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
            latency=duration,
        )
        return response


async def metrics_endpoint(_request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return Response(
        generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
