"""
Prometheus metrics for ImageVault
Counters are always registered; the /metrics endpoint is served only when
METRICS_ENABLED is set.
"""

import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUESTS_TOTAL = Counter(
    "imagevault_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "imagevault_http_request_seconds",
    "Request duration in seconds",
    ["method", "path"],
)

ANALYSES_TOTAL = Counter(
    "imagevault_analyses_total",
    "Image analyses by outcome",
    ["status"],
)

SIMILARITY_SEARCHES = Counter(
    "imagevault_similarity_searches_total",
    "Similarity searches executed",
)

MALFORMED_HASHES = Counter(
    "imagevault_malformed_hashes_total",
    "Fingerprint index entries skipped because their hash did not parse",
)

HYDRATION_MISSES = Counter(
    "imagevault_hydration_misses_total",
    "Search hits whose record could not be read",
)


def record_analysis(status: str):
    ANALYSES_TOTAL.labels(status=status).inc()


def record_search():
    SIMILARITY_SEARCHES.inc()


def record_malformed_hash():
    MALFORMED_HASHES.inc()


def record_hydration_miss():
    HYDRATION_MISSES.inc()


async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def metrics_middleware(app: FastAPI):
    """Add request metrics middleware to the FastAPI app"""

    @app.middleware("http")
    async def _metrics(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        REQUESTS_TOTAL.labels(method=request.method, path=path, status=str(response.status_code)).inc()
        REQUEST_DURATION.labels(method=request.method, path=path).observe(time.time() - start)
        return response
