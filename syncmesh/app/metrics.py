"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus du moteur de synchronisation (HTTP, distribution,
revues, réparation, appels distants) et expose la route `/metrics`.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Distribution
DISTRIBUTION_ENQUEUED_TOTAL = Counter(
    "syncmesh_distribution_enqueued_total",
    "Distribution items created",
    ["action", "origin"],
)
DISTRIBUTION_RESULTS_TOTAL = Counter(
    "syncmesh_distribution_results_total",
    "Distribution runs by final status and error class",
    ["status", "kind"],
)
DISTRIBUTION_RUN_SECONDS = Histogram(
    "syncmesh_distribution_run_seconds",
    "Duration of one distribution run",
    ["destination_kind"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
DISTRIBUTION_STUCK = Gauge(
    "syncmesh_distribution_stuck_items",
    "Items found in init/started beyond the stuck threshold at last check",
)

# Revue, réparation, distant
REVIEW_TRANSITIONS_TOTAL = Counter(
    "syncmesh_review_transitions_total",
    "Review state transitions",
    ["state"],
)
REPAIR_ACTIONS_TOTAL = Counter(
    "syncmesh_repair_actions_total",
    "Repair actions attempted",
    ["action", "result"],
)
ERRORS_DETECTED_TOTAL = Counter(
    "syncmesh_errors_detected_total",
    "Sync errors detected by class",
    ["kind"],
)
REMOTE_CALLS_TOTAL = Counter(
    "syncmesh_remote_calls_total",
    "Calls to connected remote networks",
    ["op", "result"],
)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte le comptage des requêtes et la latence par route.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.scope.get("path", "unknown")
        REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(path).observe(time.perf_counter() - start)
        return response
