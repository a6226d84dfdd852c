"""
Application principale FastAPI.

Ce module assemble les composants de l'API du moteur de synchronisation: middlewares, routes,
métriques et gestion des erreurs.

Responsabilités du module:
- Initialiser le logging structuré et le tracing
- Construire l'application FastAPI avec son titre/debug
- Ajouter les middlewares (request id, timing, Prometheus)
- Monter les routers (santé, distribution, connexions, revues, réparation, distant)
"""

from __future__ import annotations

from fastapi import FastAPI

from syncmesh.api.routes_connections import router as connections_router
from syncmesh.api.routes_distribution import router as distribution_router
from syncmesh.api.routes_health import router as health_router
from syncmesh.api.routes_remote import router as remote_router
from syncmesh.api.routes_repair import router as repair_router
from syncmesh.api.routes_reviews import router as reviews_router
from syncmesh.apigw.errors import register_error_handlers
from syncmesh.app.metrics import PrometheusMiddleware, metrics_router
from syncmesh.app.tracing import setup_tracing
from syncmesh.core.container import container
from syncmesh.core.logging import setup_logging
from syncmesh.middlewares.request_id import RequestIDMiddleware
from syncmesh.middlewares.timing import TimingMiddleware


def create_app() -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog) et le tracing OTLP éventuel
    - Ajoute les middlewares utiles au debug/traçabilité
    - Publie les routes et les handlers d'erreurs
    """
    settings = container.settings
    setup_logging(settings.LOG_LEVEL)
    setup_tracing()
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(distribution_router)
    app.include_router(connections_router)
    app.include_router(reviews_router)
    app.include_router(repair_router)
    app.include_router(remote_router)
    app.include_router(metrics_router)
    return app


app = create_app()
