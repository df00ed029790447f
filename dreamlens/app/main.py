"""
Application principale FastAPI.

Ce module assemble tous les composants de l'application : middlewares,
routes, métriques et configuration de l'API d'interprétation de rêves.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI avec son titre/debug
- Ajouter les middlewares (request id, timing, métriques)
- Monter les routers (santé, interprétation, coûts, métriques)
"""

from __future__ import annotations

from fastapi import FastAPI

from dreamlens.api.routes_costs import router as costs_router
from dreamlens.api.routes_health import router as health_router
from dreamlens.api.routes_interpret import router as interpret_router
from dreamlens.app.metrics import PrometheusMiddleware, metrics_router
from dreamlens.app.tracing import setup_tracing
from dreamlens.core.container import container
from dreamlens.core.logging import setup_logging
from dreamlens.middlewares.request_context import RequestIDMiddleware, TimingMiddleware


def create_app() -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog)
    - Lit les paramètres d'exécution
    - Ajoute les middlewares utiles au debug/traçabilité
    - Publie les routes de santé, d'interprétation et de coûts
    """
    settings = container.settings
    setup_logging(settings.LOG_LEVEL)
    setup_tracing()
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(TimingMiddleware)
    app.include_router(health_router)
    app.include_router(interpret_router)
    app.include_router(costs_router)
    app.include_router(metrics_router)
    return app


app = create_app()
