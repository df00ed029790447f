"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus du service d'interprétation de rêves : requêtes HTTP,
pipeline d'interprétation, tentatives de complétion, coûts, retrieval et garde d'entrée.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
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

# Pipeline d'interprétation
INTERPRETATION_REQUESTS = Counter(
    "interpretation_requests_total",
    "Total interpretation requests",
    ["persona", "outcome"],
)
INTERPRETATION_LATENCY = Histogram(
    "interpretation_latency_seconds",
    "End-to-end latency of the interpretation pipeline",
    ["persona"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 90.0],
)
PARSE_STRATEGY_TOTAL = Counter(
    "parse_strategy_total",
    "Completions parsed, by winning parser strategy",
    ["strategy"],
)

# Complétion et coûts
LLM_ATTEMPTS_TOTAL = Counter(
    "llm_attempts_total",
    "Completion attempts by model and outcome",
    ["model", "outcome"],
)
LLM_ATTEMPT_LATENCY = Histogram(
    "llm_attempt_latency_seconds",
    "Latency of single completion attempts",
    ["model"],
)
LLM_TOKENS_TOTAL = Counter(
    "llm_tokens_total",
    "Accumulated LLM tokens",
    ["persona", "model"],
)
LLM_COST_USD = Counter(
    "llm_cost_usd_total",
    "Accumulated LLM cost in USD",
    ["persona", "model"],
)

# Retrieval
RETRIEVAL_QUERIES_TOTAL = Counter(
    "retrieval_queries_total",
    "Total retrieval queries",
    ["backend", "persona"],
)
RETRIEVAL_HITS_TOTAL = Counter(
    "retrieval_hits_total",
    "Total retrieval queries that returned at least one fragment",
    ["backend", "persona"],
)
RETRIEVAL_ERRORS = Counter(
    "retrieval_errors_total",
    "Total retrieval errors",
    ["backend", "code"],
)
RETRIEVAL_LATENCY = Histogram(
    "retrieval_latency_seconds",
    "Latency of retrieval operations",
    ["backend"],
)
QC_FRAGMENTS_USED = Histogram(
    "qc_fragments_used",
    "Fragments forwarded to the prompt after quality control",
    buckets=[0, 1, 2, 3, 5, 8, 10, 15, 20],
)

# LLM Guard metrics
LLM_GUARD_BLOCKS = Counter(
    "llm_guard_block_total",
    "Total requests blocked by LLM Guard",
    ["rule"],
)
LLM_GUARD_WARN = Counter(
    "llm_guard_warn_total",
    "Total LLM Guard warnings (non-blocking)",
    ["rule"],
)


def _normalize_allowed(allowed: list[str] | str | None) -> list[str]:
    """Normalize allowed values from settings (list or CSV string)."""
    if not allowed:
        return []
    if isinstance(allowed, list):
        return [str(x).strip() for x in allowed if str(x).strip()]
    return [s.strip() for s in str(allowed).split(",") if s.strip()]


def labelize_model(model: str | None, allowed: list[str] | str | None) -> str:
    """Project model label through a whitelist; otherwise 'unknown'."""
    vals = set(_normalize_allowed(allowed))
    if not vals:
        return model or "unknown"
    return (model or "").strip() if (model or "").strip() in vals else "unknown"


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

    Collecte les métriques de comptage des requêtes et de latence par route pour l'exposition
    Prometheus.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Traite une requête HTTP et collecte les métriques.

        Args:
            request: Requête HTTP entrante.
            call_next: Fonction pour appeler le middleware suivant.

        Returns:
            Response: Réponse HTTP avec métriques collectées.
        """
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = request.scope.get("path", "unknown")
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
