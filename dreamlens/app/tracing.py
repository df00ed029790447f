"""Configuration du tracing OpenTelemetry pour l'observabilité.

Ce module configure le tracing distribué avec OpenTelemetry pour exporter les traces du pipeline
d'interprétation vers un endpoint OTLP configuré via les variables d'environnement.
"""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from dreamlens.core.container import container


def setup_tracing() -> bool:
    """Configure le tracing OpenTelemetry pour l'observabilité.

    Initialise le provider de tracing et configure l'exporteur OTLP si le tracing est activé
    (OTEL_ENABLED) et l'endpoint configuré. Sans provider, les spans du pipeline sont des no-op.

    Returns:
        bool: Vrai si un provider a été installé.
    """
    settings = container.settings
    if not settings.OTEL_ENABLED or not settings.OTLP_ENDPOINT:
        return False

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.APP_NAME}))
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTLP_ENDPOINT, insecure=True))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    return True
