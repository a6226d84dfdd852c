"""Configuration du tracing OpenTelemetry pour l'observabilité.

Ce module configure le tracing distribué avec OpenTelemetry pour exporter les traces (dont les
spans `distribution.run`) vers un endpoint OTLP configuré via les variables d'environnement.
"""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from syncmesh.core.container import container


def setup_tracing() -> bool:
    """Configure le provider de tracing si `OTLP_ENDPOINT` est défini.

    Returns:
        bool: True si un exporteur a été installé.
    """
    endpoint = getattr(container.settings, "OTLP_ENDPOINT", None)
    if not endpoint:
        return False

    resource = Resource.create({"service.name": container.settings.APP_NAME})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True
