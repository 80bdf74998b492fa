"""OpenTelemetry tracing for ingestion and LLM calls."""
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.openai import OpenAIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from booklens.config import Settings
from booklens.utils.logger import logger

TRACER_NAME = "booklens"
SERVICE_VERSION = "1.0.0"


def _build_exporter(otlp_endpoint: str) -> SpanExporter:
    """OTLP over HTTP when an endpoint is configured, stdout otherwise."""
    if otlp_endpoint:
        logger.info(f"Exporting spans to {otlp_endpoint}")
        return OTLPSpanExporter(endpoint=otlp_endpoint)
    logger.info("Exporting spans to the console")
    return ConsoleSpanExporter()


def initialize_tracing(app_settings: Settings) -> Optional[TracerProvider]:
    """
    Install the global tracer provider and instrument the OpenAI client.

    Tracing problems never stop the API from starting; they are logged and
    the application runs untraced.

    Args:
        app_settings: ``tracing_enabled`` and ``otlp_endpoint`` are read

    Returns:
        The installed provider, or None when tracing is off or failed to start
    """
    if not app_settings.tracing_enabled:
        logger.info("Tracing is disabled")
        return None

    try:
        provider = TracerProvider(
            resource=Resource.create(
                {"service.name": TRACER_NAME, "service.version": SERVICE_VERSION}
            )
        )
        provider.add_span_processor(BatchSpanProcessor(_build_exporter(app_settings.otlp_endpoint)))
        trace.set_tracer_provider(provider)

        # Chat completion calls get their own spans with token counts
        OpenAIInstrumentor().instrument()
    except Exception as e:
        logger.error(f"Tracing setup failed, continuing without it: {str(e)}", exc_info=True)
        return None

    return provider


@contextmanager
def start_span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    """
    Open a span on the application tracer.

    Without an initialized provider this yields a no-op span.

    Args:
        name: Span name
        **attributes: Span attributes; None values are skipped
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def shutdown_tracing(provider: Optional[TracerProvider]) -> None:
    """Flush pending spans and stop the provider."""
    if provider is None:
        return
    try:
        provider.shutdown()
    except Exception as e:
        logger.warning(f"Tracing shutdown failed: {str(e)}")
        return
    logger.info("Tracing shut down")
