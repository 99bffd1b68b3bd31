"""
Team Assessment Engine - Telemetry Module
OpenTelemetry tracing for submission and AI grading
"""
import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from assessment_engine.core.config import settings

logger = logging.getLogger(__name__)

TRACER_NAME = "assessment_engine"

# Global tracer instance
_tracer: Optional[trace.Tracer] = None


def init_telemetry() -> trace.Tracer:
    """
    Install a tracer provider with an OTLP exporter.
    Call this once at application startup, only when OTEL_ENABLED is set.
    """
    global _tracer

    if _tracer is not None:
        return _tracer

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    resource = Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": settings.APP_VERSION,
        "deployment.environment": settings.ENVIRONMENT,
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        )
    )
    trace.set_tracer_provider(provider)

    _tracer = trace.get_tracer(TRACER_NAME, settings.APP_VERSION)
    logger.info(
        "Telemetry initialized: service=%s endpoint=%s",
        settings.OTEL_SERVICE_NAME,
        settings.OTEL_EXPORTER_OTLP_ENDPOINT,
    )
    return _tracer


def get_tracer() -> trace.Tracer:
    """
    Get the tracer.

    Without init_telemetry() this is the API's proxy tracer, which records
    nothing until a provider is installed.
    """
    if _tracer is not None:
        return _tracer
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def agent_span(
    name: str,
    agent_name: str,
    attributes: Optional[dict] = None
):
    """
    Context manager for creating agent execution spans.

    Usage:
        with agent_span("suggest_score", "FreeResponseGraderAgent") as span:
            span.set_attribute("grading.max_points", 5)
            result = await do_work()
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name) as span:
        span.set_attribute("agent.name", agent_name)
        span.set_attribute("agent.operation", name)

        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, str(value) if value is not None else "")

        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def trace_llm_call(
    model: str,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
    total_tokens: int = 0,
):
    """
    Record LLM token usage on the current span.
    """
    span = trace.get_current_span()
    if span:
        span.set_attribute("llm.model", model)
        span.set_attribute("llm.tokens.prompt", prompt_tokens)
        span.set_attribute("llm.tokens.completion", completion_tokens)
        span.set_attribute("llm.tokens.total", total_tokens)
