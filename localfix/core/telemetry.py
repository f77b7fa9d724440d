"""Tracing and trace-correlated logging for the API and the dashboard worker."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from localfix.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
CORRELATED_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"

logger = logging.getLogger(__name__)
_httpx_instrumentor = HTTPXClientInstrumentor()


class TraceContextFilter(logging.Filter):
    """Stamp the active span's ids on each record; zeros outside a span."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id if context.is_valid else 0, "032x")
        record.span_id = format(context.span_id if context.is_valid else 0, "016x")
        return True


@dataclass(slots=True)
class TelemetryRuntime:
    provider: TracerProvider | None = None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def configure_logging(*, correlate: bool = True) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler()
    if correlate:
        handler.addFilter(TraceContextFilter())
    handler.setFormatter(logging.Formatter(CORRELATED_LOG_FORMAT if correlate else LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def setup_telemetry(settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime()

    provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: settings.otel_service_name,
                "service.namespace": "localfix",
                "deployment.environment": settings.environment,
            }
        ),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=parse_headers(settings.otel_exporter_otlp_headers) or None,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        logger.info("no OTLP endpoint configured; spans stay in-process service=%s", settings.otel_service_name)

    trace.set_tracer_provider(provider)
    # Auth and PostgREST calls all go through httpx.
    _httpx_instrumentor.instrument()
    return TelemetryRuntime(provider)


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if runtime.provider is None:
        return
    _httpx_instrumentor.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def parse_headers(raw: str | None) -> dict[str, str]:
    """Parse an OTLP ``key=value,key=value`` header string, skipping malformed pairs."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, separator, value in pairs if separator and key.strip()}
