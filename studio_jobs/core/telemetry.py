"""Process-wide logging and tracing for generation batches.

OpenTelemetry accepts a global tracer provider only once per process, so
tracing is installed by the first enabled ``setup_telemetry`` call and shared by
every later session. Sessions only flush; ``shutdown_telemetry`` belongs to
process teardown.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import threading

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from studio_jobs.core.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
EMPTY_TRACE_ID = "0" * 32
EMPTY_SPAN_ID = "0" * 16

_PLAIN_RECORD_FACTORY = logging.getLogRecordFactory()
_HTTPX_INSTRUMENTOR = HTTPXClientInstrumentor()
_SETUP_LOCK = threading.Lock()


@dataclass(slots=True)
class TelemetryRuntime:
    enabled: bool
    provider: TracerProvider | None
    exporting: bool = False


_RUNTIME: TelemetryRuntime | None = None


def configure_logging(level: int = logging.INFO) -> None:
    _install_log_correlation()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)


def setup_telemetry(settings: Settings) -> TelemetryRuntime:
    """Install tracing for the process on the first enabled call; later calls reuse it."""
    global _RUNTIME
    if not settings.otel_enabled:
        return _RUNTIME or TelemetryRuntime(enabled=False, provider=None)

    with _SETUP_LOCK:
        if _RUNTIME is not None:
            return _RUNTIME
        if settings.otel_log_correlation:
            _install_log_correlation()

        resource = Resource.create(
            {SERVICE_NAME: settings.otel_service_name, DEPLOYMENT_ENVIRONMENT: settings.environment}
        )
        provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio))
        exporter = _build_exporter(settings)
        if exporter is not None:
            provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        _HTTPX_INSTRUMENTOR.instrument()

        _RUNTIME = TelemetryRuntime(enabled=True, provider=provider, exporting=exporter is not None)
        logger.info(
            "tracing installed for service=%s exporting=%s",
            settings.otel_service_name,
            _RUNTIME.exporting,
        )
        return _RUNTIME


def flush_telemetry(timeout_millis: int = 30000) -> None:
    """Push buffered spans out without tearing tracing down."""
    runtime = _RUNTIME
    if runtime is None or runtime.provider is None:
        return
    if not runtime.provider.force_flush(timeout_millis):
        logger.warning("span flush did not finish within %sms", timeout_millis)


def shutdown_telemetry() -> None:
    global _RUNTIME
    with _SETUP_LOCK:
        runtime, _RUNTIME = _RUNTIME, None
    if runtime is None:
        return
    _HTTPX_INSTRUMENTOR.uninstrument()
    if runtime.provider is not None:
        runtime.provider.force_flush()
        runtime.provider.shutdown()


def _build_exporter(settings: Settings) -> OTLPSpanExporter | None:
    endpoint = (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    if not endpoint:
        logger.info("no OTLP endpoint configured; generation spans stay in-process")
        return None

    options: dict[str, object] = {"endpoint": endpoint}
    headers = parse_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    if headers:
        options["headers"] = headers
    return OTLPSpanExporter(**options)


def parse_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` exporter headers, skipping malformed pairs."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, separator, value in pairs if separator and key.strip()}


def _correlated_record(*args: object, **kwargs: object) -> logging.LogRecord:
    record = _PLAIN_RECORD_FACTORY(*args, **kwargs)
    context = trace.get_current_span().get_span_context()
    record.trace_id = format(context.trace_id, "032x") if context.is_valid else EMPTY_TRACE_ID
    record.span_id = format(context.span_id, "016x") if context.is_valid else EMPTY_SPAN_ID
    return record


def _install_log_correlation() -> None:
    if logging.getLogRecordFactory() is not _correlated_record:
        logging.setLogRecordFactory(_correlated_record)
