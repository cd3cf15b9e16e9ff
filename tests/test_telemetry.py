from __future__ import annotations

import asyncio
import logging

import httpx
import pytest

from studio_jobs.core import telemetry
from studio_jobs.core.config import Settings
from studio_jobs.core.telemetry import configure_logging, parse_headers, setup_telemetry, shutdown_telemetry
from studio_jobs.main import generation_session


class CountingInstrumentor:
    def __init__(self) -> None:
        self.instrumented = 0
        self.uninstrumented = 0

    def instrument(self) -> None:
        self.instrumented += 1

    def uninstrument(self) -> None:
        self.uninstrumented += 1


@pytest.fixture
def fresh_tracing(monkeypatch: pytest.MonkeyPatch) -> tuple[list[object], CountingInstrumentor]:
    providers: list[object] = []
    instrumentor = CountingInstrumentor()
    monkeypatch.setattr(telemetry, "_RUNTIME", None)
    monkeypatch.setattr(telemetry, "_HTTPX_INSTRUMENTOR", instrumentor)
    monkeypatch.setattr(telemetry.trace, "set_tracer_provider", providers.append)
    for name in ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_HEADERS"):
        monkeypatch.delenv(name, raising=False)
    return providers, instrumentor


def test_parse_headers_skips_malformed_pairs() -> None:
    assert parse_headers("api-key=abc, x-team = video ,broken,=empty") == {"api-key": "abc", "x-team": "video"}
    assert parse_headers(None) == {}


def test_setup_telemetry_disabled_is_noop(fresh_tracing: tuple[list[object], CountingInstrumentor]) -> None:
    providers, instrumentor = fresh_tracing

    runtime = setup_telemetry(Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert runtime.provider is None
    assert providers == []
    assert instrumentor.instrumented == 0
    shutdown_telemetry()


def test_setup_telemetry_is_installed_once_per_process(
    fresh_tracing: tuple[list[object], CountingInstrumentor],
) -> None:
    providers, instrumentor = fresh_tracing
    settings = Settings(otel_enabled=True, otel_exporter_otlp_endpoint=None)

    first = setup_telemetry(settings)
    second = setup_telemetry(settings)

    assert first is second
    assert first.exporting is False
    assert providers == [first.provider]
    assert instrumentor.instrumented == 1

    shutdown_telemetry()
    assert instrumentor.uninstrumented == 1
    assert telemetry._RUNTIME is None


def test_back_to_back_sessions_share_tracing(fresh_tracing: tuple[list[object], CountingInstrumentor]) -> None:
    providers, instrumentor = fresh_tracing
    settings = Settings(otel_enabled=True, otel_exporter_otlp_endpoint=None)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))

    async def open_sessions() -> None:
        for _ in range(2):
            async with generation_session(settings, transport=transport):
                pass

    asyncio.run(open_sessions())

    assert len(providers) == 1
    assert instrumentor.instrumented == 1
    assert instrumentor.uninstrumented == 0
    assert telemetry._RUNTIME is not None and telemetry._RUNTIME.provider is providers[0]


def test_configure_logging_adds_trace_fields() -> None:
    configure_logging()

    record = logging.getLogRecordFactory()("studio_jobs", logging.INFO, __file__, 1, "hello", (), None)

    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16
