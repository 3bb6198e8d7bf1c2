from __future__ import annotations

import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider

from dutyledger.core import logging as logging_module
from dutyledger.core.config import Settings, get_settings
from dutyledger.core.logging import (
    NO_TRACE,
    TraceContextFilter,
    _parse_otlp_headers,
    build_resource,
    configure_logging,
    init_tracer,
    shutdown_tracer,
)


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("REPEAT_LOOKBACK_DAYS", "14")
    monkeypatch.setenv("OTEL_ENABLED", "true")

    settings = Settings(_env_file=None)

    assert settings.log_level == "debug"
    assert settings.repeat_lookback_days == 14
    assert settings.score_period_days == 7
    assert settings.otel_enabled is True


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_parse_headers_ignores_malformed_items():
    assert _parse_otlp_headers(None) == {}
    assert _parse_otlp_headers("authorization=Bearer abc, x-team = ops ,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-team": "ops",
    }


def test_configure_logging_returns_application_logger():
    settings = Settings(_env_file=None, app_name="dutyledger-test", log_level="warning")

    logger = configure_logging(settings)

    assert logger.name == "dutyledger-test"
    assert logger.level == logging.WARNING
    assert logging.getLogger().level == logging.WARNING


def test_unknown_log_level_falls_back_to_info():
    logger = configure_logging(Settings(_env_file=None, log_level="chatty"))

    assert logger.level == logging.INFO


def test_tracer_disabled_by_default():
    assert init_tracer(Settings(_env_file=None, otel_enabled=False)) is None
    shutdown_tracer(None)


def test_tracer_initialises_once(monkeypatch):
    exporters: list[dict[str, object]] = []

    class DummyExporter:
        def __init__(self, **kwargs):
            exporters.append(kwargs)

    class DummyProcessor:
        def __init__(self, exporter):
            self.exporter = exporter

    installed: list[object] = []

    class DummyProvider:
        def __init__(self, resource):
            self.resource = resource
            self.processors: list[object] = []
            self.shut_down = False

        def add_span_processor(self, processor):
            self.processors.append(processor)

        def shutdown(self):
            self.shut_down = True

    monkeypatch.setattr(logging_module, "OTLPSpanExporter", DummyExporter)
    monkeypatch.setattr(logging_module, "BatchSpanProcessor", DummyProcessor)
    monkeypatch.setattr(logging_module, "TracerProvider", DummyProvider)
    monkeypatch.setattr(logging_module.trace, "set_tracer_provider", installed.append)
    monkeypatch.setattr(logging_module, "_TRACER_INITIALISED", False)

    settings = Settings(
        _env_file=None,
        otel_enabled=True,
        otel_exporter_otlp_endpoint="http://collector:4318/v1/traces",
        otel_exporter_otlp_headers="api-key=secret",
    )

    provider = init_tracer(settings)

    assert isinstance(provider, DummyProvider)
    assert installed == [provider]
    assert exporters == [{"endpoint": "http://collector:4318/v1/traces", "headers": {"api-key": "secret"}}]
    assert init_tracer(settings) is None

    shutdown_tracer(provider)
    assert provider.shut_down
    assert logging_module._TRACER_INITIALISED is False


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(message: str = "ticket moved") -> logging.LogRecord:
    return logging.LogRecord("dutyledger.tickets", logging.INFO, __file__, 1, message, None, None)


def test_trace_filter_marks_records_outside_spans():
    record = _record()

    assert TraceContextFilter("staging").filter(record) is True
    assert record.trace_id == NO_TRACE
    assert record.span_id == NO_TRACE
    assert record.environment == "staging"


def test_trace_filter_uses_active_span_ids():
    tracer = TracerProvider().get_tracer("tests")
    record = _record()

    with tracer.start_as_current_span("tickets.change_status") as span:
        TraceContextFilter().filter(record)
        context = span.get_span_context()

    assert record.trace_id == f"{context.trace_id:032x}"
    assert record.span_id == f"{context.span_id:016x}"


def test_configured_handler_formats_trace_ids():
    configure_logging(Settings(_env_file=None, environment="production"))
    handler = next(
        handler
        for handler in logging.getLogger().handlers
        if any(isinstance(item, TraceContextFilter) for item in handler.filters)
    )
    tracer = TracerProvider().get_tracer("tests")

    with tracer.start_as_current_span("scoring.compute") as span:
        record = _record("scored worker")
        assert handler.filter(record)
        trace_id = f"{span.get_span_context().trace_id:032x}"

    line = handler.format(record)
    assert f"trace_id={trace_id}" in line
    assert line.endswith("scored worker")
    assert record.environment == "production"


def test_resource_describes_deployment():
    settings = Settings(_env_file=None, app_name="ledger", environment="staging", otel_service_name="ledger-api")

    attributes = build_resource(settings).attributes

    assert attributes["service.name"] == "ledger-api"
    assert attributes["service.namespace"] == "ledger"
    assert attributes["deployment.environment"] == "staging"
