"""
Unit tests for OpenTelemetry span helpers.
"""
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from aicore.core import tracing
from aicore.core.logging import get_trace_id, set_trace_id
from aicore.core.tracing import get_trace_id_from_context, set_span_attribute, start_span


@pytest.fixture
def exporter(monkeypatch):
    """Route spans from ``start_span`` into an in-memory exporter."""
    span_exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("aicore-tests"))
    yield span_exporter
    set_trace_id(None)


def test_span_records_attributes(exporter):
    with start_span("ai.orchestrate", capability="text-generation", model="gpt-4o", conversation_id=None):
        set_span_attribute("ai.cached", False)
        set_span_attribute("ai.skipped", None)

    (span,) = exporter.get_finished_spans()
    assert span.name == "ai.orchestrate"
    assert span.attributes["capability"] == "text-generation"
    assert span.attributes["model"] == "gpt-4o"
    assert span.attributes["ai.cached"] is False
    assert "conversation_id" not in span.attributes
    assert "ai.skipped" not in span.attributes


def test_span_trace_id_reaches_logging_context(exporter):
    with start_span("ai.provider.generate") as span:
        expected = format(span.get_span_context().trace_id, "032x")
        assert get_trace_id_from_context() == expected

    assert get_trace_id() == expected


def test_exception_marks_span_as_error(exporter):
    with pytest.raises(RuntimeError):
        with start_span("ai.orchestrate"):
            raise RuntimeError("provider exploded")

    (span,) = exporter.get_finished_spans()
    assert span.status.status_code == StatusCode.ERROR
    assert span.status.description == "provider exploded"
    assert [event.name for event in span.events] == ["exception"]


def test_nested_spans_share_trace(exporter):
    with start_span("ai.orchestrate"):
        with start_span("ai.provider.generate"):
            pass

    inner, outer = exporter.get_finished_spans()
    assert inner.parent.span_id == outer.context.span_id
    assert inner.context.trace_id == outer.context.trace_id


def test_no_active_span_has_no_trace_id():
    assert get_trace_id_from_context() is None
