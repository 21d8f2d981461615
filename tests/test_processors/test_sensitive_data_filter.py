"""Tests for span processors."""

from agent_tracing.instance import TracingInstance, TracingInstanceConfig
from agent_tracing.processors import REDACTED, SensitiveDataFilter
from agent_tracing.types import SpanType


def make_tracing(recorder, processor: SensitiveDataFilter) -> TracingInstance:
    return TracingInstance(
        TracingInstanceConfig(
            service_name="svc",
            instance_name="filtered",
            exporters=[recorder],
            processors=[processor],
        )
    )


class TestSensitiveDataFilter:
    """Tests for SensitiveDataFilter."""

    def test_redacts_attributes(self, recorder) -> None:
        """Test sensitive attribute keys are redacted before export."""
        tracing = make_tracing(recorder, SensitiveDataFilter())
        tracing.start_span(
            SpanType.GENERIC,
            "login",
            metadata={"attributes": {"apiKey": "abc", "user": "u1"}},
        )
        tracing.force_flush()

        attributes = recorder.events[0].span.metadata.attributes
        assert attributes == {"apiKey": REDACTED, "user": "u1"}

    def test_redacts_nested_input_and_output(self, recorder) -> None:
        """Test nested mappings and lists are walked."""
        tracing = make_tracing(recorder, SensitiveDataFilter())
        span = tracing.start_span(
            SpanType.GENERIC,
            "call",
            input={"headers": {"Authorization": "Bearer x"}, "items": [{"password": "p"}]},
        )
        span.end(output={"ACCESS-TOKEN": "t", "result": 1})
        tracing.force_flush()

        exported = recorder.events[-1].span
        assert exported.input == {
            "headers": {"Authorization": REDACTED},
            "items": [{"password": REDACTED}],
        }
        assert exported.output == {"ACCESS-TOKEN": REDACTED, "result": 1}

    def test_live_span_untouched(self, recorder) -> None:
        """Test redaction only affects the exported snapshot."""
        tracing = make_tracing(recorder, SensitiveDataFilter())
        span = tracing.start_span(SpanType.GENERIC, "call", input={"password": "p"})

        assert span.input == {"password": "p"}

    def test_custom_fields_and_redaction(self, recorder) -> None:
        """Test custom field lists and replacement text."""
        tracing = make_tracing(recorder, SensitiveDataFilter(fields=["ssn"], redaction="***"))
        tracing.start_span(SpanType.GENERIC, "call", input={"ssn": "123", "password": "p"})
        tracing.force_flush()

        assert recorder.events[0].span.input == {"ssn": "***", "password": "p"}

    def test_non_mapping_payloads_pass_through(self, recorder) -> None:
        """Test plain values are exported unchanged."""
        tracing = make_tracing(recorder, SensitiveDataFilter())
        tracing.start_span(SpanType.GENERIC, "call", input="plain text")
        tracing.force_flush()

        assert recorder.events[0].span.input == "plain text"
