"""Console exporter that logs span lifecycle events."""

from typing import Any

import structlog

from agent_tracing.exporters.base import SpanExporter, sanitize_attributes
from agent_tracing.types import TracingEvent, TracingEventType

logger = structlog.get_logger(__name__)


class ConsoleExporter(SpanExporter):
    """Logs every tracing event through structlog.

    Useful during development, alongside a remote exporter:

        TracingInstanceConfig(
            service_name="chef-agent",
            instance_name="default",
            exporters=[LangfuseExporter(...), ConsoleExporter()],
        )
    """

    name = "console"

    def __init__(self, *, include_payloads: bool = False) -> None:
        """Initialize the exporter.

        Args:
            include_payloads: Also log span input and output.
        """
        self.include_payloads = include_payloads
        self._logger = logger.bind(component="console_exporter")

    async def export_event(self, event: TracingEvent) -> None:
        span = event.span
        fields: dict[str, Any] = {
            "span_id": span.id,
            "trace_id": span.trace_id,
            "parent_id": span.parent_id,
            "span_name": span.name,
            "span_type": span.type.value,
        }
        if span.metadata.tags:
            fields["tags"] = span.metadata.tags
        attributes = sanitize_attributes(span.metadata.attributes)
        if attributes:
            fields["attributes"] = attributes
        if self.include_payloads:
            fields["input"] = span.input
            fields["output"] = span.output

        if event.type is TracingEventType.SPAN_ENDED:
            fields["duration_ms"] = span.duration_ms
            fields["has_error"] = span.error_info is not None
            if span.error_info is not None:
                fields["error"] = span.error_info.message
                self._logger.warning(event.type.value, **fields)
                return

        self._logger.info(event.type.value, **fields)

    async def shutdown(self) -> None:
        self._logger.debug("console_exporter_shutdown")
