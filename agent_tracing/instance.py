"""Tracing instance: sampling, span creation and event broadcast.

A tracing instance is one configured pipeline:

    start_span (root) -> sampling -> Span -> processors -> export queues -> exporters
    start_span (child) ------------> Span -> processors -> export queues -> exporters

Sampling runs once, for the root. A rejected root is a NoOpSpan and so are
all of its descendants, so rejected traces never reach processors or
exporters. Every lifecycle event runs through the processors synchronously;
the surviving snapshot is queued for each exporter in registration order.
"""

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from agent_tracing.config import Settings
from agent_tracing.errors import (
    InstanceShutdownError,
    InvalidSpanMetadataError,
    TracingError,
    TracingShutdownError,
)
from agent_tracing.export_queue import DEFAULT_MAX_QUEUE_SIZE, ExportQueue
from agent_tracing.exporters.base import SpanExporter
from agent_tracing.processors import SpanProcessor
from agent_tracing.sampling import AlwaysSample, SamplingStrategy
from agent_tracing.spans import AnySpan, NoOpSpan, Span, SpanSnapshot
from agent_tracing.types import (
    MetadataInput,
    SpanType,
    TraceContext,
    TracingEvent,
    TracingEventType,
    build_metadata,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TracingInstanceConfig:
    """Configuration for a single tracing instance.

    Attributes:
        service_name: Service reported by this instance.
        instance_name: Name of the instance in the registry. Defaults to
            the registry key, or the service name outside a registry.
        sampling: Sampling strategy, evaluated once per trace.
        exporters: Exporters, called in order.
        processors: Processors, applied in order before export.
        strict: Raise on span misuse instead of logging a warning.
        max_queue_size: Max undelivered events per exporter.
    """

    service_name: str
    instance_name: str | None = None
    sampling: SamplingStrategy = field(default_factory=AlwaysSample)
    exporters: tuple[SpanExporter, ...] = ()
    processors: tuple[SpanProcessor, ...] = ()
    strict: bool = False
    max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE

    def __post_init__(self) -> None:
        # Accept lists while keeping the config immutable
        object.__setattr__(self, "exporters", tuple(self.exporters))
        object.__setattr__(self, "processors", tuple(self.processors))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        instance_name: str | None = None,
        exporters: Iterable[SpanExporter] = (),
        processors: Iterable[SpanProcessor] = (),
    ) -> "TracingInstanceConfig":
        """Build an instance configuration from tracing settings.

        Args:
            settings: Settings with TRACING_* values.
            instance_name: Name of the instance in the registry.
            exporters: Exporters, called in order.
            processors: Processors, applied in order before export.

        Returns:
            Instance configuration.
        """
        return cls(
            service_name=settings.TRACING_SERVICE_NAME,
            instance_name=instance_name,
            sampling=settings.sampling_strategy(),
            exporters=tuple(exporters),
            processors=tuple(processors),
            strict=settings.TRACING_STRICT,
            max_queue_size=settings.TRACING_EXPORT_QUEUE_SIZE,
        )


class TracingInstance:
    """Creates spans for one tracing configuration and broadcasts their events.

    Example:
        tracing = TracingInstance(
            TracingInstanceConfig(
                service_name="chef-agent",
                instance_name="default",
                exporters=[ConsoleExporter()],
            )
        )
        root = tracing.start_span(SpanType.AGENT_RUN, "chef", metadata={"agent_id": "chef-1"})
        llm = root.create_child_span(SpanType.LLM_GENERATION, "plan", metadata={"model": "gpt-4"})
        llm.end(output="recipe text")
        root.end(output={"status": "done"})
        await tracing.flush()
    """

    def __init__(self, config: TracingInstanceConfig) -> None:
        """Initialize the instance.

        Args:
            config: Instance configuration.
        """
        self._config = config
        self._queues = [
            ExportQueue(exporter, max_size=config.max_queue_size)
            for exporter in config.exporters
        ]
        self._open_spans: dict[str, set[str]] = {}
        self._is_shutdown = False
        self._logger = logger.bind(
            component="tracing_instance",
            instance=self.instance_name,
            service=config.service_name,
        )

    @property
    def service_name(self) -> str:
        return self._config.service_name

    @property
    def instance_name(self) -> str:
        return self._config.instance_name or self._config.service_name

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    @property
    def exporters(self) -> tuple[SpanExporter, ...]:
        return self._config.exporters

    @property
    def processors(self) -> tuple[SpanProcessor, ...]:
        return self._config.processors

    def get_config(self) -> TracingInstanceConfig:
        """Get the instance configuration."""
        return self._config

    def start_span(
        self,
        span_type: SpanType,
        name: str,
        *,
        input: Any = None,
        metadata: MetadataInput = None,
        parent: AnySpan | None = None,
        runtime_context: Mapping[str, Any] | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> AnySpan:
        """Start a span.

        Without a parent this starts a new trace and applies sampling.
        With a parent the span joins the parent's trace; sampling is not
        evaluated again.

        Args:
            span_type: Type of the span.
            name: Name of the span.
            input: Input data to capture.
            metadata: Metadata for the span type.
            parent: Parent span, None for a root span.
            runtime_context: Request-scoped values for sampling.
            attributes: Trace-level attributes for sampling.

        Returns:
            The new span, or a NoOpSpan when the trace is not recorded.
        """
        if self._is_shutdown:
            self.report_misuse(TracingShutdownError(self.instance_name))
            return NoOpSpan(span_type, name, input=input, metadata=metadata, tracing=self)

        if isinstance(parent, NoOpSpan):
            return parent.create_child_span(span_type, name, input=input, metadata=metadata)

        if parent is None:
            context = TraceContext(runtime_context=runtime_context, attributes=attributes or {})
            if not self._config.sampling.should_sample(context):
                self._logger.debug("trace_sampled_out", span_name=name)
                return NoOpSpan(span_type, name, input=input, metadata=metadata, tracing=self)

        try:
            span_metadata = build_metadata(span_type, metadata)
        except InvalidSpanMetadataError as e:
            self.report_misuse(e)
            return NoOpSpan(span_type, name, input=input, tracing=self)

        span = Span(self, span_type, name, input=input, metadata=span_metadata, parent=parent)
        if not span.trace.ended:
            self._open_spans.setdefault(span.trace_id, set()).add(span.id)
        self.emit_span_event(TracingEventType.SPAN_STARTED, span)
        return span

    def emit_span_event(self, event_type: TracingEventType, span: Span) -> None:
        """Run processors on a span event and queue it for every exporter.

        Args:
            event_type: Lifecycle event.
            span: Span the event is about.
        """
        if event_type is TracingEventType.SPAN_ENDED:
            self._track_span_ended(span)

        snapshot: SpanSnapshot | None = span.snapshot()
        for processor in self._config.processors:
            try:
                snapshot = processor.process(snapshot)
            except Exception as e:
                self._logger.warning(
                    "processor_failed",
                    processor=processor.name,
                    span_id=span.id,
                    error=str(e),
                )
                continue
            if snapshot is None:
                self._logger.debug(
                    "span_event_dropped",
                    processor=processor.name,
                    span_id=span.id,
                    event_type=event_type.value,
                )
                return

        event = TracingEvent(type=event_type, span=snapshot)
        for queue in self._queues:
            try:
                queue.submit(event)
            except Exception as e:
                self._logger.warning(
                    "exporter_submit_failed",
                    exporter=queue.exporter.name,
                    span_id=span.id,
                    error=str(e),
                )

    def report_misuse(self, error: TracingError) -> None:
        """Handle incorrect use of the tracing API.

        Raises the error when the instance is strict, otherwise logs it.

        Raises:
            TracingError: If the instance is configured with strict=True.
        """
        if self._config.strict:
            raise error
        self._logger.warning("tracing_misuse", **error.to_dict())

    def force_flush(self, timeout: float | None = None) -> bool:
        """Block until every queued event has reached its exporter.

        For synchronous callers; async code should await ``flush`` instead.

        Args:
            timeout: Maximum seconds to wait per exporter, None for no limit.

        Returns:
            True if every queue drained before the timeout.
        """
        return all([queue.wait_idle(timeout) for queue in self._queues])

    async def flush(self, timeout: float | None = None) -> bool:
        """Wait for every queued event to reach its exporter."""
        results = await asyncio.gather(*(queue.flush(timeout) for queue in self._queues))
        return all(results)

    async def shutdown(self) -> None:
        """Flush pending events, then shut down processors and exporters.

        Every processor and exporter is shut down even if some fail.

        Raises:
            InstanceShutdownError: If any processor or exporter failed.
        """
        if self._is_shutdown:
            return
        self._is_shutdown = True
        await asyncio.gather(*(queue.close() for queue in self._queues))

        components: list[SpanProcessor | SpanExporter] = [
            *self._config.processors,
            *self._config.exporters,
        ]
        results = await asyncio.gather(
            *(component.shutdown() for component in components),
            return_exceptions=True,
        )
        failures: dict[str, BaseException] = {}
        for component, result in zip(components, results, strict=True):
            if isinstance(result, BaseException):
                self._logger.warning(
                    "component_shutdown_failed",
                    component=component.name,
                    error=str(result),
                )
                failures[component.name] = result
        self._open_spans.clear()
        if failures:
            raise InstanceShutdownError(self.instance_name, failures)
        self._logger.info("tracing_instance_shutdown")

    def _track_span_ended(self, span: Span) -> None:
        open_spans = self._open_spans.get(span.trace_id)
        if open_spans is None:
            return
        open_spans.discard(span.id)
        if span.is_root_span:
            if open_spans:
                self._logger.warning(
                    "root_span_ended_with_open_children",
                    trace_id=span.trace_id,
                    open_children=len(open_spans),
                )
            del self._open_spans[span.trace_id]

    def open_span_count(self, trace_id: str) -> int:
        """Number of spans of a trace that have started but not ended."""
        return len(self._open_spans.get(trace_id, ()))
