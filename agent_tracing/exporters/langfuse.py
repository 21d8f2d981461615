"""Langfuse exporter.

Translates span lifecycle events into Langfuse observations:

    root span          -> trace (id = span.trace_id) + root observation
    llm_generation     -> generation (model, model parameters, usage)
    every other type   -> span

The exporter keeps two mappings per client:
- trace id -> trace handle (the root observation, used for trace-level fields)
- span id  -> observation handle

A child is attached to its parent's observation when the parent is known,
otherwise directly to the trace. Processors may drop intermediate spans, so
the fallback keeps such children attached to the right trace. When a root
span ends, every mapping entry of its trace is released.
"""

import asyncio
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from langfuse import Langfuse, get_client

from agent_tracing.config import Settings
from agent_tracing.exporters.base import SpanExporter, sanitize_attributes
from agent_tracing.spans import SpanSnapshot
from agent_tracing.types import (
    AgentRunMetadata,
    LLMGenerationMetadata,
    MCPToolCallMetadata,
    SpanType,
    TokenUsage,
    ToolCallMetadata,
    TracingEvent,
    TracingEventType,
    WorkflowRunMetadata,
    WorkflowStepMetadata,
)

logger = structlog.get_logger(__name__)

LEVEL_DEFAULT = "DEFAULT"
LEVEL_ERROR = "ERROR"


@dataclass
class LangfuseClientOptions:
    """Tuning options passed through to the Langfuse client.

    Attributes:
        debug: Enable Langfuse client debug logging.
        flush_at: Batch size that triggers a flush.
        flush_interval: Seconds between background flushes.
        request_timeout: Request timeout in seconds.
    """

    debug: bool = False
    flush_at: int | None = None
    flush_interval: float | None = None
    request_timeout: int | None = None

    def to_client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"debug": self.debug}
        if self.flush_at is not None:
            kwargs["flush_at"] = self.flush_at
        if self.flush_interval is not None:
            kwargs["flush_interval"] = self.flush_interval
        if self.request_timeout is not None:
            kwargs["timeout"] = self.request_timeout
        return kwargs


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _to_nanoseconds(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1_000_000_000)


def _usage_details(usage: TokenUsage) -> dict[str, int]:
    return _compact(
        {
            "input": usage.prompt_tokens,
            "output": usage.completion_tokens,
            "total": usage.total_tokens,
        }
    )


class LangfuseExporter(SpanExporter):
    """Exports spans to Langfuse.

    Example:
        exporter = LangfuseExporter(
            public_key=os.environ["LANGFUSE_PUBLIC_KEY"],
            secret_key=os.environ["LANGFUSE_SECRET_KEY"],
            base_url="https://cloud.langfuse.com",
            realtime=True,
        )
    """

    name = "langfuse"

    def __init__(
        self,
        public_key: str | None = None,
        secret_key: str | None = None,
        *,
        base_url: str | None = None,
        realtime: bool = False,
        options: LangfuseClientOptions | None = None,
    ) -> None:
        """Initialize the exporter.

        Without explicit keys the client is configured from the LANGFUSE_*
        environment variables.

        Args:
            public_key: Langfuse public API key.
            secret_key: Langfuse secret API key.
            base_url: Langfuse host URL.
            realtime: Flush the client after every event.
            options: Client tuning options.
        """
        self.realtime = realtime
        self._client = self._create_client(
            public_key, secret_key, base_url, options or LangfuseClientOptions()
        )
        self._trace_map: dict[str, Any] = {}
        self._span_map: dict[str, Any] = {}
        self._trace_spans: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self._logger = logger.bind(component="langfuse_exporter")

    @classmethod
    def from_settings(cls, settings: Settings) -> "LangfuseExporter":
        """Create an exporter from tracing settings.

        Args:
            settings: Settings with LANGFUSE_* values.

        Returns:
            Configured exporter.
        """
        return cls(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            base_url=settings.LANGFUSE_HOST,
            realtime=settings.LANGFUSE_REALTIME,
        )

    @staticmethod
    def _create_client(
        public_key: str | None,
        secret_key: str | None,
        base_url: str | None,
        options: LangfuseClientOptions,
    ) -> Langfuse:
        if public_key and secret_key:
            return Langfuse(
                public_key=public_key,
                secret_key=secret_key,
                host=base_url or os.getenv("LANGFUSE_HOST", "http://localhost:3000"),
                **options.to_client_kwargs(),
            )

        # Fall back to get_client which uses env vars automatically
        return get_client()

    @property
    def active_traces(self) -> int:
        """Number of traces with a live trace handle."""
        return len(self._trace_map)

    @property
    def active_spans(self) -> int:
        """Number of spans with a live observation handle."""
        return len(self._span_map)

    async def export_event(self, event: TracingEvent) -> None:
        with self._lock:
            if event.type is TracingEventType.SPAN_STARTED:
                self._handle_span_started(event.span)
            elif event.type is TracingEventType.SPAN_UPDATED:
                self._handle_span_updated(event.span)
            elif event.type is TracingEventType.SPAN_ENDED:
                self._handle_span_ended(event.span)

        if self.realtime:
            await asyncio.to_thread(self._client.flush)

    async def shutdown(self) -> None:
        await asyncio.to_thread(self._client.shutdown)
        with self._lock:
            self._trace_map.clear()
            self._span_map.clear()
            self._trace_spans.clear()
        self._logger.debug("langfuse_exporter_shutdown")

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_span_started(self, span: SpanSnapshot) -> None:
        is_generation = span.type is SpanType.LLM_GENERATION
        fields = self._observation_fields(span)

        if span.is_root_span:
            trace_context = {"trace_id": span.trace_id}
            if is_generation:
                handle = self._client.start_observation(
                    trace_context=trace_context, as_type="generation", **fields
                )
            else:
                handle = self._client.start_span(trace_context=trace_context, **fields)
            attributes = span.metadata.attributes
            handle.update_trace(
                **_compact(
                    {
                        "name": span.name,
                        "user_id": attributes.get("user_id") or attributes.get("userId"),
                        "session_id": attributes.get("session_id") or attributes.get("sessionId"),
                        "tags": list(span.metadata.tags) or None,
                        "metadata": sanitize_attributes(attributes) or None,
                        "input": span.input,
                    }
                )
            )
            self._trace_map[span.trace_id] = handle
        else:
            parent = self._find_parent(span)
            if parent is None:
                self._logger.warning(
                    "langfuse_parent_not_found",
                    span_id=span.id,
                    parent_id=span.parent_id,
                    trace_id=span.trace_id,
                )
                return
            if is_generation:
                handle = parent.start_observation(as_type="generation", **fields)
            else:
                handle = parent.start_span(**fields)

        self._span_map[span.id] = handle
        self._trace_spans.setdefault(span.trace_id, set()).add(span.id)
        self._logger.debug(
            "langfuse_observation_started",
            span_id=span.id,
            trace_id=span.trace_id,
            span_type=span.type.value,
        )

    def _handle_span_updated(self, span: SpanSnapshot) -> None:
        handle = self._span_map.get(span.id)
        if handle is None:
            return
        fields = self._observation_fields(span)
        fields.pop("name", None)
        handle.update(**fields)

    def _handle_span_ended(self, span: SpanSnapshot) -> None:
        handle = self._span_map.get(span.id)
        if handle is None:
            self._logger.debug("langfuse_unknown_span_ended", span_id=span.id)
            if span.is_root_span:
                self._release_trace(span.trace_id)
            return

        fields = self._observation_fields(span)
        fields.pop("name", None)
        if span.error_info is not None:
            fields["level"] = LEVEL_ERROR
            fields["status_message"] = span.error_info.message
        else:
            fields["level"] = LEVEL_DEFAULT
        handle.update(**fields)

        if span.is_root_span:
            # Trace attributes must be set before the root observation closes
            trace = self._trace_map.get(span.trace_id)
            if trace is not None and span.output is not None:
                trace.update_trace(output=span.output)

        handle.end(end_time=_to_nanoseconds(span.end_time))
        self._span_map.pop(span.id, None)
        spans = self._trace_spans.get(span.trace_id)
        if spans is not None:
            spans.discard(span.id)

        if span.is_root_span:
            self._release_trace(span.trace_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find_parent(self, span: SpanSnapshot) -> Any:
        if span.parent_id is not None and span.parent_id in self._span_map:
            return self._span_map[span.parent_id]
        return self._trace_map.get(span.trace_id)

    def _release_trace(self, trace_id: str) -> None:
        self._trace_map.pop(trace_id, None)
        open_spans = self._trace_spans.pop(trace_id, set())
        if open_spans:
            self._logger.warning(
                "langfuse_trace_closed_with_open_spans",
                trace_id=trace_id,
                open_spans=len(open_spans),
            )
        for span_id in open_spans:
            handle = self._span_map.pop(span_id, None)
            if handle is None:
                continue
            try:
                handle.end()
            except Exception as e:
                self._logger.warning(
                    "langfuse_orphan_end_failed", span_id=span_id, error=str(e)
                )

    def _observation_fields(self, span: SpanSnapshot) -> dict[str, Any]:
        metadata = span.metadata
        fields: dict[str, Any] = {
            "name": span.name,
            "input": span.input,
            "output": span.output,
        }

        if isinstance(metadata, LLMGenerationMetadata):
            observation_metadata = _compact(
                {
                    "provider": metadata.provider,
                    "result_type": metadata.result_type,
                    "streaming": metadata.streaming,
                }
            )
            if metadata.usage is not None:
                cache = _compact(
                    {
                        "prompt_cache_hit_tokens": metadata.usage.prompt_cache_hit_tokens,
                        "prompt_cache_miss_tokens": metadata.usage.prompt_cache_miss_tokens,
                    }
                )
                observation_metadata.update(cache)
            observation_metadata.update(sanitize_attributes(metadata.attributes))
            fields["model"] = metadata.model
            if metadata.parameters is not None:
                fields["model_parameters"] = metadata.parameters.model_dump(exclude_none=True)
            if metadata.usage is not None:
                fields["usage_details"] = _usage_details(metadata.usage)
        else:
            observation_metadata = {
                "span_type": span.type.value,
                **sanitize_attributes(metadata.attributes),
                **self._type_specific_metadata(span),
            }

        if metadata.tags:
            observation_metadata["tags"] = list(metadata.tags)
        fields["metadata"] = observation_metadata
        return _compact(fields)

    @staticmethod
    def _type_specific_metadata(span: SpanSnapshot) -> dict[str, Any]:
        metadata = span.metadata
        if isinstance(metadata, AgentRunMetadata):
            result = {
                "agent_id": metadata.agent_id,
                "available_tools": metadata.available_tools,
                "max_steps": metadata.max_steps,
                "current_step": metadata.current_step,
            }
        elif isinstance(metadata, MCPToolCallMetadata):
            result = {
                "tool_name": metadata.tool_id,
                "mcp_server": metadata.mcp_server,
                "server_version": metadata.server_version,
                "success": metadata.success,
            }
        elif isinstance(metadata, ToolCallMetadata):
            result = {
                "tool_id": metadata.tool_id,
                "tool_type": metadata.tool_type,
                "success": metadata.success,
            }
        elif isinstance(metadata, WorkflowRunMetadata):
            result = {"workflow_id": metadata.workflow_id, "status": metadata.status}
        elif isinstance(metadata, WorkflowStepMetadata):
            result = {"step_id": metadata.step_id, "status": metadata.status}
        else:
            result = {}
        return _compact(result)
