"""Span lifecycle.

A span is one timed unit of traced work. Spans are created by a
``TracingInstance`` and know their parent and the root span of their trace:

    agent_run (root, trace = itself)
    ├── llm_generation (parent = root, trace = root)
    └── tool_call (parent = root, trace = root)
        └── mcp_tool_call (parent = tool_call, trace = root)

States:
- OPEN: after creation, accepts update/end/error
- ENDED: terminal, set by end() or error(end_span=True)

The ``errored`` flag is orthogonal and may be set while the span is open.

Spans are also sync and async context managers. Entering binds the span as
the current span for the running context, leaving ends it:

    with instance.start_span(SpanType.AGENT_RUN, "chef", metadata={"agent_id": "chef-1"}) as span:
        with span.create_child_span(SpanType.TOOL_CALL, "search") as tool:
            tool.end(output={"hits": 3})
"""

import copy
import secrets
import threading
import uuid
from abc import ABC, abstractmethod
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from agent_tracing.errors import InvalidSpanMetadataError, SpanStateError
from agent_tracing.types import (
    METADATA_SCHEMAS,
    BaseMetadata,
    ErrorInfo,
    MetadataInput,
    SpanType,
    TracingEventType,
    merge_metadata,
)

if TYPE_CHECKING:
    from agent_tracing.instance import TracingInstance

logger = structlog.get_logger(__name__)

NO_OP_SPAN_ID = "no-op"
NO_OP_TRACE_ID = "no-op-trace"

_current_span: ContextVar["Span | NoOpSpan | None"] = ContextVar(
    "agent_tracing_current_span", default=None
)


def get_current_span() -> "Span | NoOpSpan | None":
    """Get the span bound to the current context, if any."""
    return _current_span.get()


def _new_span_id() -> str:
    return secrets.token_hex(8)


def _new_trace_id() -> str:
    return uuid.uuid4().hex


def _copy_payload(value: Any) -> Any:
    # Objects that cannot be deep-copied (locks, sockets) are shared as-is
    try:
        return copy.deepcopy(value)
    except (TypeError, copy.Error):
        return value


class SpanState(Enum):
    """Lifecycle states of a span."""

    OPEN = "open"
    ENDED = "ended"


@dataclass(frozen=True)
class SpanSnapshot:
    """Immutable view of a span, carried by tracing events.

    Processors and exporters only ever see snapshots, so transforming one for
    export never changes the live span.
    """

    id: str
    trace_id: str
    name: str
    type: SpanType
    start_time: datetime
    metadata: BaseMetadata
    parent_id: str | None = None
    end_time: datetime | None = None
    input: Any = None
    output: Any = None
    error_info: ErrorInfo | None = None

    @property
    def is_root_span(self) -> bool:
        return self.parent_id is None

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000


class _ScopedSpan(ABC):
    """Context manager support shared by real and no-op spans."""

    def _enter_scope(self) -> Any:
        tokens: list[Token[Any]] = self.__dict__.setdefault("_context_tokens", [])
        tokens.append(_current_span.set(self))  # type: ignore[arg-type]
        return self

    def _exit_scope(self, exc_val: BaseException | None) -> None:
        if exc_val is not None:
            self._finish_with_error(exc_val)
        else:
            self._finish()
        tokens: list[Token[Any]] = self.__dict__.get("_context_tokens", [])
        if tokens:
            token = tokens.pop()
            try:
                _current_span.reset(token)
            except ValueError:
                # Exited from a different context than the one entered
                _current_span.set(None)

    @abstractmethod
    def _finish(self) -> None:
        """End the span on a clean scope exit."""

    @abstractmethod
    def _finish_with_error(self, error: BaseException) -> None:
        """Record ``error`` and end the span on a failed scope exit."""

    def __enter__(self) -> Any:
        return self._enter_scope()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._exit_scope(exc_val)

    async def __aenter__(self) -> Any:
        return self._enter_scope()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._exit_scope(exc_val)


class Span(_ScopedSpan):
    """A recorded span owned by a tracing instance.

    Spans are created through ``TracingInstance.start_span`` or
    ``Span.create_child_span``, never directly by application code.

    Attributes:
        id: Span identifier (16 hex chars), unique within the process.
        trace_id: Trace identifier (32 hex chars), shared by the whole trace.
        name: Human-readable span name.
        type: Span type tag, selects the metadata schema.
        tracing: Owning tracing instance.
        parent: Span that created this one, None for a root span.
        trace: Root span of this span's trace.
        start_time: When the span was created.
        end_time: When the span ended, None while open.
        input: Input captured at creation or update.
        output: Output captured at update or end.
        metadata: Type-specific metadata.
        error_info: Error recorded through error(), if any.
    """

    def __init__(
        self,
        tracing: "TracingInstance",
        span_type: SpanType,
        name: str,
        *,
        metadata: BaseMetadata,
        input: Any = None,
        parent: "Span | None" = None,
    ) -> None:
        self.id = _new_span_id()
        self.name = name
        self.type = SpanType(span_type)
        self.tracing = tracing
        self.parent = parent
        self.trace: Span = parent.trace if parent is not None else self
        self.trace_id = parent.trace_id if parent is not None else _new_trace_id()
        self.start_time = datetime.now(UTC)
        self.end_time: datetime | None = None
        self.input = input
        self.output: Any = None
        self.metadata = metadata
        self.error_info: ErrorInfo | None = None
        self._state = SpanState.OPEN
        self._errored = False
        self._lock = threading.Lock()

    @property
    def is_root_span(self) -> bool:
        """True if the span has no parent."""
        return self.parent is None

    @property
    def state(self) -> SpanState:
        return self._state

    @property
    def ended(self) -> bool:
        return self._state is SpanState.ENDED

    @property
    def errored(self) -> bool:
        return self._errored

    def create_child_span(
        self,
        span_type: SpanType,
        name: str,
        *,
        input: Any = None,
        metadata: MetadataInput = None,
    ) -> "Span | NoOpSpan":
        """Create a child span in the same trace.

        The child may be of any type, independent of this span's type.

        Args:
            span_type: Type of the child span.
            name: Name of the child span.
            input: Input data to capture.
            metadata: Metadata for the child's type.

        Returns:
            The child span, or a no-op span if the instance cannot create one.
        """
        return self.tracing.start_span(
            span_type, name, input=input, metadata=metadata, parent=self
        )

    def update(
        self,
        *,
        input: Any = None,
        output: Any = None,
        metadata: MetadataInput = None,
    ) -> None:
        """Update input, output or metadata of an open span.

        Args:
            input: Replacement input, if given.
            output: Replacement output, if given.
            metadata: Metadata patch, merged per field.
        """
        with self._lock:
            if not self._ensure_open("update"):
                return
            if not self._apply(input=input, output=output, metadata=metadata):
                return
        self.tracing.emit_span_event(TracingEventType.SPAN_UPDATED, self)

    def end(self, *, output: Any = None, metadata: MetadataInput = None) -> None:
        """End the span.

        Ending a root span completes the trace for every exporter.

        Args:
            output: Final output, if given.
            metadata: Metadata patch, merged per field.
        """
        with self._lock:
            if not self._ensure_open("end"):
                return
            self._apply(output=output, metadata=metadata)
            self._close()
        self.tracing.emit_span_event(TracingEventType.SPAN_ENDED, self)

    def error(
        self,
        error: BaseException | dict[str, Any] | str,
        *,
        metadata: MetadataInput = None,
        end_span: bool = True,
    ) -> None:
        """Record an error on the span, optionally ending it.

        Args:
            error: Exception, mapping with a ``message`` key, or message text.
            metadata: Metadata patch, merged per field.
            end_span: Also end the span.
        """
        with self._lock:
            if not self._ensure_open("error"):
                return
            self.error_info = ErrorInfo.from_error(error)
            self._errored = True
            self._apply(metadata=metadata)
            if end_span:
                self._close()
        event_type = TracingEventType.SPAN_ENDED if end_span else TracingEventType.SPAN_UPDATED
        self.tracing.emit_span_event(event_type, self)

    def snapshot(self) -> SpanSnapshot:
        """Capture the current state of the span.

        Input, output and attribute values are deep-copied, so later changes
        by the application do not alter events that are still queued.
        """
        return SpanSnapshot(
            id=self.id,
            trace_id=self.trace_id,
            name=self.name,
            type=self.type,
            start_time=self.start_time,
            metadata=self.metadata.model_copy(
                update={
                    "tags": list(self.metadata.tags),
                    "attributes": {
                        key: _copy_payload(value)
                        for key, value in self.metadata.attributes.items()
                    },
                }
            ),
            parent_id=self.parent.id if self.parent is not None else None,
            end_time=self.end_time,
            input=_copy_payload(self.input),
            output=_copy_payload(self.output),
            error_info=self.error_info,
        )

    def _ensure_open(self, operation: str) -> bool:
        if self._state is SpanState.OPEN:
            return True
        self.tracing.report_misuse(SpanStateError(self.id, operation))
        return False

    def _apply(
        self,
        *,
        input: Any = None,
        output: Any = None,
        metadata: MetadataInput = None,
    ) -> bool:
        if metadata:
            try:
                self.metadata = merge_metadata(self.metadata, metadata)
            except InvalidSpanMetadataError as e:
                self.tracing.report_misuse(e)
                return False
        if input is not None:
            self.input = input
        if output is not None:
            self.output = output
        return True

    def _close(self) -> None:
        now = datetime.now(UTC)
        self.end_time = now if now >= self.start_time else self.start_time
        self._state = SpanState.ENDED

    def _finish(self) -> None:
        if self._state is SpanState.OPEN:
            self.end()

    def _finish_with_error(self, error: BaseException) -> None:
        if self._state is SpanState.OPEN:
            self.error(error, end_span=True)

    def __repr__(self) -> str:
        return (
            f"Span(id={self.id!r}, name={self.name!r}, type={self.type.value!r}, "
            f"trace_id={self.trace_id!r}, state={self._state.value!r})"
        )


class NoOpSpan(_ScopedSpan):
    """Placeholder span for sampled-out or disabled tracing.

    Satisfies the span contract so calling code never has to check for
    None; every mutating operation does nothing and children are no-ops.
    """

    def __init__(
        self,
        span_type: SpanType,
        name: str,
        *,
        input: Any = None,
        metadata: MetadataInput = None,
        parent: "NoOpSpan | None" = None,
        tracing: "TracingInstance | None" = None,
    ) -> None:
        self.id = NO_OP_SPAN_ID
        self.trace_id = NO_OP_TRACE_ID
        self.name = name
        self.type = SpanType(span_type)
        self.tracing = tracing
        self.parent = parent
        self.trace: NoOpSpan = parent.trace if parent is not None else self
        self.start_time = datetime.now(UTC)
        self.end_time: datetime | None = None
        self.input = input
        self.output: Any = None
        if isinstance(metadata, BaseMetadata):
            self.metadata: BaseMetadata = metadata
        else:
            self.metadata = METADATA_SCHEMAS[self.type].model_construct()
        self.error_info: ErrorInfo | None = None
        self.state = SpanState.OPEN
        self.ended = False
        self.errored = False

    @property
    def is_root_span(self) -> bool:
        return self.parent is None

    def create_child_span(
        self,
        span_type: SpanType,
        name: str,
        *,
        input: Any = None,
        metadata: MetadataInput = None,
    ) -> "NoOpSpan":
        return NoOpSpan(
            span_type, name, input=input, metadata=metadata, parent=self, tracing=self.tracing
        )

    def update(
        self,
        *,
        input: Any = None,
        output: Any = None,
        metadata: MetadataInput = None,
    ) -> None:
        pass

    def end(self, *, output: Any = None, metadata: MetadataInput = None) -> None:
        pass

    def error(
        self,
        error: BaseException | dict[str, Any] | str,
        *,
        metadata: MetadataInput = None,
        end_span: bool = True,
    ) -> None:
        pass

    def _finish(self) -> None:
        pass

    def _finish_with_error(self, error: BaseException) -> None:
        pass

    def __repr__(self) -> str:
        return f"NoOpSpan(name={self.name!r}, type={self.type.value!r})"


AnySpan = Span | NoOpSpan
