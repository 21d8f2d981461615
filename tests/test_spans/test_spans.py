"""Tests for span lifecycle, hierarchy and no-op spans."""

import asyncio
import threading

import pytest

from agent_tracing.errors import SpanStateError
from agent_tracing.instance import TracingInstance, TracingInstanceConfig
from agent_tracing.sampling import NeverSample
from agent_tracing.spans import (
    NO_OP_SPAN_ID,
    NoOpSpan,
    Span,
    SpanState,
    _ScopedSpan,
    get_current_span,
)
from agent_tracing.types import (
    AgentRunMetadata,
    LLMGenerationMetadata,
    SpanType,
    ToolCallMetadata,
    TracingEventType,
)


@pytest.fixture
def tracing(recorder) -> TracingInstance:
    """Create a tracing instance recording every event."""
    return TracingInstance(
        TracingInstanceConfig(
            service_name="test-service",
            instance_name="test",
            exporters=[recorder],
        )
    )


@pytest.fixture
def strict_tracing(recorder) -> TracingInstance:
    """Create a strict tracing instance."""
    return TracingInstance(
        TracingInstanceConfig(
            service_name="test-service",
            instance_name="strict",
            exporters=[recorder],
            strict=True,
        )
    )


class TestSpanHierarchy:
    """Tests for parent/trace linkage."""

    def test_root_span_references_itself(self, tracing: TracingInstance) -> None:
        """Test a root span is its own trace."""
        root = tracing.start_span(SpanType.AGENT_RUN, "chef", metadata={"agent_id": "chef-1"})
        assert isinstance(root, Span)
        assert root.is_root_span
        assert root.parent is None
        assert root.trace is root
        assert len(root.trace_id) == 32
        assert len(root.id) == 16

    def test_children_share_trace(self, tracing: TracingInstance) -> None:
        """Test every descendant resolves to the same root at any depth."""
        root = tracing.start_span(SpanType.WORKFLOW_RUN, "wf", metadata={"workflow_id": "w1"})
        spans = [root]
        parent = root
        for depth in range(5):
            child = parent.create_child_span(SpanType.GENERIC, f"level-{depth}")
            spans.append(child)
            parent = child

        assert [s for s in spans if s.is_root_span] == [root]
        for span in spans:
            assert span.trace is root
            assert span.trace_id == root.trace_id
        assert spans[3].parent is spans[2]

    def test_child_type_independent_of_parent(self, tracing: TracingInstance) -> None:
        """Test any span type may parent any other type."""
        tool = tracing.start_span(SpanType.TOOL_CALL, "search")
        agent = tool.create_child_span(SpanType.AGENT_RUN, "sub-agent", metadata={"agentId": "a2"})
        assert isinstance(agent.metadata, AgentRunMetadata)
        assert agent.parent is tool

    def test_ids_are_unique(self, tracing: TracingInstance) -> None:
        """Test span ids do not repeat within a trace."""
        root = tracing.start_span(SpanType.GENERIC, "root")
        ids = {root.id} | {root.create_child_span(SpanType.GENERIC, "c").id for _ in range(200)}
        assert len(ids) == 201

    def test_separate_roots_get_separate_traces(self, tracing: TracingInstance) -> None:
        """Test independent root spans start independent traces."""
        first = tracing.start_span(SpanType.GENERIC, "one")
        second = tracing.start_span(SpanType.GENERIC, "two")
        assert first.trace_id != second.trace_id


class TestSpanLifecycle:
    """Tests for update, end and error."""

    def test_created_open(self, tracing: TracingInstance) -> None:
        """Test a new span is open with a start time."""
        span = tracing.start_span(SpanType.GENERIC, "work", input={"q": "soup"})
        assert isinstance(span, Span)
        assert span.state is SpanState.OPEN
        assert span.end_time is None
        assert span.input == {"q": "soup"}
        assert span.errored is False

    def test_update_merges_and_emits(self, tracing: TracingInstance, recorder) -> None:
        """Test update merges metadata and emits span_updated."""
        span = tracing.start_span(SpanType.TOOL_CALL, "weather", metadata={"tool_id": "weather"})
        span.update(output={"temp": 21}, metadata={"success": True})

        assert span.output == {"temp": 21}
        assert isinstance(span.metadata, ToolCallMetadata)
        assert span.metadata.tool_id == "weather"
        assert span.metadata.success is True
        assert span.state is SpanState.OPEN
        tracing.force_flush()
        assert recorder.events[-1].type is TracingEventType.SPAN_UPDATED

    def test_end_sets_end_time(self, tracing: TracingInstance, recorder) -> None:
        """Test end transitions to ENDED with end_time >= start_time."""
        span = tracing.start_span(SpanType.GENERIC, "work")
        span.end(output="done")

        assert span.state is SpanState.ENDED
        assert span.ended
        assert span.end_time is not None
        assert span.end_time >= span.start_time
        assert span.output == "done"
        tracing.force_flush()
        assert recorder.events[-1].type is TracingEventType.SPAN_ENDED

    def test_error_with_end(self, tracing: TracingInstance, recorder) -> None:
        """Test error records error_info and ends the span."""
        span = tracing.start_span(SpanType.TOOL_CALL, "search")
        span.error({"message": "tool failed"}, end_span=True)

        assert span.errored
        assert span.ended
        assert span.error_info is not None
        assert span.error_info.message == "tool failed"
        tracing.force_flush()
        last = recorder.events[-1]
        assert last.type is TracingEventType.SPAN_ENDED
        assert last.span.error_info is not None
        assert last.span.error_info.message == "tool failed"

    def test_error_without_end(self, tracing: TracingInstance, recorder) -> None:
        """Test error can flag a span while leaving it open."""
        span = tracing.start_span(SpanType.GENERIC, "work")
        span.error(RuntimeError("transient"), end_span=False, metadata={"tags": ["retry"]})

        assert span.errored
        assert span.state is SpanState.OPEN
        assert span.metadata.tags == ["retry"]
        tracing.force_flush()
        assert recorder.events[-1].type is TracingEventType.SPAN_UPDATED

        span.end()
        assert span.error_info is not None
        tracing.force_flush()
        assert recorder.events[-1].span.error_info is not None

    def test_end_never_infers_errors(self, tracing: TracingInstance) -> None:
        """Test ending with error-looking output does not set error_info."""
        span = tracing.start_span(SpanType.GENERIC, "work")
        span.end(output={"error": "something"})
        assert span.error_info is None
        assert not span.errored

    def test_snapshot_is_isolated(self, tracing: TracingInstance) -> None:
        """Test a snapshot does not change when the span changes."""
        span = tracing.start_span(SpanType.GENERIC, "work", metadata={"attributes": {"a": 1}})
        snapshot = span.snapshot()
        span.update(output="later", metadata={"attributes": {"a": 2}})

        assert snapshot.output is None
        assert snapshot.metadata.attributes == {"a": 1}
        assert snapshot.is_root_span
        assert snapshot.parent_id is None

    def test_queued_events_unaffected_by_payload_mutation(
        self, tracing: TracingInstance, recorder
    ) -> None:
        """Test mutating a payload after an event does not change that event."""
        payload = {"messages": ["hello"]}
        attributes = {"history": [1]}
        span = tracing.start_span(
            SpanType.GENERIC, "work", input=payload, metadata={"attributes": attributes}
        )
        payload["messages"].append("mutated")
        span.metadata.attributes["history"].append(2)
        tracing.force_flush()

        started = recorder.events[0].span
        assert started.input == {"messages": ["hello"]}
        assert started.metadata.attributes == {"history": [1]}

    def test_uncopyable_payload_shared(self, tracing: TracingInstance) -> None:
        """Test payloads that cannot be copied are kept by reference."""
        lock = threading.Lock()
        span = tracing.start_span(SpanType.GENERIC, "work", input=lock)
        assert span.snapshot().input is lock


class TestSpanMisuse:
    """Tests for operations on ended spans."""

    def test_update_after_end_ignored(self, tracing: TracingInstance, recorder) -> None:
        """Test update after end does nothing and emits nothing."""
        span = tracing.start_span(SpanType.GENERIC, "work")
        span.end(output="first")
        tracing.force_flush()
        count = len(recorder.events)

        span.update(output="second")

        assert span.output == "first"
        tracing.force_flush()
        assert len(recorder.events) == count

    def test_double_end_emits_once(self, tracing: TracingInstance, recorder) -> None:
        """Test a second end is ignored."""
        span = tracing.start_span(SpanType.GENERIC, "work")
        span.end(output="first")
        first_end = span.end_time
        span.end(output="second")

        tracing.force_flush()
        ended = [e for e in recorder.events if e.type is TracingEventType.SPAN_ENDED]
        assert len(ended) == 1
        assert span.output == "first"
        assert span.end_time == first_end

    def test_strict_mode_raises(self, strict_tracing: TracingInstance) -> None:
        """Test strict instances raise on misuse."""
        span = strict_tracing.start_span(SpanType.GENERIC, "work")
        span.end()

        with pytest.raises(SpanStateError) as exc_info:
            span.update(output="late")
        assert exc_info.value.operation == "update"

        with pytest.raises(SpanStateError):
            span.end()

    def test_invalid_metadata_patch_ignored(self, tracing: TracingInstance, recorder) -> None:
        """Test an invalid metadata patch leaves the span unchanged."""
        span = tracing.start_span(SpanType.LLM_GENERATION, "call", metadata={"model": "gpt-4"})
        tracing.force_flush()
        count = len(recorder.events)

        span.update(metadata={"result_type": "guessing"})

        assert isinstance(span.metadata, LLMGenerationMetadata)
        assert span.metadata.result_type is None
        tracing.force_flush()
        assert len(recorder.events) == count


class TestNoOpSpan:
    """Tests for NoOpSpan."""

    def test_sampled_out_root_is_noop(self, recorder) -> None:
        """Test rejected traces produce no-op spans and no events."""
        tracing = TracingInstance(
            TracingInstanceConfig(
                service_name="svc",
                instance_name="off",
                sampling=NeverSample(),
                exporters=[recorder],
            )
        )
        root = tracing.start_span(SpanType.AGENT_RUN, "chef", metadata={"agent_id": "chef-1"})
        child = root.create_child_span(SpanType.LLM_GENERATION, "call")
        grandchild = tracing.start_span(SpanType.TOOL_CALL, "tool", parent=child)
        child.update(output="x")
        grandchild.error({"message": "failed"})
        child.end()
        root.end(output="done")

        assert isinstance(root, NoOpSpan)
        assert isinstance(child, NoOpSpan)
        assert isinstance(grandchild, NoOpSpan)
        assert root.id == NO_OP_SPAN_ID
        assert child.trace is root
        tracing.force_flush()
        assert recorder.events == []

    def test_mutations_are_inert(self) -> None:
        """Test every mutating operation leaves the no-op span unchanged."""
        span = NoOpSpan(SpanType.GENERIC, "noop")
        span.update(input="in", output="out", metadata={"tags": ["x"]})
        span.error(RuntimeError("boom"))
        span.end(output="done")

        assert span.input is None
        assert span.output is None
        assert span.error_info is None
        assert span.end_time is None
        assert span.is_root_span

    def test_accepts_invalid_metadata(self) -> None:
        """Test no-op spans never validate metadata."""
        span = NoOpSpan(SpanType.AGENT_RUN, "noop", metadata={"bogus": True})
        child = span.create_child_span(SpanType.MCP_TOOL_CALL, "mcp")
        assert child.parent is span
        assert child.trace is span


class TestScopedSpans:
    """Tests for spans used as context managers."""

    def test_sync_context_ends_span(self, tracing: TracingInstance) -> None:
        """Test leaving a with block ends the span."""
        with tracing.start_span(SpanType.GENERIC, "work") as span:
            assert get_current_span() is span
        assert span.ended
        assert get_current_span() is None

    def test_scope_requires_finish_hooks(self) -> None:
        """Test a scoped span must define how it ends."""

        class HalfScoped(_ScopedSpan):
            def _finish(self) -> None:
                pass

        with pytest.raises(TypeError, match="_finish_with_error"):
            HalfScoped()  # type: ignore[abstract]

    def test_exception_recorded_and_reraised(self, tracing: TracingInstance) -> None:
        """Test an escaping exception is recorded on the span."""
        with pytest.raises(ValueError, match="bad recipe"):
            with tracing.start_span(SpanType.TOOL_CALL, "cook") as span:
                raise ValueError("bad recipe")

        assert span.ended
        assert span.error_info is not None
        assert span.error_info.message == "bad recipe"

    def test_nested_contexts_restore_parent(self, tracing: TracingInstance) -> None:
        """Test the current span is restored when an inner block exits."""
        with tracing.start_span(SpanType.AGENT_RUN, "agent", metadata={"agent_id": "a"}) as root:
            with root.create_child_span(SpanType.TOOL_CALL, "tool") as child:
                assert get_current_span() is child
            assert get_current_span() is root

    def test_explicit_end_inside_context(self, tracing: TracingInstance, recorder) -> None:
        """Test ending inside the block does not end twice."""
        with tracing.start_span(SpanType.GENERIC, "work") as span:
            span.end(output="early")

        tracing.force_flush()
        ended = [e for e in recorder.events if e.type is TracingEventType.SPAN_ENDED]
        assert len(ended) == 1
        assert span.output == "early"

    @pytest.mark.asyncio
    async def test_async_context(self, tracing: TracingInstance, recorder) -> None:
        """Test spans work as async context managers."""
        async with tracing.start_span(SpanType.GENERIC, "work") as span:
            await asyncio.sleep(0)
            assert get_current_span() is span
        await tracing.flush()

        assert span.ended
        assert [e.type for e in recorder.events] == [
            TracingEventType.SPAN_STARTED,
            TracingEventType.SPAN_ENDED,
        ]

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_separate_current_spans(
        self, tracing: TracingInstance
    ) -> None:
        """Test concurrent tasks do not see each other's current span."""

        async def run(name: str) -> bool:
            async with tracing.start_span(SpanType.GENERIC, name) as span:
                await asyncio.sleep(0.01)
                return get_current_span() is span

        results = await asyncio.gather(*(run(f"task-{i}") for i in range(5)))
        assert all(results)
