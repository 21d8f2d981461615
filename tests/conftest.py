"""Shared fixtures for tracing tests."""

from collections.abc import Iterator

import pytest

from agent_tracing.exporters.base import SpanExporter
from agent_tracing.registry import set_tracing_registry
from agent_tracing.types import TracingEvent, TracingEventType


class RecordingExporter(SpanExporter):
    """Exporter that keeps every event it receives."""

    def __init__(self, name: str = "recording", *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.events: list[TracingEvent] = []
        self.shutdown_called = False

    async def export_event(self, event: TracingEvent) -> None:
        if self.fail:
            raise ConnectionError("backend unavailable")
        self.events.append(event)

    async def shutdown(self) -> None:
        self.shutdown_called = True

    def summary(self) -> list[tuple[TracingEventType, str]]:
        return [(event.type, event.span.name) for event in self.events]


@pytest.fixture
def recorder() -> RecordingExporter:
    """Create a recording exporter."""
    return RecordingExporter()


@pytest.fixture(autouse=True)
def reset_tracing_registry() -> Iterator[None]:
    """Give every test a fresh application registry."""
    set_tracing_registry(None)
    yield
    set_tracing_registry(None)


@pytest.fixture
def make_recorder() -> type[RecordingExporter]:
    """Factory for additional recording exporters."""
    return RecordingExporter
