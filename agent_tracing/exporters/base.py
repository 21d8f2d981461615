"""Exporter contract and attribute sanitization.

An exporter receives ``span_started``, ``span_updated`` and ``span_ended``
events, each carrying a snapshot of the span, and forwards them to a backend.
Exporters are called from the instance's export queue, one event at a time,
and must not be called again after ``shutdown``.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from agent_tracing.types import TracingEvent


class SpanExporter(ABC):
    """Abstract base class for tracing exporters.

    Example:
        class ListExporter(SpanExporter):
            name = "list"

            def __init__(self) -> None:
                self.events: list[TracingEvent] = []

            async def export_event(self, event: TracingEvent) -> None:
                self.events.append(event)

            async def shutdown(self) -> None:
                self.events.clear()
    """

    #: Exporter name, used in logs
    name: str

    @abstractmethod
    async def export_event(self, event: TracingEvent) -> None:
        """Export a single tracing event."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Flush buffered data and release the backend connection."""


def is_serializable(value: Any) -> bool:
    """Check that a value survives a JSON round trip.

    Args:
        value: Value to check.

    Returns:
        True if the value can be encoded and decoded as JSON.
    """
    try:
        json.loads(json.dumps(value, allow_nan=False))
    except (TypeError, ValueError, RecursionError):
        return False
    return True


def sanitize_attributes(attributes: Mapping[str, Any] | None) -> dict[str, Any]:
    """Keep only the attribute values that are JSON serializable.

    Non-serializable values are dropped rather than failing the export.

    Args:
        attributes: Free-form attribute mapping.

    Returns:
        New dict containing the serializable subset.
    """
    if not attributes:
        return {}
    return {key: value for key, value in attributes.items() if is_serializable(value)}
