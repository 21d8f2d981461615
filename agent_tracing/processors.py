"""Span processors applied before export.

Processors run synchronously, in order, for every lifecycle event. Each one
receives the span snapshot produced by the previous processor and returns a
snapshot to continue with, or None to drop the event. Processors only ever see
snapshots, so redaction affects what is exported, not the live span.
"""

import dataclasses
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from agent_tracing.spans import SpanSnapshot

logger = structlog.get_logger(__name__)

DEFAULT_SENSITIVE_FIELDS = (
    "password",
    "token",
    "access_token",
    "refresh_token",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "auth",
    "jwt",
    "cookie",
    "credentials",
)

REDACTED = "[REDACTED]"


class SpanProcessor(ABC):
    """Abstract base class for span processors."""

    #: Processor name, used in logs
    name: str

    @abstractmethod
    def process(self, span: SpanSnapshot) -> SpanSnapshot | None:
        """Transform a span before export.

        Args:
            span: Snapshot of the span.

        Returns:
            The snapshot to export, or None to drop the event.
        """

    async def shutdown(self) -> None:
        """Release processor resources."""


def _normalize_key(key: str) -> str:
    return key.lower().replace("-", "").replace("_", "")


class SensitiveDataFilter(SpanProcessor):
    """Redacts sensitive values from span attributes, input and output.

    Keys are compared case-insensitively, ignoring ``_`` and ``-``, so
    ``apiKey``, ``API_KEY`` and ``api-key`` all match ``api_key``. Nested
    mappings and lists are walked recursively.

    Example:
        processor = SensitiveDataFilter(fields=["password", "ssn"])
    """

    name = "sensitive-data-filter"

    def __init__(
        self,
        fields: Iterable[str] = DEFAULT_SENSITIVE_FIELDS,
        *,
        redaction: str = REDACTED,
    ) -> None:
        self.redaction = redaction
        self._fields = frozenset(_normalize_key(f) for f in fields)

    def process(self, span: SpanSnapshot) -> SpanSnapshot | None:
        metadata = span.metadata.model_copy(
            update={"attributes": self._redact(span.metadata.attributes)}
        )
        return dataclasses.replace(
            span,
            metadata=metadata,
            input=self._redact(span.input),
            output=self._redact(span.output),
        )

    def _redact(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                key: (
                    self.redaction
                    if isinstance(key, str) and _normalize_key(key) in self._fields
                    else self._redact(item)
                )
                for key, item in value.items()
            }
        if isinstance(value, list | tuple):
            return [self._redact(item) for item in value]
        return value
