"""Tracing exporters.

This module contains:
- The exporter contract and attribute sanitization
- A console exporter for development
- The Langfuse exporter
"""

from agent_tracing.exporters.base import SpanExporter, is_serializable, sanitize_attributes
from agent_tracing.exporters.console import ConsoleExporter
from agent_tracing.exporters.langfuse import LangfuseClientOptions, LangfuseExporter

__all__ = [
    "ConsoleExporter",
    "LangfuseClientOptions",
    "LangfuseExporter",
    "SpanExporter",
    "is_serializable",
    "sanitize_attributes",
]
