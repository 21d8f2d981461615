"""Hierarchical tracing for AI agent executions.

This package contains:
- Span types and type-specific metadata schemas
- Span lifecycle (start, update, end, error) with no-op spans for unsampled traces
- Tracing instances applying sampling, processors and exporters
- A registry of named instances with selector-based routing
- Exporters for the console and Langfuse
- Decorators for tracing agents, tools and generations
"""

from agent_tracing.config import Settings, configure_logging
from agent_tracing.decorators import traced, traced_agent, traced_generation, traced_tool
from agent_tracing.errors import (
    InvalidSpanMetadataError,
    RegistryShutdownError,
    SpanStateError,
    TracingError,
    TracingRegistryConflictError,
    TracingShutdownError,
)
from agent_tracing.export_queue import ExportQueue
from agent_tracing.exporters import (
    ConsoleExporter,
    LangfuseClientOptions,
    LangfuseExporter,
    SpanExporter,
    sanitize_attributes,
)
from agent_tracing.instance import TracingInstance, TracingInstanceConfig
from agent_tracing.processors import SensitiveDataFilter, SpanProcessor
from agent_tracing.registry import (
    TracingConfig,
    TracingRegistry,
    TracingSelector,
    get_tracing_registry,
    set_tracing_registry,
    setup_tracing,
    shutdown_tracing,
)
from agent_tracing.sampling import (
    AlwaysSample,
    CustomSample,
    NeverSample,
    RatioSample,
    SamplingStrategy,
    SamplingStrategyType,
)
from agent_tracing.spans import AnySpan, NoOpSpan, Span, SpanSnapshot, SpanState, get_current_span
from agent_tracing.types import (
    AgentRunMetadata,
    BaseMetadata,
    ErrorInfo,
    GenericMetadata,
    LLMGenerationMetadata,
    MCPToolCallMetadata,
    ModelParameters,
    SpanType,
    TokenUsage,
    ToolCallMetadata,
    TraceContext,
    TracingContext,
    TracingEvent,
    TracingEventType,
    WorkflowRunMetadata,
    WorkflowStepMetadata,
)

__all__ = [
    # Configuration
    "Settings",
    "configure_logging",
    # Errors
    "InvalidSpanMetadataError",
    "RegistryShutdownError",
    "SpanStateError",
    "TracingError",
    "TracingRegistryConflictError",
    "TracingShutdownError",
    # Span types and metadata
    "AgentRunMetadata",
    "BaseMetadata",
    "ErrorInfo",
    "GenericMetadata",
    "LLMGenerationMetadata",
    "MCPToolCallMetadata",
    "ModelParameters",
    "SpanType",
    "TokenUsage",
    "ToolCallMetadata",
    "WorkflowRunMetadata",
    "WorkflowStepMetadata",
    # Events and contexts
    "TraceContext",
    "TracingContext",
    "TracingEvent",
    "TracingEventType",
    # Spans
    "AnySpan",
    "NoOpSpan",
    "Span",
    "SpanSnapshot",
    "SpanState",
    "get_current_span",
    # Sampling
    "AlwaysSample",
    "CustomSample",
    "NeverSample",
    "RatioSample",
    "SamplingStrategy",
    "SamplingStrategyType",
    # Pipeline
    "ExportQueue",
    "SensitiveDataFilter",
    "SpanProcessor",
    "TracingInstance",
    "TracingInstanceConfig",
    # Exporters
    "ConsoleExporter",
    "LangfuseClientOptions",
    "LangfuseExporter",
    "SpanExporter",
    "sanitize_attributes",
    # Registry
    "TracingConfig",
    "TracingRegistry",
    "TracingSelector",
    "get_tracing_registry",
    "set_tracing_registry",
    "setup_tracing",
    "shutdown_tracing",
    # Decorators
    "traced",
    "traced_agent",
    "traced_generation",
    "traced_tool",
]
