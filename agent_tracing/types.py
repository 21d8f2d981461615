"""Span types, metadata schemas and tracing events.

Every span carries a type tag from the closed ``SpanType`` enumeration. The
tag selects the metadata schema for the span:

    SpanType.AGENT_RUN       -> AgentRunMetadata       (agent_id required)
    SpanType.LLM_GENERATION  -> LLMGenerationMetadata
    SpanType.TOOL_CALL       -> ToolCallMetadata
    SpanType.MCP_TOOL_CALL   -> MCPToolCallMetadata    (tool_id, mcp_server required)
    SpanType.WORKFLOW_RUN    -> WorkflowRunMetadata    (workflow_id required)
    SpanType.WORKFLOW_STEP   -> WorkflowStepMetadata   (step_id required)
    SpanType.GENERIC         -> GenericMetadata

Unknown fields are dropped on validation. Field names are accepted in either
snake_case or camelCase so payloads produced by other runtimes validate too.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from agent_tracing.errors import InvalidSpanMetadataError

if TYPE_CHECKING:
    from agent_tracing.spans import SpanSnapshot


class SpanType(str, Enum):
    """Kinds of traced work."""

    AGENT_RUN = "agent_run"
    GENERIC = "generic"
    LLM_GENERATION = "llm_generation"
    MCP_TOOL_CALL = "mcp_tool_call"
    TOOL_CALL = "tool_call"
    WORKFLOW_RUN = "workflow_run"
    WORKFLOW_STEP = "workflow_step"


# ============================================================================
# Metadata Schemas
# ============================================================================


class _MetadataModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class BaseMetadata(_MetadataModel):
    """Fields shared by every span type.

    Attributes:
        tags: Ordered tags for categorization.
        attributes: Free-form user attributes.
    """

    tags: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class GenericMetadata(BaseMetadata):
    """Metadata for generic spans."""


class AgentRunMetadata(BaseMetadata):
    """Metadata for an agent run."""

    agent_id: str
    instructions: str | None = None
    prompt: str | None = None
    available_tools: list[str] | None = None
    max_steps: int | None = None
    current_step: int | None = None


class TokenUsage(_MetadataModel):
    """Token usage reported by a model call."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    prompt_cache_hit_tokens: int | None = None
    prompt_cache_miss_tokens: int | None = None


class ModelParameters(_MetadataModel):
    """Sampling parameters passed to a model call."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop: list[str] | None = None


ResultType = Literal["tool_selection", "response_generation", "reasoning", "planning"]


class LLMGenerationMetadata(BaseMetadata):
    """Metadata for an LLM generation."""

    model: str | None = None
    provider: str | None = None
    result_type: ResultType | None = None
    usage: TokenUsage | None = None
    parameters: ModelParameters | None = None
    streaming: bool | None = None


class ToolCallMetadata(BaseMetadata):
    """Metadata for a function/tool call."""

    tool_id: str | None = None
    tool_type: str | None = None
    success: bool | None = None


class MCPToolCallMetadata(BaseMetadata):
    """Metadata for a Model Context Protocol tool call."""

    tool_id: str
    mcp_server: str
    server_version: str | None = None
    success: bool | None = None


class WorkflowRunMetadata(BaseMetadata):
    """Metadata for a workflow run."""

    workflow_id: str
    status: str | None = None


class WorkflowStepMetadata(BaseMetadata):
    """Metadata for a single workflow step."""

    step_id: str
    status: str | None = None


METADATA_SCHEMAS: dict[SpanType, type[BaseMetadata]] = {
    SpanType.AGENT_RUN: AgentRunMetadata,
    SpanType.GENERIC: GenericMetadata,
    SpanType.LLM_GENERATION: LLMGenerationMetadata,
    SpanType.MCP_TOOL_CALL: MCPToolCallMetadata,
    SpanType.TOOL_CALL: ToolCallMetadata,
    SpanType.WORKFLOW_RUN: WorkflowRunMetadata,
    SpanType.WORKFLOW_STEP: WorkflowStepMetadata,
}

MetadataInput = BaseMetadata | Mapping[str, Any] | None


def _normalize_keys(schema: type[BaseModel], data: Mapping[str, Any]) -> dict[str, Any]:
    """Map aliased keys to field names, dropping keys the schema does not declare."""
    names: dict[str, str] = {}
    for name, info in schema.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return {names[key]: value for key, value in data.items() if key in names}


def _as_field_dict(schema: type[BaseMetadata], data: MetadataInput) -> dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, BaseModel):
        # Only explicitly set fields, so a patch never resets existing values
        return _normalize_keys(schema, data.model_dump(exclude_unset=True))
    return _normalize_keys(schema, data)


def build_metadata(span_type: SpanType, data: MetadataInput = None) -> BaseMetadata:
    """Validate metadata against the schema for ``span_type``.

    Args:
        span_type: Type of the span the metadata belongs to.
        data: A metadata model or mapping (snake_case or camelCase keys).

    Returns:
        Metadata model for the span type.

    Raises:
        InvalidSpanMetadataError: If required fields are missing or values
            have the wrong shape.
    """
    schema = METADATA_SCHEMAS[SpanType(span_type)]
    try:
        return schema.model_validate(_as_field_dict(schema, data))
    except ValidationError as e:
        raise InvalidSpanMetadataError(SpanType(span_type).value, str(e)) from e


def merge_metadata(current: BaseMetadata, patch: MetadataInput) -> BaseMetadata:
    """Shallow-merge a patch into existing metadata.

    Each field present in the patch replaces the corresponding field of
    ``current`` as a whole. The result is a new, re-validated model.

    Raises:
        InvalidSpanMetadataError: If the merged metadata is invalid.
    """
    if not patch:
        return current
    schema = type(current)
    merged = {**current.model_dump(exclude_unset=True), **_as_field_dict(schema, patch)}
    try:
        return schema.model_validate(merged)
    except ValidationError as e:
        raise InvalidSpanMetadataError(schema.__name__, str(e)) from e


# ============================================================================
# Error Info
# ============================================================================


@dataclass(frozen=True)
class ErrorInfo:
    """Error recorded on a span.

    Attributes:
        message: Error message.
        id: Optional stable error identifier.
        domain: Optional error domain (e.g. "AGENT", "TOOL").
        category: Optional error category (e.g. "USER", "THIRD_PARTY").
        details: Optional structured details.
    """

    message: str
    id: str | None = None
    domain: str | None = None
    category: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def from_error(cls, error: BaseException | Mapping[str, Any] | str) -> "ErrorInfo":
        """Build error info from an exception, a mapping, or a message.

        Classification fields are read from same-named attributes (or keys)
        when present.
        """
        if isinstance(error, str):
            return cls(message=error)
        if isinstance(error, Mapping):
            details = error.get("details")
            return cls(
                message=str(error.get("message", "")),
                id=error.get("id"),
                domain=error.get("domain"),
                category=error.get("category"),
                details=dict(details) if details else None,
            )
        details = getattr(error, "details", None)
        return cls(
            message=str(getattr(error, "message", None) or error),
            id=getattr(error, "id", None),
            domain=getattr(error, "domain", None),
            category=getattr(error, "category", None),
            details=dict(details) if isinstance(details, Mapping) and details else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset classification fields."""
        result: dict[str, Any] = {"message": self.message}
        for key in ("id", "domain", "category", "details"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


# ============================================================================
# Events and Contexts
# ============================================================================


class TracingEventType(str, Enum):
    """Span lifecycle events delivered to exporters."""

    SPAN_STARTED = "span_started"
    SPAN_UPDATED = "span_updated"
    SPAN_ENDED = "span_ended"


@dataclass(frozen=True)
class TracingEvent:
    """A lifecycle event carrying the span state at the time it was emitted."""

    type: TracingEventType
    span: "SpanSnapshot"


@dataclass(frozen=True)
class TraceContext:
    """Input to sampling decisions, evaluated once per trace.

    Attributes:
        runtime_context: Request-scoped values supplied by the caller.
        attributes: Trace-level attributes supplied at root creation.
    """

    runtime_context: Mapping[str, Any] | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TracingContext:
    """Input to tracing selectors.

    Attributes:
        runtime_context: Request-scoped values supplied by the caller.
    """

    runtime_context: Mapping[str, Any] | None = None
