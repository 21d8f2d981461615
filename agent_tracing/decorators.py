"""Decorators for tracing agent, tool and generation functions.

A decorated function runs inside a span. If a span is already bound to the
current context (by an enclosing decorated function or ``with span:`` block)
the new span is its child; otherwise a root span is started on the
application registry.

Example:
    @traced_agent("chef-1")
    async def chef(request: str) -> str:
        plan = await plan_recipe(request)
        return await write_recipe(plan)

    @traced_generation("plan_recipe", model="gpt-4")
    async def plan_recipe(request: str) -> str:
        ...
"""

import inspect
from collections.abc import Callable, Mapping
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog

from agent_tracing.registry import get_tracing_registry
from agent_tracing.spans import AnySpan, get_current_span
from agent_tracing.types import SpanType

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def _start_span(
    span_type: SpanType,
    name: str,
    metadata: Mapping[str, Any] | None,
    input_data: Any,
) -> AnySpan:
    parent = get_current_span()
    if parent is not None:
        return parent.create_child_span(span_type, name, input=input_data, metadata=metadata)
    return get_tracing_registry().start_span(
        span_type, name, input=input_data, metadata=metadata
    )


def _capture_input(args: tuple[Any, ...], kwargs: dict[str, Any]) -> dict[str, Any]:
    return {"args": list(args), "kwargs": dict(kwargs)}


def traced(
    span_type: SpanType,
    name: str,
    *,
    metadata: Mapping[str, Any] | None = None,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator running a sync or async function inside a span.

    Args:
        span_type: Type of the span.
        name: Name of the span.
        metadata: Metadata for the span type.
        capture_input: Record the function arguments as span input.
        capture_output: Record the return value as span output.

    Returns:
        Decorated function with tracing.
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            input_data = _capture_input(args, kwargs) if capture_input else None
            async with _start_span(span_type, name, metadata, input_data) as span:
                logger.debug("traced_call_start", span_name=name, span_type=span_type.value)
                result: R = await func(*args, **kwargs)  # type: ignore[misc]
                span.end(output=result if capture_output else None)
                return result

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            input_data = _capture_input(args, kwargs) if capture_input else None
            with _start_span(span_type, name, metadata, input_data) as span:
                logger.debug("traced_call_start", span_name=name, span_type=span_type.value)
                result: R = func(*args, **kwargs)
                span.end(output=result if capture_output else None)
                return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper

    return decorator


def traced_agent(
    name: str,
    *,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator for tracing agent execution as an ``agent_run`` span.

    The agent name is recorded as the span's agent_id.
    """
    return traced(
        SpanType.AGENT_RUN,
        name,
        metadata={"agent_id": name},
        capture_input=capture_input,
        capture_output=capture_output,
    )


def traced_tool(
    name: str,
    *,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator for tracing tool execution as a ``tool_call`` span."""
    return traced(
        SpanType.TOOL_CALL,
        name,
        metadata={"tool_id": name},
        capture_input=capture_input,
        capture_output=capture_output,
    )


def traced_generation(
    name: str,
    *,
    model: str | None = None,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator for tracing LLM calls as an ``llm_generation`` span.

    Args:
        name: Name of the generation.
        model: Model name to record.
        capture_input: Record the function arguments as span input.
        capture_output: Record the return value as span output.
    """
    return traced(
        SpanType.LLM_GENERATION,
        name,
        metadata={"model": model} if model else None,
        capture_input=capture_input,
        capture_output=capture_output,
    )
