"""Registry of named tracing instances and selector-based routing.

The registry maps instance names to tracing instances. When a root span is
requested, an optional selector chooses the instance from the execution
context; if it returns nothing, an unknown name, or raises, the default
instance is used. The default is the first instance registered.

The application's composition root owns one registry:

    registry = setup_tracing(
        TracingConfig(
            instances={
                "langfuse": TracingInstanceConfig(
                    service_name="chef-agent",
                    exporters=[LangfuseExporter.from_settings(settings)],
                ),
                "console": TracingInstanceConfig(
                    service_name="chef-agent",
                    exporters=[ConsoleExporter()],
                ),
            },
            selector=lambda ctx, instances: (ctx.runtime_context or {}).get("tracing"),
        )
    )
    ...
    await shutdown_tracing()
"""

import asyncio
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

import structlog

from agent_tracing.errors import RegistryShutdownError, TracingRegistryConflictError
from agent_tracing.instance import TracingInstance, TracingInstanceConfig
from agent_tracing.sampling import SamplingStrategyType
from agent_tracing.spans import AnySpan, NoOpSpan
from agent_tracing.types import MetadataInput, SpanType, TracingContext

logger = structlog.get_logger(__name__)

# Returns the name of the instance to use, or None for the default
TracingSelector = Callable[[TracingContext, Mapping[str, TracingInstance]], str | None]


@dataclass
class TracingConfig:
    """Registry-level tracing configuration.

    Attributes:
        instances: Instance name to configuration or pre-built instance.
            The first key becomes the default instance.
        selector: Optional selector choosing an instance per root span.
    """

    instances: dict[str, TracingInstanceConfig | TracingInstance] = field(default_factory=dict)
    selector: TracingSelector | None = None


class TracingRegistry:
    """Directory of named tracing instances.

    Attributes:
        selector: Optional selector used when starting root spans.
    """

    def __init__(self, selector: TracingSelector | None = None) -> None:
        """Initialize an empty registry.

        Args:
            selector: Optional selector used when starting root spans.
        """
        self.selector = selector
        self._instances: dict[str, TracingInstance] = {}
        self._default_name: str | None = None
        self._lock = threading.Lock()
        self._logger = logger.bind(component="tracing_registry")

    @classmethod
    def from_config(cls, config: TracingConfig) -> "TracingRegistry":
        """Build a registry from a tracing configuration.

        Configurations are turned into instances; a configuration without an
        instance name takes its key in the mapping.

        Args:
            config: Registry-level configuration.

        Returns:
            Registry with every instance registered in mapping order.
        """
        registry = cls(selector=config.selector)
        for name, entry in config.instances.items():
            if isinstance(entry, TracingInstance):
                instance = entry
            else:
                if not entry.instance_name:
                    entry = replace(entry, instance_name=name)
                instance = TracingInstance(entry)
            registry.register(name, instance)
        return registry

    def register(self, name: str, instance: TracingInstance, *, is_default: bool = False) -> None:
        """Register a tracing instance under a unique name.

        Args:
            name: Instance name.
            instance: Tracing instance (shared, not copied).
            is_default: Make this the default instance.

        Raises:
            TracingRegistryConflictError: If the name is already registered.
        """
        with self._lock:
            if name in self._instances:
                raise TracingRegistryConflictError(name)
            self._instances[name] = instance
            if is_default or self._default_name is None:
                self._default_name = name
        self._logger.debug("tracing_instance_registered", name=name)

    def get(self, name: str) -> TracingInstance | None:
        """Get a tracing instance by name."""
        with self._lock:
            return self._instances.get(name)

    def unregister(self, name: str) -> bool:
        """Remove a tracing instance without shutting it down.

        If the default instance is removed, the earliest remaining
        registration becomes the default.

        Returns:
            True if an instance was removed.
        """
        with self._lock:
            if self._instances.pop(name, None) is None:
                return False
            if self._default_name == name:
                self._default_name = next(iter(self._instances), None)
        self._logger.debug("tracing_instance_unregistered", name=name)
        return True

    def get_all(self) -> Mapping[str, TracingInstance]:
        """Get a read-only snapshot of all registered instances."""
        with self._lock:
            return MappingProxyType(dict(self._instances))

    def get_default(self) -> TracingInstance | None:
        """Get the default tracing instance."""
        with self._lock:
            if self._default_name is None:
                return None
            return self._instances.get(self._default_name)

    @property
    def default_name(self) -> str | None:
        return self._default_name

    def set_selector(self, selector: TracingSelector | None) -> None:
        """Install (or with None, remove) the selector for new root spans."""
        self.selector = selector

    def has_tracing(self, name: str) -> bool:
        """Check that an instance is registered and can record traces."""
        instance = self.get(name)
        if instance is None:
            return False
        return instance.get_config().sampling.type is not SamplingStrategyType.NEVER

    def select(self, context: TracingContext | None = None) -> TracingInstance | None:
        """Choose the instance that should own a new trace.

        Never raises: a selector failure or an unknown selection falls back
        to the default instance.

        Args:
            context: Execution context for the selector.

        Returns:
            The selected instance, or None if the registry is empty.
        """
        selector = self.selector
        if selector is not None:
            available = self.get_all()
            try:
                name = selector(context or TracingContext(), available)
            except Exception as e:
                self._logger.warning("tracing_selector_failed", error=str(e))
                name = None
            if name is not None:
                instance = available.get(name)
                if instance is not None:
                    return instance
                self._logger.debug("tracing_selector_unknown_instance", name=name)
        return self.get_default()

    def start_span(
        self,
        span_type: SpanType,
        name: str,
        *,
        input: Any = None,
        metadata: MetadataInput = None,
        runtime_context: Mapping[str, Any] | None = None,
        attributes: Mapping[str, Any] | None = None,
    ) -> AnySpan:
        """Start a root span on the selected instance.

        Args:
            span_type: Type of the root span.
            name: Name of the root span.
            input: Input data to capture.
            metadata: Metadata for the span type.
            runtime_context: Request-scoped values for selection and sampling.
            attributes: Trace-level attributes for sampling.

        Returns:
            The root span, or a NoOpSpan when no instance is registered or
            the trace is sampled out.
        """
        instance = self.select(TracingContext(runtime_context=runtime_context))
        if instance is None:
            return NoOpSpan(span_type, name, input=input, metadata=metadata)
        return instance.start_span(
            span_type,
            name,
            input=input,
            metadata=metadata,
            runtime_context=runtime_context,
            attributes=attributes,
        )

    async def shutdown(self) -> None:
        """Shut down every instance concurrently and clear the registry.

        All instances are shut down even if some fail.

        Raises:
            RegistryShutdownError: If any instance failed to shut down.
        """
        with self._lock:
            instances = list(self._instances.items())
        results = await asyncio.gather(
            *(instance.shutdown() for _, instance in instances),
            return_exceptions=True,
        )
        failures = {
            name: result
            for (name, _), result in zip(instances, results, strict=True)
            if isinstance(result, BaseException)
        }
        self.clear()
        if failures:
            self._logger.error("tracing_registry_shutdown_failed", failed=sorted(failures))
            raise RegistryShutdownError(failures)
        self._logger.info("tracing_registry_shutdown", instances=len(instances))

    def clear(self) -> None:
        """Remove all instances without shutting them down."""
        with self._lock:
            self._instances.clear()
            self._default_name = None


# ============================================================================
# Application Registry
# ============================================================================

_tracing_registry: TracingRegistry | None = None


def get_tracing_registry() -> TracingRegistry:
    """Get the application's tracing registry, creating an empty one if needed."""
    global _tracing_registry
    if _tracing_registry is None:
        _tracing_registry = TracingRegistry()
    return _tracing_registry


def set_tracing_registry(registry: TracingRegistry | None) -> None:
    """Set (or with None, reset) the application's tracing registry.

    Args:
        registry: Registry to use.
    """
    global _tracing_registry
    _tracing_registry = registry


def setup_tracing(config: TracingConfig) -> TracingRegistry:
    """Build a registry from configuration and install it for the application.

    Args:
        config: Registry-level configuration.

    Returns:
        The installed registry.
    """
    registry = TracingRegistry.from_config(config)
    set_tracing_registry(registry)
    return registry


async def shutdown_tracing() -> None:
    """Shut down the application's registry and uninstall it.

    Raises:
        RegistryShutdownError: If any instance failed to shut down.
    """
    registry = _tracing_registry
    set_tracing_registry(None)
    if registry is not None:
        await registry.shutdown()
