"""Error types for the tracing pipeline.

Exception Hierarchy:
    TracingError (base)
    ├── TracingRegistryConflictError - Duplicate instance name
    ├── RegistryShutdownError - One or more instances failed to shut down
    ├── InstanceShutdownError - Processors or exporters failed to shut down
    ├── SpanStateError - Mutation of an already-ended span
    ├── TracingShutdownError - Span creation on a shut-down instance
    └── InvalidSpanMetadataError - Metadata does not match the span type

Misuse errors (span state, shutdown, metadata) are only raised by instances
configured with ``strict=True``; otherwise they are logged and the caller
receives a no-op span.
"""

from typing import Any


class TracingError(Exception):
    """Base exception for all tracing errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class TracingRegistryConflictError(TracingError):
    """A tracing instance with the same name is already registered.

    Attributes:
        name: The conflicting instance name.
    """

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Tracing instance '{name}' already registered",
            details={"name": name},
        )
        self.name = name


class RegistryShutdownError(TracingError):
    """One or more tracing instances failed during registry shutdown.

    Attributes:
        failures: Mapping of instance name to the exception it raised.
    """

    def __init__(self, failures: dict[str, BaseException]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(
            f"{len(failures)} tracing instance(s) failed to shut down: {names}",
            details={name: str(exc) for name, exc in failures.items()},
        )
        self.failures = failures


class InstanceShutdownError(TracingError):
    """Processors or exporters of a tracing instance failed to shut down.

    Attributes:
        instance_name: Name of the instance.
        failures: Mapping of component name to the exception it raised.
    """

    def __init__(self, instance_name: str, failures: dict[str, BaseException]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(
            f"Tracing instance '{instance_name}' failed to shut down: {names}",
            details={name: str(exc) for name, exc in failures.items()},
        )
        self.instance_name = instance_name
        self.failures = failures


class SpanStateError(TracingError):
    """A span was mutated after it ended.

    Attributes:
        span_id: ID of the span.
        operation: The rejected operation (update, end, error).
    """

    def __init__(self, span_id: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} span '{span_id}': span already ended",
            details={"span_id": span_id, "operation": operation},
        )
        self.span_id = span_id
        self.operation = operation


class TracingShutdownError(TracingError):
    """A span was requested from a tracing instance that has been shut down."""

    def __init__(self, instance_name: str) -> None:
        super().__init__(
            f"Tracing instance '{instance_name}' has been shut down",
            details={"instance_name": instance_name},
        )
        self.instance_name = instance_name


class InvalidSpanMetadataError(TracingError):
    """Span metadata failed validation against its span type schema.

    Attributes:
        span_type: The span type whose schema was violated.
    """

    def __init__(self, span_type: str, message: str) -> None:
        super().__init__(
            f"Invalid metadata for span type '{span_type}': {message}",
            details={"span_type": span_type},
        )
        self.span_type = span_type
