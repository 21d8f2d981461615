"""Sampling strategies deciding whether a trace is recorded.

A strategy is evaluated exactly once per trace, when the root span is
requested. A rejected root yields a no-op span, and every child created from
it is a no-op as well, so a sampled-out trace never reaches an exporter.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from agent_tracing.types import TraceContext

logger = structlog.get_logger(__name__)


class SamplingStrategyType(str, Enum):
    """Kinds of sampling strategy."""

    ALWAYS = "always"
    NEVER = "never"
    RATIO = "ratio"
    CUSTOM = "custom"


@dataclass(frozen=True)
class AlwaysSample:
    """Record every trace."""

    type: SamplingStrategyType = field(default=SamplingStrategyType.ALWAYS, init=False)

    def should_sample(self, context: TraceContext) -> bool:  # noqa: ARG002
        return True


@dataclass(frozen=True)
class NeverSample:
    """Record no traces."""

    type: SamplingStrategyType = field(default=SamplingStrategyType.NEVER, init=False)

    def should_sample(self, context: TraceContext) -> bool:  # noqa: ARG002
        return False


@dataclass(frozen=True)
class RatioSample:
    """Record each trace independently with a fixed probability.

    Attributes:
        probability: Chance of recording a trace, in [0, 1].
        rng: Optional random source, for reproducible sampling.
    """

    probability: float
    rng: random.Random | None = field(default=None, compare=False, repr=False)
    type: SamplingStrategyType = field(default=SamplingStrategyType.RATIO, init=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError(
                f"Sampling probability must be between 0 and 1, got {self.probability}"
            )

    def should_sample(self, context: TraceContext) -> bool:  # noqa: ARG002
        draw = self.rng.random() if self.rng is not None else random.random()
        return draw < self.probability


@dataclass(frozen=True)
class CustomSample:
    """Delegate the decision to a user predicate.

    A predicate that raises is treated as a rejection.

    Attributes:
        sampler: Predicate over the trace context.
    """

    sampler: Callable[[TraceContext], bool]
    type: SamplingStrategyType = field(default=SamplingStrategyType.CUSTOM, init=False)

    def should_sample(self, context: TraceContext) -> bool:
        try:
            return bool(self.sampler(context))
        except Exception as e:
            logger.warning("custom_sampler_failed", error=str(e))
            return False


SamplingStrategy = AlwaysSample | NeverSample | RatioSample | CustomSample
