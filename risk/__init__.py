"""Portfolio and per-position risk controls."""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitBreakerVerdict,
)
from .trailing_stop import (
    StepLevel,
    TrailingStopConfig,
    TrailingStopState,
    TrailingStopTracker,
    TrailingStopUpdate,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitBreakerVerdict",
    "StepLevel",
    "TrailingStopConfig",
    "TrailingStopState",
    "TrailingStopTracker",
    "TrailingStopUpdate",
]
