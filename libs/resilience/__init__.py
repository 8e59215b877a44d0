"""Resilience primitives: circuit breakers and transient retry."""

from libs.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerMetrics,
    CircuitBreakerRegistry,
    CircuitState,
)
from libs.resilience.retry import is_transient_error, transient_retry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerMetrics",
    "CircuitBreakerRegistry",
    "CircuitState",
    "is_transient_error",
    "transient_retry",
]
