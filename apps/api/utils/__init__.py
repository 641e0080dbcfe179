"""Shared utilities for the decision memory API."""

from utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpen,
    CircuitState,
    get_circuit_breaker,
    get_circuit_breaker_stats,
)
from utils.vectors import cosine_similarity

__all__ = [
    # Vector utilities
    "cosine_similarity",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "get_circuit_breaker",
    "get_circuit_breaker_stats",
]
