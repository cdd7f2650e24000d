"""
Error Recovery Module

Provides error classification, retry policy, and circuit breaking
for resilient submission of state-changing operations.
"""

from .errors import (
    AttemptTimeoutError,
    CircuitOpenError,
    Classification,
    ErrorContext,
    ErrorKind,
    InsufficientFundsError,
    NetworkError,
    OperationError,
    RateLimitError,
    TransactionRevertedError,
    UnknownOperationError,
    UserDeclinedError,
    classify,
    classify_error,
)
from .strategies import (
    BackoffStrategy,
    RetryConfig,
    RetryDecision,
    RetryPolicy,
    compute_delay,
    should_retry,
)
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
)

__all__ = [
    # Errors
    "Classification",
    "ErrorKind",
    "ErrorContext",
    "OperationError",
    "UserDeclinedError",
    "InsufficientFundsError",
    "TransactionRevertedError",
    "NetworkError",
    "AttemptTimeoutError",
    "RateLimitError",
    "UnknownOperationError",
    "CircuitOpenError",
    "classify_error",
    "classify",
    # Retry
    "BackoffStrategy",
    "RetryConfig",
    "RetryDecision",
    "RetryPolicy",
    "compute_delay",
    "should_retry",
    # Circuit breaker
    "CircuitState",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitBreaker",
]
