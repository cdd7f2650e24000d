"""
txguard: resilient submission of state-changing operations.

Error classification, retry with backoff, circuit breaking, a single-flight
sequential queue and a failure-isolating batch executor.
"""

from .core.execution import (
    BatchConfig,
    BatchExecutor,
    BatchResult,
    Operation,
    OperationStatus,
    QueueConfig,
    SequentialQueue,
)
from .core.recovery import (
    CircuitBreaker,
    CircuitBreakerConfig,
    Classification,
    ErrorKind,
    OperationError,
    RetryConfig,
    RetryPolicy,
    classify,
    classify_error,
)

from .logging_config import setup_logging

__version__ = "0.1.0"

__all__ = [
    "BatchConfig",
    "BatchExecutor",
    "BatchResult",
    "Operation",
    "OperationStatus",
    "QueueConfig",
    "SequentialQueue",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "Classification",
    "ErrorKind",
    "OperationError",
    "RetryConfig",
    "RetryPolicy",
    "classify",
    "classify_error",
    "setup_logging",
    "__version__",
]
