"""
Error Classification

Defines the failure taxonomy for submitted operations.
Every failure carries an ErrorKind tag, set at the submitter boundary, and
each kind maps to exactly one Classification (fatal or retryable).
"""

import asyncio
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Classification(str, Enum):
    """Whether another attempt can possibly succeed."""

    FATAL = "fatal"
    RETRYABLE = "retryable"


class ErrorKind(str, Enum):
    """Structured failure tags."""

    USER_DECLINED = "user_declined"              # Signer explicitly rejected
    INSUFFICIENT_RESOURCES = "insufficient_resources"  # e.g. balance too low
    REVERTED = "reverted"                        # Executed but failed on-chain
    NETWORK = "network"                          # Connectivity / transient backend error
    TIMEOUT = "timeout"                          # Attempt exceeded its deadline
    RATE_LIMITED = "rate_limited"                # Backend throttling
    UNKNOWN = "unknown"                          # Unclassified
    CIRCUIT_OPEN = "circuit_open"                # Synthetic, raised by the breaker


KIND_CLASSIFICATION: Dict[ErrorKind, Classification] = {
    ErrorKind.USER_DECLINED: Classification.FATAL,
    ErrorKind.INSUFFICIENT_RESOURCES: Classification.FATAL,
    ErrorKind.REVERTED: Classification.FATAL,
    ErrorKind.NETWORK: Classification.RETRYABLE,
    ErrorKind.TIMEOUT: Classification.RETRYABLE,
    ErrorKind.RATE_LIMITED: Classification.RETRYABLE,
    ErrorKind.UNKNOWN: Classification.RETRYABLE,
    # The breaker schedules its own recovery; retrying through it would defeat it.
    ErrorKind.CIRCUIT_OPEN: Classification.FATAL,
}

_missing = set(ErrorKind) - set(KIND_CLASSIFICATION)
if _missing:  # pragma: no cover - guards future ErrorKind additions
    raise RuntimeError(f"ErrorKind values without a classification: {sorted(k.value for k in _missing)}")


@dataclass
class ErrorContext:
    """Classification details for a single failure."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def classification(self) -> Classification:
        return KIND_CLASSIFICATION[self.kind]

    @property
    def retryable(self) -> bool:
        return self.classification == Classification.RETRYABLE


class OperationError(Exception):
    """
    Base class for tagged submission failures.

    Submitters raise subclasses of this so the core never has to inspect
    backend-specific error text.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    suggested_action: Optional[str] = None

    def __init__(
        self,
        message: str = "Operation failed",
        *,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after
        self.context = ErrorContext(
            kind=self.kind,
            retry_after_seconds=retry_after,
            suggested_action=self.suggested_action,
            details=details or {},
        )

    @property
    def classification(self) -> Classification:
        return self.context.classification


class UserDeclinedError(OperationError):
    """The user or signer rejected the request."""

    kind = ErrorKind.USER_DECLINED
    suggested_action = "Ask the user to approve the request again"

    def __init__(self, message: str = "User declined the request", **kwargs: Any):
        super().__init__(message, **kwargs)


class InsufficientFundsError(OperationError):
    """Account cannot cover the amount or the fee."""

    kind = ErrorKind.INSUFFICIENT_RESOURCES
    suggested_action = "Add funds or reduce the amount"

    def __init__(self, message: str = "Insufficient funds", **kwargs: Any):
        super().__init__(message, **kwargs)


class TransactionRevertedError(OperationError):
    """The backend accepted the request but execution failed."""

    kind = ErrorKind.REVERTED
    suggested_action = "Review transaction parameters"

    def __init__(
        self,
        message: str = "Transaction reverted",
        tx_hash: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.tx_hash = tx_hash
        if tx_hash:
            self.context.details.setdefault("tx_hash", tx_hash)


class NetworkError(OperationError):
    """Connectivity or transient backend failure."""

    kind = ErrorKind.NETWORK
    suggested_action = "Retry with backoff"

    def __init__(self, message: str = "Network error", **kwargs: Any):
        super().__init__(message, **kwargs)


class AttemptTimeoutError(OperationError):
    """A single attempt exceeded its configured deadline."""

    kind = ErrorKind.TIMEOUT
    suggested_action = "Retry; consider a longer attempt timeout"

    def __init__(
        self,
        message: str = "Attempt timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class RateLimitError(OperationError):
    """Backend throttled the request."""

    kind = ErrorKind.RATE_LIMITED
    suggested_action = "Back off before retrying"

    def __init__(self, message: str = "Rate limit exceeded", **kwargs: Any):
        super().__init__(message, **kwargs)


class UnknownOperationError(OperationError):
    """Tagged failure whose cause the submitter could not determine."""

    kind = ErrorKind.UNKNOWN
    suggested_action = "Retry operation"


class CircuitOpenError(OperationError):
    """Raised by a circuit breaker instead of invoking the wrapped call."""

    kind = ErrorKind.CIRCUIT_OPEN
    suggested_action = "Wait for the breaker to allow a probe"

    def __init__(self, name: str, retry_after: Optional[float] = None):
        super().__init__(f"Circuit breaker '{name}' is open", retry_after=retry_after)
        self.name = name


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify a failure and return its error context.

    Tagged errors report their own kind. Untagged builtin timeouts and
    connection or name-resolution errors are mapped by type. Everything else,
    including local OSErrors such as FileNotFoundError, is UNKNOWN, which is
    retryable under a reduced attempt cap.
    """
    if isinstance(error, OperationError):
        return error.context

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorContext(kind=ErrorKind.TIMEOUT, suggested_action="Retry")

    if isinstance(error, (ConnectionError, socket.gaierror, socket.herror)):
        return ErrorContext(kind=ErrorKind.NETWORK, suggested_action="Check connectivity")

    return ErrorContext(
        kind=ErrorKind.UNKNOWN,
        suggested_action="Retry operation",
        details={"type": type(error).__name__},
    )


def classify(error: BaseException) -> Classification:
    """Return only the fatal/retryable verdict for ``error``."""
    return classify_error(error).classification
