"""
Operation execution models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from txguard.core.recovery.errors import classify_error

# Zero-argument coroutine function performing one submission attempt
Executor = Callable[[], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationStatus(str, Enum):
    """Operation lifecycle status."""
    PENDING = "pending"          # Waiting in a queue (first try or retry)
    SUBMITTED = "submitted"      # Handed to the submitter
    CONFIRMED = "confirmed"      # Succeeded
    FAILED = "failed"            # Fatal error or attempts exhausted
    CANCELLED = "cancelled"      # Cancelled by the caller


TERMINAL_STATUSES = frozenset({
    OperationStatus.CONFIRMED,
    OperationStatus.FAILED,
    OperationStatus.CANCELLED,
})


@dataclass
class Operation:
    """A single state-changing request and its retry bookkeeping."""
    id: str
    executor: Executor = field(repr=False)
    max_attempts: int = 3
    status: OperationStatus = OperationStatus.PENDING
    attempt: int = 1                              # 1-based number of the current/last attempt
    last_error: Optional[BaseException] = None
    result: Any = None
    label: str = ""

    # Timing
    created_at: datetime = field(default_factory=_utcnow)
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Set when the caller cancels while an attempt is in flight
    cancel_requested: bool = False

    # Per-operation callbacks
    on_success: Optional[Callable[..., Any]] = field(default=None, repr=False)
    on_failure: Optional[Callable[..., Any]] = field(default=None, repr=False)
    on_cancel: Optional[Callable[..., Any]] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Serializable snapshot for an external persistence collaborator."""
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status.value,
            "attempt": self.attempt,
            "maxAttempts": self.max_attempts,
            "lastError": str(self.last_error) if self.last_error else None,
            "errorKind": classify_error(self.last_error).kind.value if self.last_error else None,
            "createdAt": self.created_at.isoformat(),
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class QueueStatus:
    """What a queue is doing right now."""
    length: int
    processing: bool
    current_id: Optional[str] = None


@dataclass(frozen=True)
class BatchOutcome:
    """Terminal outcome of one batch item."""
    operation_id: str
    status: OperationStatus
    item: Any = None
    result: Any = None
    error: Optional[BaseException] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status == OperationStatus.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operationId": self.operation_id,
            "status": self.status.value,
            "error": str(self.error) if self.error else None,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class BatchResult:
    """Per-item outcomes of a batch run, in input order."""
    outcomes: Tuple[BatchOutcome, ...] = ()
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OperationStatus.CONFIRMED)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OperationStatus.FAILED)

    @property
    def cancelled_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OperationStatus.CANCELLED)

    @property
    def succeeded(self) -> List[BatchOutcome]:
        return [o for o in self.outcomes if o.status == OperationStatus.CONFIRMED]

    @property
    def failed(self) -> List[BatchOutcome]:
        return [o for o in self.outcomes if o.status == OperationStatus.FAILED]

    def get(self, operation_id: str) -> Optional[BatchOutcome]:
        for outcome in self.outcomes:
            if outcome.operation_id == operation_id:
                return outcome
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "cancelledCount": self.cancelled_count,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
