"""
Operation execution: single-flight queue, batch executor and their models.
"""

from .models import (
    BatchOutcome,
    BatchResult,
    Executor,
    Operation,
    OperationStatus,
    QueueStatus,
    TERMINAL_STATUSES,
)
from .scheduler import Scheduler
from .attempt import run_attempt
from .queue import QueueConfig, SequentialQueue, generate_operation_id
from .batch import BatchConfig, BatchExecutor
from .eligibility import Deposit, WithdrawMode, filter_eligible_deposits

__all__ = [
    # Models
    "OperationStatus",
    "Operation",
    "Executor",
    "QueueStatus",
    "BatchOutcome",
    "BatchResult",
    "TERMINAL_STATUSES",
    # Scheduling
    "Scheduler",
    "run_attempt",
    # Queue
    "QueueConfig",
    "SequentialQueue",
    "generate_operation_id",
    # Batch
    "BatchConfig",
    "BatchExecutor",
    # Eligibility
    "Deposit",
    "WithdrawMode",
    "filter_eligible_deposits",
]
