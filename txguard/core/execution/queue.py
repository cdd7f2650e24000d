"""
Sequential (single-flight) operation queue.

Submits one operation at a time in FIFO order. Failed attempts are
classified; a retry goes back to the front of the queue and the next pull
is delayed by the backoff. Consecutive distinct operations are separated
by a configurable spacing.
"""

import asyncio
import inspect
import secrets
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Optional, Set

import structlog

from txguard.core.recovery.circuit_breaker import CircuitBreaker
from txguard.core.recovery.errors import classify_error
from txguard.core.recovery.strategies import RetryDecision, RetryPolicy

from .attempt import run_attempt
from .models import Executor, Operation, OperationStatus, QueueStatus
from .scheduler import Scheduler

if TYPE_CHECKING:
    from txguard.config import Settings

logger = structlog.stdlib.get_logger(__name__)


@dataclass
class QueueConfig:
    """Configuration for a sequential queue."""

    default_max_attempts: int = 3
    spacing_seconds: float = 1.0
    attempt_timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        if self.spacing_seconds < 0:
            raise ValueError("spacing_seconds must be >= 0")
        if self.attempt_timeout_seconds is not None and self.attempt_timeout_seconds <= 0:
            raise ValueError("attempt_timeout_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "QueueConfig":
        if settings is None:
            from txguard.config import settings
        return cls(
            default_max_attempts=settings.default_max_attempts,
            spacing_seconds=settings.queue_spacing_seconds,
            attempt_timeout_seconds=settings.attempt_timeout_seconds,
        )


def generate_operation_id() -> str:
    return f"tx_{secrets.token_hex(8)}"


class SequentialQueue:
    """
    Single-flight FIFO execution engine.

    Must be used from inside a running event loop: ``enqueue`` schedules
    processing on it. Callbacks may be plain functions or coroutine
    functions:

    - ``on_success(operation, result)``
    - ``on_failure(operation, error)``
    - ``on_cancel(operation)``

    Cancelling an operation that is already submitted cannot abort the
    external call. Its eventual outcome is recorded on the operation
    (``result`` / ``last_error``), no retry is scheduled, and it is delivered
    through ``on_cancel`` only.
    """

    def __init__(
        self,
        name: str = "default",
        config: Optional[QueueConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
        scheduler: Optional[Scheduler] = None,
        id_factory: Callable[[], str] = generate_operation_id,
    ):
        self.name = name
        self.config = config or QueueConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.breaker = breaker
        # May be shared with other owners; only tasks in _tasks belong to this queue
        self._scheduler = scheduler or Scheduler()
        self._tasks: Set[asyncio.Task] = set()
        # Callbacks dispatched from sync code survive close()
        self._callbacks = Scheduler()
        self._id_factory = id_factory

        self._pending: Deque[Operation] = deque()
        self._live: Dict[str, Operation] = {}
        self._current: Optional[Operation] = None
        self._processing = False
        self._wakeup: Optional[asyncio.Task] = None
        self._last_finished: Optional[float] = None
        self._idle = asyncio.Event()
        self._idle.set()

    # --- Public API ---

    def enqueue(
        self,
        executor: Executor,
        max_attempts: Optional[int] = None,
        *,
        on_success: Optional[Callable[..., Any]] = None,
        on_failure: Optional[Callable[..., Any]] = None,
        on_cancel: Optional[Callable[..., Any]] = None,
        label: str = "",
    ) -> str:
        """
        Add an operation to the back of the queue.

        Returns:
            The operation ID.

        Raises:
            ValueError: If executor is not callable or max_attempts < 1.
        """
        if not callable(executor):
            raise ValueError("executor must be callable")
        if max_attempts is None:
            max_attempts = self.config.default_max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        operation = Operation(
            id=self._id_factory(),
            executor=executor,
            max_attempts=max_attempts,
            label=label,
            on_success=on_success,
            on_failure=on_failure,
            on_cancel=on_cancel,
        )
        self._pending.append(operation)
        self._live[operation.id] = operation
        self._idle.clear()

        logger.debug("operation_enqueued", queue=self.name, operation_id=operation.id, label=label)
        self._kick()
        return operation.id

    def cancel(self, operation_id: str) -> bool:
        """
        Cancel an operation.

        A pending operation is removed immediately. A submitted one is
        flagged so its outcome neither retries nor reaches success/failure
        callbacks.

        Returns:
            True if the operation was pending or in flight, False otherwise.
        """
        for operation in self._pending:
            if operation.id == operation_id:
                self._pending.remove(operation)
                self._mark_cancelled(operation)
                self._dispatch(operation.on_cancel, operation)
                self._update_idle()
                return True

        if self._current is not None and self._current.id == operation_id:
            self._current.cancel_requested = True
            logger.info("cancel_requested_in_flight", queue=self.name, operation_id=operation_id)
            return True

        return False

    def clear(self) -> int:
        """Cancel every pending operation. Returns how many were removed."""
        removed = list(self._pending)
        self._pending.clear()
        for operation in removed:
            self._mark_cancelled(operation)
            self._dispatch(operation.on_cancel, operation)
        self._update_idle()
        return len(removed)

    def status(self) -> QueueStatus:
        return QueueStatus(
            length=len(self._pending),
            processing=self._processing,
            current_id=self._current.id if self._current else None,
        )

    def get(self, operation_id: str) -> Optional[Operation]:
        """Look up a pending or in-flight operation."""
        return self._live.get(operation_id)

    async def join(self) -> None:
        """Wait until the queue is idle and all callbacks have run."""
        while True:
            await self._idle.wait()
            await self._wait_own_tasks()
            await self._callbacks.wait_idle()
            if self._idle.is_set():
                return

    async def close(self) -> None:
        """
        Stop processing.

        Pending operations and the in-flight one are marked cancelled and
        their ``on_cancel`` callbacks run.
        """
        abandoned = list(self._pending)
        if self._current is not None:
            abandoned.insert(0, self._current)
        self._pending.clear()

        await self._cancel_own_tasks()
        self._wakeup = None
        self._processing = False
        self._current = None

        for operation in abandoned:
            if not operation.is_terminal:
                self._mark_cancelled(operation)
                await self._invoke(operation.on_cancel, operation)
        await self._callbacks.wait_idle()
        self._update_idle()

    # --- Processing ---

    def _kick(self) -> None:
        if self._processing or self._wakeup is not None or not self._pending:
            return
        self._wakeup = self._schedule(self._remaining_spacing())

    def _remaining_spacing(self) -> float:
        if self._last_finished is None:
            return 0.0
        elapsed = asyncio.get_running_loop().time() - self._last_finished
        return max(0.0, self.config.spacing_seconds - elapsed)

    async def _process_next(self) -> None:
        self._wakeup = None
        if self._processing or not self._pending:
            self._update_idle()
            return

        operation = self._pending.popleft()
        self._processing = True
        self._current = operation
        operation.status = OperationStatus.SUBMITTED
        operation.submitted_at = datetime.now(timezone.utc)

        logger.info(
            "operation_submitted",
            queue=self.name,
            operation_id=operation.id,
            attempt=operation.attempt,
            max_attempts=operation.max_attempts,
        )

        next_delay: Optional[float] = None
        try:
            result = await run_attempt(
                operation.id,
                operation.attempt,
                operation.executor,
                breaker=self.breaker,
                timeout_seconds=self.config.attempt_timeout_seconds,
            )
        except asyncio.CancelledError:
            self._finish_current()
            raise
        except Exception as exc:
            self._finish_current()
            try:
                next_delay = await self._handle_failure(operation, exc)
            except Exception as handling_error:
                logger.exception("failure_handling_failed", queue=self.name, operation_id=operation.id)
                await self._fail(operation, handling_error)
        else:
            self._finish_current()
            await self._handle_success(operation, result)

        # A callback may already have scheduled the next pull via enqueue()
        if self._pending and self._wakeup is None:
            delay = next_delay if next_delay is not None else self._remaining_spacing()
            self._wakeup = self._schedule(delay)
        self._update_idle()

    def _finish_current(self) -> None:
        self._processing = False
        self._current = None
        self._last_finished = asyncio.get_running_loop().time()

    async def _handle_success(self, operation: Operation, result: Any) -> None:
        operation.result = result
        operation.completed_at = datetime.now(timezone.utc)
        self._live.pop(operation.id, None)

        if operation.cancel_requested:
            operation.status = OperationStatus.CANCELLED
            logger.info("operation_cancelled_after_success", queue=self.name, operation_id=operation.id)
            await self._invoke(operation.on_cancel, operation)
            return

        operation.status = OperationStatus.CONFIRMED
        logger.info(
            "operation_confirmed",
            queue=self.name,
            operation_id=operation.id,
            attempt=operation.attempt,
        )
        await self._invoke(operation.on_success, operation, result)

    async def _handle_failure(self, operation: Operation, error: Exception) -> Optional[float]:
        """Record a failed attempt. Returns the backoff delay if a retry was scheduled."""
        operation.last_error = error
        context = classify_error(error)

        if operation.cancel_requested:
            operation.status = OperationStatus.CANCELLED
            operation.completed_at = datetime.now(timezone.utc)
            self._live.pop(operation.id, None)
            logger.info("operation_cancelled_after_failure", queue=self.name, operation_id=operation.id)
            await self._invoke(operation.on_cancel, operation)
            return None

        try:
            decision = self.retry_policy.decide(operation.attempt, operation.max_attempts, context)
        except Exception:
            logger.exception("retry_policy_failed", queue=self.name, operation_id=operation.id)
            decision = RetryDecision(should_retry=False)

        if decision.should_retry:
            logger.warning(
                "operation_retry_scheduled",
                queue=self.name,
                operation_id=operation.id,
                attempt=operation.attempt,
                max_attempts=operation.max_attempts,
                error_kind=context.kind.value,
                error=str(error),
                delay_seconds=round(decision.delay, 3),
            )
            operation.attempt += 1
            operation.status = OperationStatus.PENDING
            self._pending.appendleft(operation)
            return decision.delay

        await self._fail(operation, error)
        return None

    async def _fail(self, operation: Operation, error: BaseException) -> None:
        context = classify_error(error)
        operation.last_error = error
        operation.status = OperationStatus.FAILED
        operation.completed_at = datetime.now(timezone.utc)
        self._live.pop(operation.id, None)
        logger.error(
            "operation_failed",
            queue=self.name,
            operation_id=operation.id,
            attempt=operation.attempt,
            error_kind=context.kind.value,
            classification=context.classification.value,
            error=str(error),
        )
        await self._invoke(operation.on_failure, operation, error)

    # --- Helpers ---

    def _schedule(self, delay: float) -> asyncio.Task:
        task = self._scheduler.after(delay, self._process_next)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _other_tasks(self) -> List[asyncio.Task]:
        current = asyncio.current_task()
        return [t for t in self._tasks if t is not current]

    async def _wait_own_tasks(self) -> None:
        while True:
            tasks = self._other_tasks()
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _cancel_own_tasks(self) -> None:
        tasks = self._other_tasks()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _mark_cancelled(self, operation: Operation) -> None:
        operation.status = OperationStatus.CANCELLED
        operation.completed_at = datetime.now(timezone.utc)
        self._live.pop(operation.id, None)
        logger.info("operation_cancelled", queue=self.name, operation_id=operation.id)

    def _update_idle(self) -> None:
        if not self._pending and not self._processing and self._wakeup is None:
            self._idle.set()
        else:
            self._idle.clear()

    async def _invoke(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("callback_failed", queue=self.name, callback=getattr(callback, "__name__", repr(callback)))

    def _dispatch(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        """Run a callback from synchronous code; awaitables are scheduled."""
        if callback is None:
            return
        self._callbacks.after(0, lambda: self._invoke(callback, *args))
