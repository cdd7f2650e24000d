"""
Batch Executor

Runs many independent operations and reports a per-item outcome for each.
One item's terminal failure never stops the rest of the batch.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence

import structlog

from txguard.core.recovery.circuit_breaker import CircuitBreaker
from txguard.core.recovery.errors import classify_error
from txguard.core.recovery.strategies import RetryPolicy

from .attempt import run_attempt
from .models import BatchOutcome, BatchResult, Operation, OperationStatus

if TYPE_CHECKING:
    from txguard.config import Settings

    from .queue import SequentialQueue

logger = structlog.stdlib.get_logger(__name__)

ItemExecutor = Callable[[Any], Awaitable[Any]]
ProgressCallback = Callable[[int, int], Any]


@dataclass
class BatchConfig:
    """Configuration for batch runs."""
    max_attempts_per_item: int = 3
    chunk_size: Optional[int] = None        # None = strictly sequential
    chunk_pause_seconds: float = 0.1        # Pause between chunks (rate limits)
    attempt_timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_attempts_per_item < 1:
            raise ValueError("max_attempts_per_item must be >= 1")
        if self.chunk_size is not None and self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.chunk_pause_seconds < 0:
            raise ValueError("chunk_pause_seconds must be >= 0")
        if self.attempt_timeout_seconds is not None and self.attempt_timeout_seconds <= 0:
            raise ValueError("attempt_timeout_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "BatchConfig":
        if settings is None:
            from txguard.config import settings
        return cls(
            max_attempts_per_item=settings.default_max_attempts,
            chunk_size=settings.batch_chunk_size,
            chunk_pause_seconds=settings.batch_chunk_pause_seconds,
            attempt_timeout_seconds=settings.attempt_timeout_seconds,
        )


def default_operation_id(item: Any, index: int) -> str:
    if isinstance(item, (str, int)):
        return f"op-{item}"
    return f"op-{index}"


class _Progress:
    """Counts terminal items and reports each exactly once."""

    def __init__(self, total: int, callback: Optional[ProgressCallback]):
        self.total = total
        self.completed = 0
        self._callback = callback

    async def item_done(self) -> None:
        self.completed += 1
        if self._callback is None:
            return
        try:
            result = self._callback(self.completed, self.total)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("progress_callback_failed", completed=self.completed, total=self.total)


class BatchExecutor:
    """
    Drives a list of items through per-item retry with failure isolation.

    Items run directly (sequentially, or in fixed-size concurrent chunks) or
    through a SequentialQueue when one is passed to ``run``. Eligibility of
    items is the caller's concern and is not checked here.
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config or BatchConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self.breaker = breaker

    async def run(
        self,
        items: Sequence[Any],
        executor_for: ItemExecutor,
        *,
        max_attempts_per_item: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        id_for: Callable[[Any, int], str] = default_operation_id,
        queue: Optional["SequentialQueue"] = None,
    ) -> BatchResult:
        """
        Run ``executor_for(item)`` for every item.

        Args:
            items: Items in the order they should be attempted.
            executor_for: Coroutine function called once per attempt with the item.
            max_attempts_per_item: Attempt budget per item (default from config).
            on_progress: Called as ``on_progress(completed, total)`` after each
                item reaches a terminal state.
            id_for: Builds the operation ID for ``(item, index)``.
            queue: Submit through this queue instead of directly. Items then run
                under the queue's retry policy, breaker, attempt timeout and
                spacing; this executor's own retry_policy, breaker,
                attempt_timeout_seconds and chunk settings are not used.
                Only ``max_attempts_per_item`` still applies per item.

        Returns:
            BatchResult with one outcome per item, in input order.

        Raises:
            ValueError: For malformed input, before anything is executed.
        """
        item_list = self._validate(items, executor_for, on_progress)
        max_attempts = (
            max_attempts_per_item
            if max_attempts_per_item is not None
            else self.config.max_attempts_per_item
        )
        if max_attempts < 1:
            raise ValueError(f"max_attempts_per_item must be >= 1, got {max_attempts}")

        operation_ids = [id_for(item, index) for index, item in enumerate(item_list)]
        if len(set(operation_ids)) != len(operation_ids):
            raise ValueError("Batch items must map to unique operation IDs")

        started_at = datetime.now(timezone.utc)
        progress = _Progress(len(item_list), on_progress)
        logger.info("batch_started", total=len(item_list), via_queue=queue is not None)

        if not item_list:
            outcomes: List[BatchOutcome] = []
        elif queue is not None:
            outcomes = await self._run_via_queue(
                queue, item_list, operation_ids, executor_for, max_attempts, progress
            )
        elif self.config.chunk_size is None:
            outcomes = await self._run_sequential(
                item_list, operation_ids, executor_for, max_attempts, progress
            )
        else:
            outcomes = await self._run_chunked(
                item_list, operation_ids, executor_for, max_attempts, progress
            )

        result = BatchResult(
            outcomes=tuple(outcomes),
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "batch_completed",
            total=len(item_list),
            succeeded=result.success_count,
            failed=result.failure_count,
            cancelled=result.cancelled_count,
        )
        return result

    # --- Modes ---

    async def _run_sequential(
        self,
        items: List[Any],
        operation_ids: List[str],
        executor_for: ItemExecutor,
        max_attempts: int,
        progress: _Progress,
    ) -> List[BatchOutcome]:
        outcomes = []
        for item, operation_id in zip(items, operation_ids):
            outcome = await self._run_item(operation_id, item, executor_for, max_attempts)
            outcomes.append(outcome)
            await progress.item_done()
        return outcomes

    async def _run_chunked(
        self,
        items: List[Any],
        operation_ids: List[str],
        executor_for: ItemExecutor,
        max_attempts: int,
        progress: _Progress,
    ) -> List[BatchOutcome]:
        size = self.config.chunk_size
        outcomes: List[Optional[BatchOutcome]] = [None] * len(items)

        async def tracked(index: int) -> None:
            outcomes[index] = await self._run_item(
                operation_ids[index], items[index], executor_for, max_attempts
            )
            await progress.item_done()

        for start in range(0, len(items), size):
            if start > 0 and self.config.chunk_pause_seconds > 0:
                await asyncio.sleep(self.config.chunk_pause_seconds)
            await asyncio.gather(*(tracked(i) for i in range(start, min(start + size, len(items)))))

        return [outcome for outcome in outcomes if outcome is not None]

    async def _run_via_queue(
        self,
        queue: "SequentialQueue",
        items: List[Any],
        operation_ids: List[str],
        executor_for: ItemExecutor,
        max_attempts: int,
        progress: _Progress,
    ) -> List[BatchOutcome]:
        loop = asyncio.get_running_loop()
        futures: List[asyncio.Future] = []

        for item, operation_id in zip(items, operation_ids):
            future: asyncio.Future = loop.create_future()
            futures.append(future)

            async def finish(outcome: BatchOutcome, fut: asyncio.Future = future) -> None:
                if not fut.done():
                    fut.set_result(outcome)
                    await progress.item_done()

            def on_success(op: Operation, result: Any, _id=operation_id, _item=item, _finish=finish):
                return _finish(BatchOutcome(_id, OperationStatus.CONFIRMED, item=_item, result=result, attempts=op.attempt))

            def on_failure(op: Operation, error: BaseException, _id=operation_id, _item=item, _finish=finish):
                return _finish(BatchOutcome(_id, OperationStatus.FAILED, item=_item, error=error, attempts=op.attempt))

            def on_cancel(op: Operation, _id=operation_id, _item=item, _finish=finish):
                return _finish(BatchOutcome(
                    _id, OperationStatus.CANCELLED, item=_item,
                    result=op.result, error=op.last_error, attempts=op.attempt,
                ))

            queue.enqueue(
                partial(executor_for, item),
                max_attempts,
                on_success=on_success,
                on_failure=on_failure,
                on_cancel=on_cancel,
                label=operation_id,
            )

        return list(await asyncio.gather(*futures))

    # --- Per item ---

    async def _run_item(
        self,
        operation_id: str,
        item: Any,
        executor_for: ItemExecutor,
        max_attempts: int,
    ) -> BatchOutcome:
        attempt = 1
        while True:
            try:
                result = await run_attempt(
                    operation_id,
                    attempt,
                    partial(executor_for, item),
                    breaker=self.breaker,
                    timeout_seconds=self.config.attempt_timeout_seconds,
                )
            except Exception as exc:
                context = classify_error(exc)
                decision = self.retry_policy.decide(attempt, max_attempts, context)
                if decision.should_retry:
                    logger.warning(
                        "batch_item_retry",
                        operation_id=operation_id,
                        attempt=attempt,
                        error_kind=context.kind.value,
                        delay_seconds=round(decision.delay, 3),
                    )
                    await asyncio.sleep(decision.delay)
                    attempt += 1
                    continue

                logger.error(
                    "batch_item_failed",
                    operation_id=operation_id,
                    attempt=attempt,
                    error_kind=context.kind.value,
                    error=str(exc),
                )
                return BatchOutcome(
                    operation_id, OperationStatus.FAILED, item=item, error=exc, attempts=attempt
                )

            return BatchOutcome(
                operation_id, OperationStatus.CONFIRMED, item=item, result=result, attempts=attempt
            )

    @staticmethod
    def _validate(
        items: Sequence[Any],
        executor_for: ItemExecutor,
        on_progress: Optional[ProgressCallback],
    ) -> List[Any]:
        if items is None or isinstance(items, (str, bytes, dict)):
            raise ValueError("items must be a sequence of batch items")
        try:
            item_list = list(items)
        except TypeError as exc:
            raise ValueError("items must be iterable") from exc
        if not callable(executor_for):
            raise ValueError("executor_for must be callable")
        if on_progress is not None and not callable(on_progress):
            raise ValueError("on_progress must be callable")
        return item_list
