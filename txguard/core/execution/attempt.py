"""
Single-attempt execution shared by the queue and the batch executor.
"""

import asyncio
from typing import Any, Optional

import structlog

from txguard.core.recovery.circuit_breaker import CircuitBreaker
from txguard.core.recovery.errors import AttemptTimeoutError

from .models import Executor


async def run_attempt(
    operation_id: str,
    attempt: int,
    executor: Executor,
    breaker: Optional[CircuitBreaker] = None,
    timeout_seconds: Optional[float] = None,
) -> Any:
    """
    Execute one attempt of an operation.

    The timeout sits inside the breaker, so an attempt that times out counts
    as a breaker failure. ``operation_id`` and ``attempt`` are bound into the
    structlog context for anything the executor logs.
    """

    async def call() -> Any:
        if timeout_seconds is None:
            return await executor()
        try:
            return await asyncio.wait_for(executor(), timeout_seconds)
        except asyncio.TimeoutError:
            raise AttemptTimeoutError(
                f"Attempt {attempt} of {operation_id} exceeded {timeout_seconds}s",
                timeout_seconds=timeout_seconds,
            ) from None

    with structlog.contextvars.bound_contextvars(operation_id=operation_id, attempt=attempt):
        if breaker is not None:
            return await breaker.execute(call)
        return await call()
