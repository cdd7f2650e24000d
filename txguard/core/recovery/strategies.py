"""
Retry Strategies

Backoff computation and retry eligibility. Everything here is pure apart
from optional jitter, which is off by default.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .errors import Classification, ErrorContext, ErrorKind

if TYPE_CHECKING:
    from txguard.config import Settings


MAX_BACKOFF_EXPONENT = 64


class BackoffStrategy(str, Enum):
    """How the delay grows with the attempt number."""

    EXPONENTIAL = "exponential"   # base * 2^(attempt-1)
    LINEAR = "linear"             # base * attempt


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of consulting the retry policy after a failed attempt."""

    should_retry: bool
    delay: float = 0.0


def compute_delay(
    attempt: int,
    base: float,
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL,
    max_wait: Optional[float] = None,
) -> float:
    """
    Delay before the retry that follows failed attempt number ``attempt``.

    Attempts are 1-based, so the first retry waits exactly ``base`` under
    both strategies.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if base < 0:
        raise ValueError(f"base delay must be >= 0, got {base}")

    strategy = BackoffStrategy(strategy)
    if strategy == BackoffStrategy.EXPONENTIAL:
        # Growth stops at 2^64 so the float conversion can never overflow
        delay = base * float(2 ** min(attempt - 1, MAX_BACKOFF_EXPONENT))
    else:
        delay = base * attempt

    if max_wait is not None:
        delay = min(delay, max_wait)
    return float(delay)


def should_retry(attempt: int, max_attempts: int, classification: Classification) -> bool:
    return classification == Classification.RETRYABLE and attempt < max_attempts


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    base_delay_seconds: float = 2.0
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    max_delay_seconds: Optional[float] = 60.0
    jitter: bool = False
    jitter_factor: float = 0.1

    # Rate-limited failures back off harder than plain transient ones
    rate_limit_multiplier: float = 2.0

    # Unclassified failures get fewer attempts than the caller asked for
    unknown_max_attempts: int = 2

    def __post_init__(self) -> None:
        self.strategy = BackoffStrategy(self.strategy)
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds is not None and self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")
        if self.rate_limit_multiplier < 1:
            raise ValueError("rate_limit_multiplier must be >= 1")
        if self.unknown_max_attempts < 1:
            raise ValueError("unknown_max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "RetryConfig":
        if settings is None:
            from txguard.config import settings
        return cls(
            base_delay_seconds=settings.retry_base_delay_seconds,
            strategy=BackoffStrategy(settings.retry_strategy),
            max_delay_seconds=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
            jitter_factor=settings.retry_jitter_factor,
            rate_limit_multiplier=settings.rate_limit_backoff_multiplier,
            unknown_max_attempts=settings.unknown_error_max_attempts,
        )


class RetryPolicy:
    """
    Decides whether a failed attempt is retried and how long to wait.

    The decision depends only on the attempt number, the caller's attempt
    budget and the failure's error context.
    """

    def __init__(self, config: Optional[RetryConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    def effective_max_attempts(self, max_attempts: int, context: ErrorContext) -> int:
        if context.kind == ErrorKind.UNKNOWN:
            return min(max_attempts, self.config.unknown_max_attempts)
        return max_attempts

    def decide(self, attempt: int, max_attempts: int, context: ErrorContext) -> RetryDecision:
        limit = self.effective_max_attempts(max_attempts, context)
        if not should_retry(attempt, limit, context.classification):
            return RetryDecision(should_retry=False)
        return RetryDecision(should_retry=True, delay=self.delay_for(attempt, context))

    def delay_for(self, attempt: int, context: ErrorContext) -> float:
        cfg = self.config
        delay = compute_delay(attempt, cfg.base_delay_seconds, cfg.strategy, cfg.max_delay_seconds)

        if context.kind == ErrorKind.RATE_LIMITED:
            delay *= cfg.rate_limit_multiplier
        if context.retry_after_seconds is not None:
            delay = max(delay, context.retry_after_seconds)

        if cfg.jitter and delay > 0:
            spread = delay * cfg.jitter_factor
            delay += self._rng.uniform(-spread, spread)

        if cfg.max_delay_seconds is not None:
            delay = min(delay, cfg.max_delay_seconds)
        return max(delay, 0.0)
