"""
Fee Policy

Priority tiers for submission cost and fee bumping for stuck operations.
All fee values are integers in the backend's smallest unit (wei for EVM
chains); percentages are applied with integer arithmetic.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

GWEI = 10**9

# Async callable returning the currently observed baseline fee per unit
FeeSource = Callable[[], Awaitable[int]]


class PriorityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Percent of the observed baseline
PRIORITY_MULTIPLIERS: Dict[PriorityTier, int] = {
    PriorityTier.LOW: 100,
    PriorityTier.MEDIUM: 110,
    PriorityTier.HIGH: 120,
}


@dataclass(frozen=True)
class SubmissionRequest:
    """An opaque backend payload plus the cost parameter the core may adjust."""
    payload: Dict[str, Any] = field(default_factory=dict)
    fee_per_unit: Optional[int] = None
    tier: PriorityTier = PriorityTier.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)


def select_priority(tier: PriorityTier) -> Decimal:
    """Multiplier for ``tier`` (1.0 / 1.1 / 1.2)."""
    return Decimal(PRIORITY_MULTIPLIERS[PriorityTier(tier)]) / 100


def apply_priority(baseline: int, tier: PriorityTier) -> int:
    if baseline < 0:
        raise ValueError(f"baseline fee must be >= 0, got {baseline}")
    return baseline * PRIORITY_MULTIPLIERS[PriorityTier(tier)] // 100


def retry_with_higher_priority(
    request: SubmissionRequest,
    baseline: int,
    increment_percent: int = 20,
) -> SubmissionRequest:
    """
    Copy of ``request`` whose fee is ``increment_percent`` above ``baseline``.

    ``baseline`` is the most recently observed fee, not the request's own fee.
    """
    if baseline < 0:
        raise ValueError(f"baseline fee must be >= 0, got {baseline}")
    if increment_percent < 0:
        raise ValueError(f"increment_percent must be >= 0, got {increment_percent}")

    new_fee = baseline * (100 + increment_percent) // 100
    metadata = {
        **request.metadata,
        "previousFeePerUnit": request.fee_per_unit,
        "bumpPercent": increment_percent,
    }
    return replace(request, fee_per_unit=new_fee, metadata=metadata)


def with_buffer(estimate: int, buffer_percent: int = 20) -> int:
    """Pad a cost estimate (e.g. gas limit) by ``buffer_percent``."""
    if estimate < 0 or buffer_percent < 0:
        raise ValueError("estimate and buffer_percent must be >= 0")
    return estimate + estimate * buffer_percent // 100


def estimate_confirmation_seconds(fee_per_unit: int) -> int:
    """Rough confirmation time for a fee per unit given in wei."""
    gwei = fee_per_unit / GWEI
    if gwei > 100:
        return 15
    if gwei > 50:
        return 30
    if gwei > 20:
        return 60
    return 120


class PriorityFeeSelector:
    """
    Prices submissions from an observed baseline fee.

    Every price or bump fetches a fresh baseline from ``fee_source``; the
    last observed value stays available as ``last_baseline``.
    """

    def __init__(self, fee_source: FeeSource):
        self._fee_source = fee_source
        self._last_baseline: Optional[int] = None

    @property
    def last_baseline(self) -> Optional[int]:
        return self._last_baseline

    async def observe(self) -> int:
        baseline = int(await self._fee_source())
        if baseline < 0:
            raise ValueError(f"fee source returned a negative baseline: {baseline}")
        self._last_baseline = baseline
        return baseline

    async def price_for(self, tier: PriorityTier = PriorityTier.MEDIUM) -> int:
        return apply_priority(await self.observe(), tier)

    async def prepare(self, request: SubmissionRequest) -> SubmissionRequest:
        """Set ``fee_per_unit`` from the request's tier and the current baseline."""
        return replace(request, fee_per_unit=await self.price_for(request.tier))

    async def bump(
        self,
        request: SubmissionRequest,
        increment_percent: int = 20,
        refresh: bool = True,
    ) -> SubmissionRequest:
        """Resubmission copy of a stuck request with a higher fee."""
        if refresh or self._last_baseline is None:
            baseline = await self.observe()
        else:
            baseline = self._last_baseline

        bumped = retry_with_higher_priority(request, baseline, increment_percent)
        logger.info(
            f"Bumped fee from {request.fee_per_unit} to {bumped.fee_per_unit} "
            f"({increment_percent}% over baseline {baseline})"
        )
        return bumped
