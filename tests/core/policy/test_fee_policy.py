"""
Tests for the fee policy: priority tiers, bumps and estimates.
"""

from decimal import Decimal

import pytest

from txguard.core.policy import (
    PriorityFeeSelector,
    PriorityTier,
    SubmissionRequest,
    apply_priority,
    estimate_confirmation_seconds,
    retry_with_higher_priority,
    select_priority,
    with_buffer,
)

GWEI = 10**9


class FeeFeed:
    """Fee source returning a scripted sequence of baselines."""

    def __init__(self, *values: int):
        self._values = list(values)
        self.calls = 0

    async def __call__(self) -> int:
        self.calls += 1
        return self._values[min(self.calls, len(self._values)) - 1]


# =============================================================================
# Tier selection
# =============================================================================

class TestPriorityTiers:

    def test_multipliers(self):
        assert select_priority(PriorityTier.LOW) == Decimal("1")
        assert select_priority(PriorityTier.MEDIUM) == Decimal("1.1")
        assert select_priority(PriorityTier.HIGH) == Decimal("1.2")

    def test_apply_priority(self):
        baseline = 20 * GWEI
        assert apply_priority(baseline, PriorityTier.LOW) == 20 * GWEI
        assert apply_priority(baseline, PriorityTier.MEDIUM) == 22 * GWEI
        assert apply_priority(baseline, "high") == 24 * GWEI

    def test_negative_baseline_rejected(self):
        with pytest.raises(ValueError):
            apply_priority(-1, PriorityTier.LOW)


# =============================================================================
# Bumping
# =============================================================================

class TestRetryWithHigherPriority:

    def test_bump_over_observed_baseline(self):
        request = SubmissionRequest(payload={"to": "0xvault"}, fee_per_unit=10 * GWEI)

        bumped = retry_with_higher_priority(request, baseline=15 * GWEI, increment_percent=20)

        assert bumped.fee_per_unit == 18 * GWEI
        assert bumped.payload == {"to": "0xvault"}
        assert bumped.metadata["previousFeePerUnit"] == 10 * GWEI
        assert bumped.metadata["bumpPercent"] == 20

    def test_original_request_untouched(self):
        request = SubmissionRequest(fee_per_unit=100)
        retry_with_higher_priority(request, baseline=100)
        assert request.fee_per_unit == 100
        assert request.metadata == {}

    def test_negative_increment_rejected(self):
        with pytest.raises(ValueError):
            retry_with_higher_priority(SubmissionRequest(), baseline=100, increment_percent=-5)


class TestEstimates:

    def test_with_buffer(self):
        assert with_buffer(21000) == 25200
        assert with_buffer(100, buffer_percent=50) == 150

    @pytest.mark.parametrize(
        "gwei,seconds",
        [(150, 15), (100, 30), (60, 30), (50, 60), (25, 60), (20, 120), (1, 120)],
    )
    def test_confirmation_bands(self, gwei, seconds):
        assert estimate_confirmation_seconds(gwei * GWEI) == seconds


# =============================================================================
# Selector
# =============================================================================

class TestPriorityFeeSelector:

    @pytest.mark.asyncio
    async def test_price_for_tier(self):
        selector = PriorityFeeSelector(FeeFeed(30 * GWEI))

        assert await selector.price_for(PriorityTier.HIGH) == 36 * GWEI
        assert selector.last_baseline == 30 * GWEI

    @pytest.mark.asyncio
    async def test_prepare_uses_request_tier(self):
        selector = PriorityFeeSelector(FeeFeed(10 * GWEI))
        request = SubmissionRequest(tier=PriorityTier.MEDIUM)

        prepared = await selector.prepare(request)

        assert prepared.fee_per_unit == 11 * GWEI

    @pytest.mark.asyncio
    async def test_bump_refreshes_baseline(self):
        feed = FeeFeed(10 * GWEI, 20 * GWEI)
        selector = PriorityFeeSelector(feed)
        request = await selector.prepare(SubmissionRequest(tier=PriorityTier.LOW))

        bumped = await selector.bump(request, increment_percent=10)

        assert feed.calls == 2
        assert bumped.fee_per_unit == 22 * GWEI

    @pytest.mark.asyncio
    async def test_bump_without_refresh_reuses_last_baseline(self):
        feed = FeeFeed(10 * GWEI, 99 * GWEI)
        selector = PriorityFeeSelector(feed)
        await selector.observe()

        bumped = await selector.bump(SubmissionRequest(), refresh=False)

        assert feed.calls == 1
        assert bumped.fee_per_unit == 12 * GWEI

    @pytest.mark.asyncio
    async def test_negative_feed_rejected(self):
        selector = PriorityFeeSelector(FeeFeed(-1))
        with pytest.raises(ValueError):
            await selector.observe()
