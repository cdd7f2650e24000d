"""
Fee policy: priority tiers and fee bumping for resubmission.
"""

from .fee_policy import (
    PRIORITY_MULTIPLIERS,
    PriorityFeeSelector,
    PriorityTier,
    SubmissionRequest,
    apply_priority,
    estimate_confirmation_seconds,
    retry_with_higher_priority,
    select_priority,
    with_buffer,
)

__all__ = [
    "PriorityTier",
    "PRIORITY_MULTIPLIERS",
    "SubmissionRequest",
    "PriorityFeeSelector",
    "select_priority",
    "apply_priority",
    "retry_with_higher_priority",
    "with_buffer",
    "estimate_confirmation_seconds",
]
