"""
Deposit eligibility for batch withdrawals.

Callers filter deposits with this before building a batch; the batch
executor does not re-check eligibility.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional


class WithdrawMode(str, Enum):
    NORMAL = "withdraw"                      # Matured deposits only
    EMERGENCY = "emergency_withdraw"         # Any deposit not already emergency-withdrawn


@dataclass(frozen=True)
class Deposit:
    deposit_id: str
    deposit_time: int        # Unix seconds
    lock_duration: int       # Seconds
    is_emergency: bool = False

    @property
    def maturity_time(self) -> int:
        return self.deposit_time + self.lock_duration

    def is_matured(self, now: float) -> bool:
        return self.maturity_time <= now


def filter_eligible_deposits(
    deposits: Iterable[Deposit],
    mode: WithdrawMode,
    now: Optional[float] = None,
) -> List[str]:
    """Return the IDs of deposits eligible for ``mode``, preserving input order."""
    mode = WithdrawMode(mode)
    if now is None:
        now = time.time()

    if mode == WithdrawMode.NORMAL:
        return [d.deposit_id for d in deposits if d.is_matured(now) and not d.is_emergency]
    return [d.deposit_id for d in deposits if not d.is_emergency]
