import pytest

from txguard.core.execution import Deposit, WithdrawMode, filter_eligible_deposits


NOW = 1_700_000_000

DEPOSITS = [
    Deposit("matured", deposit_time=NOW - 100, lock_duration=50),
    Deposit("locked", deposit_time=NOW - 10, lock_duration=50),
    Deposit("exactly-due", deposit_time=NOW - 50, lock_duration=50),
    Deposit("emergency-done", deposit_time=NOW - 100, lock_duration=50, is_emergency=True),
]


class TestFilterEligibleDeposits:

    def test_normal_withdraw_requires_maturity(self):
        eligible = filter_eligible_deposits(DEPOSITS, WithdrawMode.NORMAL, now=NOW)
        assert eligible == ["matured", "exactly-due"]

    def test_emergency_withdraw_ignores_lock(self):
        eligible = filter_eligible_deposits(DEPOSITS, WithdrawMode.EMERGENCY, now=NOW)
        assert eligible == ["matured", "locked", "exactly-due"]

    def test_mode_accepts_string_value(self):
        eligible = filter_eligible_deposits(DEPOSITS, "emergency_withdraw", now=NOW)
        assert "emergency-done" not in eligible

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            filter_eligible_deposits(DEPOSITS, "redeem", now=NOW)

    def test_maturity_time(self):
        assert DEPOSITS[0].maturity_time == NOW - 50

    def test_defaults_to_current_time(self):
        far_future = Deposit("future", deposit_time=NOW * 10, lock_duration=1)
        assert filter_eligible_deposits([far_future], WithdrawMode.NORMAL) == []
