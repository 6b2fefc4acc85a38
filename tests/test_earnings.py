"""
hiverewarder/tests/test_earnings.py

Unit tests for the daily earnings window.
"""

from datetime import datetime, timezone

import pytest

from hiverewarder.hive.client import AccountOperation, GlobalProperties
from hiverewarder.protocol.earnings import curation_window, windowed_earnings


NOW = datetime(2024, 6, 30, 2, 0, tzinfo=timezone.utc)   # 10:00 in Manila
START = datetime(2024, 6, 29, 0, 0, tzinfo=timezone.utc)  # 08:00 Manila, Jun 29
END = datetime(2024, 6, 30, 0, 0, tzinfo=timezone.utc)    # 08:00 Manila, Jun 30


def _ms(dt):
    return int(dt.timestamp() * 1000)


def _claim(index, dt, vests):
    return AccountOperation(
        index=index,
        timestamp_ms=_ms(dt),
        op_type="claim_reward_balance",
        data={"reward_hive": "0.000 HIVE", "reward_hbd": "0.000 HBD",
              "reward_vests": f"{vests:.6f} VESTS"},
    )


@pytest.fixture
def props():
    return GlobalProperties(total_vesting_fund_hive=500.0, total_vesting_shares=1000.0)


class TestCurationWindow:
    """Tests for window boundaries."""

    def test_manila_eight_to_eight(self):
        """Window runs 08:00 to 08:00 Manila time."""
        start_ms, end_ms = curation_window(NOW)
        assert start_ms == _ms(START)
        assert end_ms == _ms(END)

    def test_window_is_one_day(self):
        start_ms, end_ms = curation_window(NOW)
        assert end_ms - start_ms == 24 * 60 * 60 * 1000

    def test_other_timezone(self):
        start_ms, end_ms = curation_window(NOW, tz_name="UTC", hour=0)
        assert end_ms == _ms(datetime(2024, 6, 30, 0, 0, tzinfo=timezone.utc))


class TestWindowedEarnings:
    """Tests for claim aggregation."""

    def test_sums_claims_in_window(self, props):
        """Claims inside [start, end) are summed and converted to HP."""
        ops = [
            _claim(1, START, 10.0),                                        # inclusive start
            _claim(2, datetime(2024, 6, 29, 12, 0, tzinfo=timezone.utc), 30.0),
            _claim(3, END, 1000.0),                                        # exclusive end
            _claim(4, datetime(2024, 6, 28, 12, 0, tzinfo=timezone.utc), 500.0),
        ]
        total = windowed_earnings(ops, _ms(START), _ms(END), props)
        assert total == pytest.approx(20.0)

    def test_accrued_rewards_not_counted(self, props):
        """curation_reward operations are accrual, not claims."""
        ops = [
            AccountOperation(1, _ms(START) + 1000, "curation_reward",
                             {"reward": "50.000000 VESTS"}),
            _claim(2, datetime(2024, 6, 29, 1, 0, tzinfo=timezone.utc), 4.0),
        ]
        assert windowed_earnings(ops, _ms(START), _ms(END), props) == pytest.approx(2.0)

    def test_zero_claims_ignored(self, props):
        ops = [_claim(1, datetime(2024, 6, 29, 1, 0, tzinfo=timezone.utc), 0.0)]
        assert windowed_earnings(ops, _ms(START), _ms(END), props) == 0.0

    def test_empty(self, props):
        assert windowed_earnings([], _ms(START), _ms(END), props) == 0.0
