"""
hiverewarder/tests/test_eligibility.py

Unit tests for time-weighted eligibility:
- Cutoff computation in the civil timezone
- Stake added after the cutoff is excluded
- Withdrawals after the cutoff are clamped
- Negative running balances are floored
"""

import logging
from datetime import datetime, timezone

import pytest

from hiverewarder.hive.client import GlobalProperties
from hiverewarder.protocol.delegation import DelegationEntry
from hiverewarder.protocol.eligibility import (
    compute_eligible_stakes,
    eligibility_cutoff,
    eligible_stake,
)


DAY_MS = 24 * 60 * 60 * 1000
NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


def _entries(*changes):
    """Build entries from (delta, ts) pairs."""
    entries = []
    total = 0.0
    for delta, ts in changes:
        total += delta
        entries.append(DelegationEntry(
            vests=delta, total_vests=total, hp=total / 2, timestamp=ts, date="",
        ))
    return entries


# ============================================================================
# Cutoff
# ============================================================================

class TestEligibilityCutoff:
    """Tests for the cutoff boundary."""

    def test_local_midnight_minus_six_days(self):
        """Cutoff is Manila midnight of today, six days back."""
        # 12:00 UTC is 20:00 in Manila; local midnight is 16:00 UTC the day before
        expected = datetime(2024, 6, 23, 16, 0, tzinfo=timezone.utc)
        assert eligibility_cutoff(NOW) == int(expected.timestamp() * 1000)

    def test_local_date_rollover(self):
        """Past 16:00 UTC it is already tomorrow in Manila."""
        late = datetime(2024, 6, 30, 17, 0, tzinfo=timezone.utc)
        expected = datetime(2024, 6, 24, 16, 0, tzinfo=timezone.utc)
        assert eligibility_cutoff(late) == int(expected.timestamp() * 1000)

    def test_custom_days_and_timezone(self):
        cutoff = eligibility_cutoff(NOW, tz_name="UTC", days=1)
        expected = datetime(2024, 6, 29, 0, 0, tzinfo=timezone.utc)
        assert cutoff == int(expected.timestamp() * 1000)


# ============================================================================
# Eligible stake
# ============================================================================

class TestEligibleStake:
    """Tests for the eligibility walk."""

    def test_recent_increase_excluded(self):
        """Only stake added after the cutoff is left out."""
        t0 = NOW_MS - 20 * DAY_MS
        entries = _entries((1000.0, t0), (500.0, t0 + 10 * DAY_MS))
        cutoff = NOW_MS - 6 * DAY_MS
        assert eligible_stake(entries, cutoff) == 1500.0

        entries = _entries((1000.0, t0), (500.0, NOW_MS - 2 * DAY_MS))
        assert eligible_stake(entries, cutoff) == 1000.0

    def test_cutoff_between_events(self):
        """Stake added after the cutoff earns nothing yet."""
        t0 = NOW_MS - 20 * DAY_MS
        entries = _entries((1000.0, t0), (500.0, t0 + 10 * DAY_MS))
        cutoff = t0 + 8 * DAY_MS
        assert eligible_stake(entries, cutoff) == 1000.0

    def test_all_recent_is_zero(self):
        entries = _entries((1000.0, NOW_MS - DAY_MS))
        assert eligible_stake(entries, NOW_MS - 6 * DAY_MS) == 0.0

    def test_withdrawal_after_cutoff_clamps(self):
        """Stake removed after the cutoff stops being eligible."""
        entries = _entries((1000.0, NOW_MS - 20 * DAY_MS), (-600.0, NOW_MS - DAY_MS))
        assert eligible_stake(entries, NOW_MS - 6 * DAY_MS) == 400.0

    def test_fully_withdrawn_is_zero(self):
        entries = _entries((1000.0, NOW_MS - 20 * DAY_MS), (-1000.0, NOW_MS - DAY_MS))
        assert eligible_stake(entries, NOW_MS - 6 * DAY_MS) == 0.0

    def test_event_at_cutoff_counts(self):
        """The boundary is inclusive."""
        cutoff = NOW_MS - 6 * DAY_MS
        entries = _entries((250.0, cutoff))
        assert eligible_stake(entries, cutoff) == 250.0

    def test_negative_running_balance_floored(self, caplog):
        """Over-withdrawal is floored to zero with a warning."""
        entries = _entries((100.0, NOW_MS - 20 * DAY_MS), (-300.0, NOW_MS - 10 * DAY_MS))
        with caplog.at_level(logging.WARNING, logger="hiverewarder.protocol.eligibility"):
            assert eligible_stake(entries, NOW_MS, "mallory") == 0.0
        assert "mallory" in caplog.text

    def test_never_exceeds_current_stake(self):
        """eligible <= current for a spread of histories and cutoffs."""
        histories = [
            _entries((1000.0, NOW_MS - 30 * DAY_MS), (-400.0, NOW_MS - 3 * DAY_MS)),
            _entries((500.0, NOW_MS - 9 * DAY_MS), (700.0, NOW_MS - 8 * DAY_MS),
                     (-1100.0, NOW_MS - 7 * DAY_MS), (50.0, NOW_MS - DAY_MS)),
            _entries((10.0, NOW_MS - 2 * DAY_MS)),
            _entries((300.0, NOW_MS - 40 * DAY_MS), (-500.0, NOW_MS - 20 * DAY_MS)),
        ]
        for entries in histories:
            current = max(0.0, sum(e.vests for e in entries))
            for days_back in range(0, 45, 3):
                value = eligible_stake(entries, NOW_MS - days_back * DAY_MS)
                assert 0.0 <= value <= current + 1e-9


class TestComputeEligibleStakes:
    """Tests for the per-pool eligibility map."""

    def test_converts_to_hp_and_drops_zero(self):
        props = GlobalProperties(total_vesting_fund_hive=500.0, total_vesting_shares=1000.0)
        history = {
            "alice": _entries((2000.0, NOW_MS - 20 * DAY_MS)),
            "carol": _entries((4000.0, NOW_MS - DAY_MS)),
        }
        result = compute_eligible_stakes(history, NOW_MS - 6 * DAY_MS, props)
        assert result == {"alice": pytest.approx(1000.0)}
