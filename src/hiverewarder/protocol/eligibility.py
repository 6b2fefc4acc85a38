"""
hiverewarder/protocol/eligibility.py

Time-weighted eligibility of delegated stake.

Only stake held since before the cutoff earns rewards; anything delegated
inside the cutoff window earns nothing yet. This blocks same-day
delegate/claim/undelegate cycles.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from ..config import CIVIL_TIMEZONE, ELIGIBILITY_DAYS
from ..hive.client import GlobalProperties
from .delegation import DelegationEntry, DelegationHistory

logger = logging.getLogger("hiverewarder.protocol.eligibility")


def eligibility_cutoff(
    now: Optional[datetime] = None,
    tz_name: str = CIVIL_TIMEZONE,
    days: int = ELIGIBILITY_DAYS,
) -> int:
    """
    Eligibility cutoff: local midnight of today minus ``days``.

    Args:
        now: Current time (aware; defaults to now)
        tz_name: Civil timezone the cadence is anchored to
        days: Minimum holding period in days

    Returns:
        Cutoff as epoch milliseconds
    """
    tz = ZoneInfo(tz_name)
    if now is None:
        now = datetime.now(timezone.utc)
    local_midnight = now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
    cutoff = local_midnight - timedelta(days=days)
    return int(cutoff.timestamp() * 1000)


def eligible_stake(
    entries: List[DelegationEntry],
    cutoff_ms: int,
    delegator: str = "",
) -> float:
    """
    Portion of current stake held continuously since before the cutoff.

    Walks the deltas in time order. Every event at or before the cutoff
    snapshots the running balance; the snapshot is then clamped to the final
    balance so stake withdrawn after the cutoff does not stay eligible.

    Args:
        entries: Delegator's history
        cutoff_ms: Cutoff as epoch milliseconds
        delegator: Name used in warnings

    Returns:
        Eligible VESTS (>= 0)
    """
    running = 0.0
    eligible = 0.0
    went_negative = False

    for entry in sorted(entries, key=lambda e: e.timestamp):
        running += entry.vests
        if running < 0:
            went_negative = True
        if entry.timestamp <= cutoff_ms:
            eligible = max(0.0, running)

    if went_negative:
        logger.warning(
            f"Negative running delegation for {delegator or '<unknown>'} "
            f"(final {running:.6f} VESTS); flooring to zero"
        )

    current = max(0.0, running)
    return min(eligible, current)


def compute_eligible_stakes(
    history: DelegationHistory,
    cutoff_ms: int,
    props: GlobalProperties,
) -> Dict[str, float]:
    """
    Eligible stake of every delegator in HP.

    Returns:
        {delegator: eligible_hp}, only delegators with a positive amount
    """
    eligible = {}
    for delegator, entries in history.items():
        vests = eligible_stake(entries, cutoff_ms, delegator)
        if vests > 0:
            eligible[delegator] = props.vests_to_hp(vests)
    return eligible
