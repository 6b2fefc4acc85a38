"""
hiverewarder/protocol/earnings.py

Daily earnings window.

Sums curation rewards the pool actually claimed (``claim_reward_balance``)
between 08:00 yesterday and 08:00 today in the pool's civil timezone.
Accrued-but-unclaimed ``curation_reward`` operations are ignored so nothing
is counted twice.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from ..config import CIVIL_TIMEZONE, CURATION_WINDOW_HOUR
from ..hive.client import AccountOperation, GlobalProperties, parse_asset

logger = logging.getLogger("hiverewarder.protocol.earnings")


CLAIM_OP = "claim_reward_balance"


def curation_window(
    now: Optional[datetime] = None,
    tz_name: str = CIVIL_TIMEZONE,
    hour: int = CURATION_WINDOW_HOUR,
) -> Tuple[int, int]:
    """
    Compute the daily claim window.

    The window ends at ``hour``:00 local time today and starts 24 local
    hours earlier.

    Args:
        now: Current time (aware; defaults to now)
        tz_name: Civil timezone
        hour: Local hour the window is anchored to

    Returns:
        (start_ms, end_ms) as epoch milliseconds
    """
    tz = ZoneInfo(tz_name)
    if now is None:
        now = datetime.now(timezone.utc)
    end = now.astimezone(tz).replace(hour=hour, minute=0, second=0, microsecond=0)
    start = end - timedelta(days=1)

    start_ms = int(start.timestamp() * 1000)
    end_ms = int(end.timestamp() * 1000)
    logger.info(f"Curation window ({tz_name}): {start:%Y-%m-%d %H:%M} -> {end:%Y-%m-%d %H:%M}")
    logger.info(
        "Curation window (UTC): "
        f"{start.astimezone(timezone.utc).isoformat()} -> {end.astimezone(timezone.utc).isoformat()}"
    )
    return start_ms, end_ms


def windowed_earnings(
    operations: Iterable[AccountOperation],
    start_ms: int,
    end_ms: int,
    props: GlobalProperties,
) -> float:
    """
    Total claimed curation inside ``[start_ms, end_ms)``.

    Args:
        operations: Account history operations
        start_ms: Window start (inclusive)
        end_ms: Window end (exclusive)
        props: Global properties for the VESTS to HP rate

    Returns:
        Claimed earnings in HP
    """
    total_vests = 0.0
    claims = 0
    for op in operations:
        if op.op_type != CLAIM_OP:
            continue
        if not (start_ms <= op.timestamp_ms < end_ms):
            continue
        claimed = parse_asset(op.data.get("reward_vests", 0))
        if claimed > 0:
            total_vests += claimed
            claims += 1
            logger.debug(f"Claimed: {claimed:.6f} VESTS at index {op.index}")

    logger.info(f"Total claims in window: {claims}")
    return props.vests_to_hp(total_vests)
