"""
hiverewarder - Delegation reward accumulator for a Hive curation pool.

Tracks delegations to the pool account, turns each day's claimed curation
rewards into per-delegator balances and pays balances out to
@steembasicincome in 1 HIVE chunks.

Usage:
    from hiverewarder import RewardCycle, Settings

    cycle = RewardCycle(Settings.from_env())
    result = cycle.run()

CLI Usage:
    hive-rewarder run
    hive-rewarder --dry-run accumulate
"""

from .config import Settings
from .cycle import CycleResult, RewardCycle
from .errors import (
    CheckpointError,
    DocumentValidationError,
    HiveClientError,
    HiveRewarderError,
)

__version__ = "1.0.0"
__all__ = [
    "CheckpointError",
    "CycleResult",
    "DocumentValidationError",
    "HiveClientError",
    "HiveRewarderError",
    "RewardCycle",
    "Settings",
]
