"""
hiverewarder/blockchain - Payout execution on the Hive chain.

Architecture:
    SBIPayoutExecutor
    ├── LiveSender   (signed transfers with node failover)
    └── DryRunSender (simulated, no external side effect)
"""

from .sbi import (
    DryRunSender,
    LiveSender,
    PayoutLogEntry,
    PayoutReport,
    SBIPayoutExecutor,
    build_exclusion_set,
    payout_log_from_list,
    sbi_memo,
)

__all__ = [
    "DryRunSender",
    "LiveSender",
    "PayoutLogEntry",
    "PayoutReport",
    "SBIPayoutExecutor",
    "build_exclusion_set",
    "payout_log_from_list",
    "sbi_memo",
]
