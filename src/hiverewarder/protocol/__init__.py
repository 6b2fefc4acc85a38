"""
hiverewarder/protocol - Delegation accounting and reward distribution.
"""

from .delegation import (
    DelegationEntry,
    DelegationEvent,
    build_delegation_history,
    extract_delegation_events,
    get_active_delegators,
    history_from_dict,
    history_to_dict,
    merge_delegation_events,
    verify_history,
)
from .eligibility import compute_eligible_stakes, eligibility_cutoff, eligible_stake
from .earnings import curation_window, windowed_earnings
from .rewards import (
    DEFAULT_POLICY,
    STEP_POLICY,
    DelegatorReward,
    MultiplierPolicy,
    PayoutSummary,
    allocate_rewards,
    build_payout_summary,
)
from .accumulator import BalanceEntry, Balances, accrue, accumulate_summary, balance_totals

__all__ = [
    "DEFAULT_POLICY",
    "STEP_POLICY",
    "BalanceEntry",
    "Balances",
    "DelegationEntry",
    "DelegationEvent",
    "DelegatorReward",
    "MultiplierPolicy",
    "PayoutSummary",
    "accrue",
    "accumulate_summary",
    "allocate_rewards",
    "balance_totals",
    "build_delegation_history",
    "build_payout_summary",
    "compute_eligible_stakes",
    "curation_window",
    "eligibility_cutoff",
    "eligible_stake",
    "extract_delegation_events",
    "get_active_delegators",
    "history_from_dict",
    "history_to_dict",
    "merge_delegation_events",
    "verify_history",
    "windowed_earnings",
]
