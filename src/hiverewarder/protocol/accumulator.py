"""
hiverewarder/protocol/accumulator.py

Per-delegator reward balances.

Every cycle's base reward is scaled by the pool multiplier and added to the
delegator's pending balance. Balances are drained only by the payout
executor, one whole payout unit at a time.

Persisted shape (delegator_balances.json):
    {
        "alice": {"balance": 0.4, "total_sent": 12.0, "last_updated": "2024-01-02"},
        "_meta": {...}
    }
The ``_meta`` key is reserved and never treated as a delegator.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Tuple

from ..config import BALANCE_PRECISION, META_KEY
from ..errors import DocumentValidationError
from .rewards import MultiplierPolicy, PayoutSummary, round_half_up

logger = logging.getLogger("hiverewarder.protocol.accumulator")


@dataclass
class BalanceEntry:
    """Pending and lifetime-disbursed reward of one delegator."""
    balance: float = 0.0
    total_sent: float = 0.0
    last_updated: str = ""

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "total_sent": self.total_sent,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "BalanceEntry":
        """
        Raises:
            DocumentValidationError: If the entry is not an object with numeric amounts
        """
        if not isinstance(data, dict):
            raise DocumentValidationError(f"Balance entry must be an object: {data!r}")
        try:
            balance = float(data.get("balance", 0.0))
            total_sent = float(data.get("total_sent", 0.0) or 0.0)
        except (TypeError, ValueError) as e:
            raise DocumentValidationError(f"Invalid balance entry {data!r}: {e}")
        if balance < 0:
            raise DocumentValidationError(f"Negative balance in entry {data!r}")
        return cls(
            balance=balance,
            total_sent=total_sent,
            last_updated=str(data.get("last_updated", "")),
        )


class Balances:
    """
    In-memory view of delegator_balances.json.

    Iteration skips the reserved ``_meta`` key, which is kept as-is and
    written back unchanged. Entries that fail validation are neither
    accrued nor paid; their raw value is written back unchanged too.
    """

    def __init__(
        self,
        entries: Dict[str, BalanceEntry] = None,
        meta: Any = None,
        rejected: Dict[str, Any] = None,
    ):
        self.entries: Dict[str, BalanceEntry] = entries or {}
        self.meta = meta
        self.rejected: Dict[str, Any] = rejected or {}

    def __contains__(self, name: str) -> bool:
        return name in self.entries

    def __getitem__(self, name: str) -> BalanceEntry:
        return self.entries[name]

    def __len__(self) -> int:
        return len(self.entries)

    def items(self) -> Iterator[Tuple[str, BalanceEntry]]:
        return iter(list(self.entries.items()))

    def get_or_create(self, name: str, today: str) -> BalanceEntry:
        """Fetch a delegator's entry, creating a zeroed one on first sight."""
        if name not in self.entries:
            self.entries[name] = BalanceEntry(balance=0.0, total_sent=0.0, last_updated=today)
        return self.entries[name]

    def to_dict(self) -> dict:
        data = {name: entry.to_dict() for name, entry in self.entries.items()}
        data.update(self.rejected)
        if self.meta is not None:
            data[META_KEY] = self.meta
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Balances":
        """
        Raises:
            DocumentValidationError: If the document is not an object
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise DocumentValidationError("delegator_balances.json must be an object")
        entries = {}
        rejected = {}
        for name, value in data.items():
            if name == META_KEY:
                continue
            try:
                entries[name] = BalanceEntry.from_dict(value)
            except DocumentValidationError as e:
                logger.error(f"Rejected balance entry for {name}: {e}")
                rejected[name] = value
        return cls(entries=entries, meta=data.get(META_KEY), rejected=rejected)


def accrue(
    balances: Balances,
    name: str,
    base_reward: float,
    multiplier: float,
    today: str,
) -> float:
    """
    Add one cycle's scaled reward to a delegator's balance.

    Args:
        balances: Balances to update in place
        name: Delegator
        base_reward: Unscaled reward from the payout summary
        multiplier: Pool multiplier
        today: Date stamp (YYYY-MM-DD)

    Returns:
        The scaled reward that was added (0.0 for a rejected entry)
    """
    if name in balances.rejected:
        logger.error(f"  @{name}: stored balance entry is invalid, reward not accrued")
        return 0.0
    adjusted = round_half_up(base_reward * multiplier, BALANCE_PRECISION)
    entry = balances.get_or_create(name, today)
    previous = entry.balance
    entry.balance = max(0.0, round_half_up(previous + adjusted, BALANCE_PRECISION))
    entry.last_updated = today
    logger.info(
        f"  @{name}: base={base_reward} x {multiplier} = +{adjusted} HIVE "
        f"-> balance: {entry.balance} HIVE"
    )
    return adjusted


def accumulate_summary(
    summary: PayoutSummary,
    balances: Balances,
    policy: MultiplierPolicy,
    today: str,
) -> float:
    """
    Apply a payout summary to the balances.

    Args:
        summary: Validated payout summary
        balances: Balances to update in place
        policy: Multiplier policy
        today: Date stamp

    Returns:
        The multiplier that was applied
    """
    multiplier = policy.multiplier(summary.total_delegation_hp)
    logger.info(f"Total Delegation: {summary.total_delegation_hp} HP")
    logger.info(f"Global Multiplier: x{multiplier}")

    for row in summary.delegators:
        accrue(balances, row.name, row.base_reward, multiplier, today)
    return multiplier


def balance_totals(balances: Balances) -> Tuple[float, float]:
    """
    Returns:
        (outstanding balance, lifetime total sent) across all delegators
    """
    outstanding = sum(entry.balance for _, entry in balances.items())
    sent = sum(entry.total_sent for _, entry in balances.items())
    return (
        round_half_up(outstanding, BALANCE_PRECISION),
        round_half_up(sent, BALANCE_PRECISION),
    )
