"""
hiverewarder/protocol/rewards.py

Reward allocation and the pool-size multiplier.

Each cycle's distributable earnings (claimed curation minus the operator's
retention) are split across delegators in proportion to eligible stake. The
accumulator later scales every base reward by a multiplier that depends on
the pool's total eligible stake: small pools pay more per HP, large pools
taper to a floor.

Usage:
    from hiverewarder.protocol.rewards import allocate_rewards, DEFAULT_POLICY

    rewards = allocate_rewards({"alice": 1000.0, "bob": 3000.0}, 4.0)
    multiplier = DEFAULT_POLICY.multiplier(4000.0)
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from ..config import REWARD_PRECISION, RETENTION_FRACTION
from ..errors import DocumentValidationError

logger = logging.getLogger("hiverewarder.protocol.rewards")


# ============================================================================
# MULTIPLIER CONSTANTS
# ============================================================================
#
# | Total eligible HP | Multiplier              |
# |-------------------|-------------------------|
# | < 10,000          | 3.0                     |
# | 10,000 - 20,000   | 3.0 -> 2.0 (linear)     |
# | 20,000 - 30,000   | 2.0 -> 1.0 (linear)     |
# | 30,000 - 40,000   | 1.0 -> 0.5 (linear)     |
# | >= 40,000         | 0.5                     |

LINEAR_BREAKPOINTS: List[Tuple[float, float]] = [
    (10000.0, 3.0),
    (20000.0, 2.0),
    (30000.0, 1.0),
    (40000.0, 0.5),
]
MULTIPLIER_FLOOR = 0.5
MULTIPLIER_PRECISION = 3

# Two-tier step policy (x3 below 10,000 HP, x1 above)
STEP_BREAKPOINTS: List[Tuple[float, float]] = [
    (0.0, 3.0),
    (10000.0, 1.0),
]

POLICY_LINEAR = "linear"
POLICY_STEP = "step"


def round_half_up(value: float, places: int) -> float:
    """Round half away from zero to ``places`` decimals."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ============================================================================
# MULTIPLIER POLICY
# ============================================================================

@dataclass(frozen=True)
class MultiplierPolicy:
    """
    Pool-size multiplier described as data.

    ``linear`` interpolates between breakpoints and holds the end values
    outside them. ``step`` uses the multiplier of the highest breakpoint at
    or below the stake. The result never drops below ``floor``.
    """
    kind: str = POLICY_LINEAR
    breakpoints: Tuple[Tuple[float, float], ...] = tuple(LINEAR_BREAKPOINTS)
    floor: float = MULTIPLIER_FLOOR

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            DocumentValidationError: If the policy is not a non-increasing function
        """
        if self.kind not in (POLICY_LINEAR, POLICY_STEP):
            raise DocumentValidationError(f"Unknown multiplier policy kind: {self.kind}")
        if not self.breakpoints:
            raise DocumentValidationError("Multiplier policy needs at least one breakpoint")
        if self.floor < 0:
            raise DocumentValidationError("Multiplier floor must be >= 0")
        for (s1, m1), (s2, m2) in zip(self.breakpoints, self.breakpoints[1:]):
            if s2 <= s1:
                raise DocumentValidationError("Breakpoint stakes must be strictly increasing")
            if m2 > m1:
                raise DocumentValidationError("Breakpoint multipliers must be non-increasing")

    def multiplier(self, total_stake: float) -> float:
        """
        Multiplier for a pool of ``total_stake`` HP.

        Args:
            total_stake: Total eligible stake (negative or invalid values count as 0)

        Returns:
            Multiplier rounded to three decimals, at least ``floor``
        """
        try:
            stake = max(0.0, float(total_stake))
        except (TypeError, ValueError):
            stake = 0.0

        points = self.breakpoints
        if self.kind == POLICY_STEP:
            value = points[0][1]
            for bound, mult in points:
                if stake >= bound:
                    value = mult
        else:
            if stake <= points[0][0]:
                value = points[0][1]
            elif stake >= points[-1][0]:
                value = points[-1][1]
            else:
                value = points[-1][1]
                for (s1, m1), (s2, m2) in zip(points, points[1:]):
                    if s1 <= stake < s2:
                        value = m1 + (m2 - m1) * (stake - s1) / (s2 - s1)
                        break

        return round_half_up(max(self.floor, value), MULTIPLIER_PRECISION)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "breakpoints": [[s, m] for s, m in self.breakpoints],
            "floor": self.floor,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultiplierPolicy":
        """
        Create from a config.json ``multiplier_policy`` object.

        Raises:
            DocumentValidationError: If the object is malformed
        """
        if not isinstance(data, dict):
            raise DocumentValidationError("multiplier_policy must be an object")
        try:
            points = tuple(
                (float(stake), float(mult)) for stake, mult in data["breakpoints"]
            )
            return cls(
                kind=str(data.get("kind", POLICY_LINEAR)),
                breakpoints=points,
                floor=float(data.get("floor", MULTIPLIER_FLOOR)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DocumentValidationError(f"Invalid multiplier_policy: {e}")


DEFAULT_POLICY = MultiplierPolicy()
STEP_POLICY = MultiplierPolicy(kind=POLICY_STEP, breakpoints=tuple(STEP_BREAKPOINTS), floor=1.0)


# ============================================================================
# ALLOCATION
# ============================================================================

def allocate_rewards(
    stakes: Dict[str, float],
    distributable: float,
    precision: int = REWARD_PRECISION,
) -> Dict[str, float]:
    """
    Split ``distributable`` proportionally to stake.

    Each reward is rounded once, half away from zero. The rounded sum may
    drift from ``distributable`` by up to one unit of precision per
    delegator; the drift is not redistributed.

    Args:
        stakes: {delegator: eligible stake}
        distributable: Amount to split
        precision: Decimal places of each reward

    Returns:
        {delegator: reward}, empty when total stake is zero
    """
    total = sum(s for s in stakes.values() if s > 0)
    if total <= 0:
        return {}
    return {
        name: round_half_up(distributable * stake / total, precision)
        for name, stake in stakes.items()
        if stake > 0
    }


# ============================================================================
# PAYOUT SUMMARY
# ============================================================================

@dataclass
class DelegatorReward:
    """A delegator's line in the payout summary."""
    name: str
    hp: float
    base_reward: float

    def to_dict(self) -> dict:
        return {"name": self.name, "hp": self.hp, "base_reward": self.base_reward}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class PayoutSummary:
    """Per-cycle allocation handed from the sync stage to the accumulator."""
    date: str
    total_delegation_hp: float
    total_curation_hive: float
    distributable_hive: float
    delegators: List[DelegatorReward] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "total_delegation_hp": self.total_delegation_hp,
            "total_curation_hive": self.total_curation_hive,
            "distributable_hive": self.distributable_hive,
            "delegators": [d.to_dict() for d in self.delegators],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PayoutSummary":
        """
        Validate and parse a payout_summary.json document.

        Raises:
            DocumentValidationError: On a missing field, wrong type or empty delegator list
        """
        if not isinstance(data, dict):
            raise DocumentValidationError("payout_summary.json is missing or invalid")
        if not data.get("date"):
            raise DocumentValidationError('payout_summary.json is missing "date" field')
        if not _is_number(data.get("total_delegation_hp")):
            raise DocumentValidationError(
                'payout_summary.json is missing or invalid "total_delegation_hp" field'
            )
        delegators = data.get("delegators")
        if not isinstance(delegators, list) or not delegators:
            raise DocumentValidationError("payout_summary.json has no delegators")

        rows = []
        for d in delegators:
            if not isinstance(d, dict) or not d.get("name") or not _is_number(d.get("base_reward")):
                raise DocumentValidationError(f"Invalid delegator entry: {d!r}")
            hp = d.get("hp", 0.0)
            rows.append(DelegatorReward(
                name=str(d["name"]),
                hp=float(hp) if _is_number(hp) else 0.0,
                base_reward=float(d["base_reward"]),
            ))

        total_curation = data.get("total_curation_hive", 0.0)
        distributable = data.get("distributable_hive", 0.0)
        return cls(
            date=str(data["date"]),
            total_delegation_hp=float(data["total_delegation_hp"]),
            total_curation_hive=float(total_curation) if _is_number(total_curation) else 0.0,
            distributable_hive=float(distributable) if _is_number(distributable) else 0.0,
            delegators=rows,
        )


def build_payout_summary(
    date: str,
    eligible: Dict[str, float],
    total_earnings: float,
    retention: float = RETENTION_FRACTION,
    precision: int = REWARD_PRECISION,
) -> Optional[PayoutSummary]:
    """
    Allocate one cycle's earnings across eligible delegators.

    Args:
        date: Cycle date (YYYY-MM-DD)
        eligible: {delegator: eligible HP}
        total_earnings: Claimed earnings in the window (HP)
        retention: Fraction kept by the operator
        precision: Decimals of base rewards

    Returns:
        PayoutSummary, or None when there is no eligible stake
    """
    total_hp = sum(eligible.values())
    if total_hp <= 0:
        return None

    distributable = total_earnings * (1.0 - retention)
    rewards = allocate_rewards(eligible, distributable, precision)

    rows = []
    for name, hp in sorted(eligible.items(), key=lambda item: item[1], reverse=True):
        reward = rewards.get(name, 0.0)
        rows.append(DelegatorReward(name=name, hp=round_half_up(hp, 3), base_reward=reward))
        logger.info(
            f"  ({hp / total_hp * 100:.2f}%) @{name}: {hp:.3f} HP -> reward: {reward} HIVE"
        )

    return PayoutSummary(
        date=date,
        total_delegation_hp=round_half_up(total_hp, 3),
        total_curation_hive=round_half_up(total_earnings, 6),
        distributable_hive=round_half_up(distributable, 6),
        delegators=rows,
    )
