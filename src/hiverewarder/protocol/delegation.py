"""
hiverewarder/protocol/delegation.py

Delegation ledger for the pool account.

Builds and incrementally extends a per-delegator history of stake deltas
from ``delegate_vesting_shares`` operations. Hive reports the delegator's new
total on every operation; the ledger stores the change against the previous
total so the history can be replayed.

Persisted shape (delegation_history.json):
    {
        "alice": [
            {"vests": 1000.0, "totalVests": 1000.0, "hp": 0.55,
             "timestamp": 1704067200000, "date": "2024-01-01", "index": 42},
            ...
        ],
        ...
    }
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..config import DELEGATION_EPSILON
from ..errors import DocumentValidationError
from ..hive.client import AccountOperation, GlobalProperties, parse_asset

logger = logging.getLogger("hiverewarder.protocol.delegation")


DELEGATE_OP = "delegate_vesting_shares"


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class DelegationEvent:
    """A delegator's new total delegation to the pool, as seen on chain."""
    delegator: str
    total_vests: float
    timestamp_ms: int
    index: int = -1

    @property
    def sort_key(self):
        return (self.timestamp_ms, self.index)


@dataclass
class DelegationEntry:
    """
    One recorded change in a delegator's stake.

    ``vests`` is the delta; ``total_vests`` the total after the change.
    """
    vests: float
    total_vests: float
    hp: float
    timestamp: int
    date: str
    index: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "vests": self.vests,
            "totalVests": self.total_vests,
            "hp": self.hp,
            "timestamp": self.timestamp,
            "date": self.date,
        }
        if self.index is not None:
            data["index"] = self.index
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DelegationEntry":
        """
        Create from the persisted shape.

        Raises:
            DocumentValidationError: If a required field is missing or not numeric
        """
        if not isinstance(data, dict):
            raise DocumentValidationError(f"Delegation entry must be an object: {data!r}")
        try:
            index = data.get("index")
            return cls(
                vests=float(data["vests"]),
                total_vests=float(data["totalVests"]),
                hp=float(data.get("hp", 0.0)),
                timestamp=int(data["timestamp"]),
                date=str(data.get("date") or _date_of(int(data["timestamp"]))),
                index=int(index) if index is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DocumentValidationError(f"Invalid delegation entry {data!r}: {e}")


DelegationHistory = Dict[str, List[DelegationEntry]]


def _date_of(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def history_from_dict(data: Any) -> DelegationHistory:
    """
    Parse a delegation_history.json document.

    Raises:
        DocumentValidationError: If the document is malformed
    """
    if not isinstance(data, dict):
        raise DocumentValidationError("delegation history must be an object")
    history: DelegationHistory = {}
    for delegator, entries in data.items():
        if not isinstance(entries, list):
            raise DocumentValidationError(f"History of {delegator} must be a list")
        history[delegator] = [DelegationEntry.from_dict(e) for e in entries]
    return history


def history_to_dict(history: DelegationHistory) -> Dict[str, List[dict]]:
    return {name: [e.to_dict() for e in entries] for name, entries in history.items()}


# ============================================================================
# EVENT EXTRACTION
# ============================================================================

def extract_delegation_events(
    operations: Iterable[AccountOperation],
    pool_account: str,
) -> List[DelegationEvent]:
    """
    Pick delegations to ``pool_account`` out of raw account history.

    Args:
        operations: Account history operations
        pool_account: The pool's account name

    Returns:
        Delegation events sorted by (timestamp, index)
    """
    events = []
    for op in operations:
        if op.op_type != DELEGATE_OP:
            continue
        if op.data.get("delegatee") != pool_account:
            continue
        events.append(DelegationEvent(
            delegator=op.data["delegator"],
            total_vests=parse_asset(op.data["vesting_shares"]),
            timestamp_ms=op.timestamp_ms,
            index=op.index,
        ))
    events.sort(key=lambda e: e.sort_key)
    return events


# ============================================================================
# BUILD / MERGE
# ============================================================================

def _is_stale(event: DelegationEvent, last: DelegationEntry) -> bool:
    """An event that is not newer than the last recorded entry is a redelivery."""
    if last.index is None or event.index < 0:
        return event.timestamp_ms < last.timestamp
    return (event.timestamp_ms, event.index) <= (last.timestamp, last.index)


def merge_delegation_events(
    history: DelegationHistory,
    events: Iterable[DelegationEvent],
    props: GlobalProperties,
    epsilon: float = DELEGATION_EPSILON,
) -> DelegationHistory:
    """
    Merge new delegation events onto an existing history.

    Events are sorted before merging so each delta is computed against the
    right predecessor. Deltas of at most ``epsilon`` VESTS are dropped, as
    are events not newer than the delegator's last entry; both make a
    redelivered event a no-op.

    Args:
        history: Existing history (not modified)
        events: New delegation events, any order
        props: Global properties for the HP snapshot
        epsilon: Smallest delta that is recorded

    Returns:
        Updated history
    """
    merged: DelegationHistory = {name: list(entries) for name, entries in history.items()}
    added = 0

    for event in sorted(events, key=lambda e: e.sort_key):
        entries = merged.setdefault(event.delegator, [])
        if entries and _is_stale(event, entries[-1]):
            logger.debug(f"Skipping already merged event {event.index} for {event.delegator}")
            continue

        previous_total = entries[-1].total_vests if entries else 0.0
        delta = event.total_vests - previous_total
        if abs(delta) <= epsilon:
            continue

        hp = round(props.vests_to_hp(event.total_vests), 3)
        date = _date_of(event.timestamp_ms)
        entries.append(DelegationEntry(
            vests=delta,
            total_vests=event.total_vests,
            hp=hp,
            timestamp=event.timestamp_ms,
            date=date,
            index=event.index if event.index >= 0 else None,
        ))
        added += 1
        logger.info(
            f"{event.delegator}: {'+' if delta > 0 else ''}{delta:.6f} VESTS "
            f"(Total: {event.total_vests:.6f} VESTS, {hp:.3f} HP) on {date}"
        )

    # Delegators whose only events were no-ops
    merged = {name: entries for name, entries in merged.items() if entries}
    logger.info(f"Merged {added} new delegation events")
    return merged


def build_delegation_history(
    events: Iterable[DelegationEvent],
    props: GlobalProperties,
    epsilon: float = DELEGATION_EPSILON,
) -> DelegationHistory:
    """Build a history from scratch (full sync)."""
    return merge_delegation_events({}, events, props, epsilon)


# ============================================================================
# QUERIES
# ============================================================================

def current_vests(entries: List[DelegationEntry]) -> float:
    """Latest recorded total for a delegator."""
    return entries[-1].total_vests if entries else 0.0


def get_active_delegators(history: DelegationHistory) -> Dict[str, float]:
    """
    Delegators with a positive current delegation.

    Returns:
        {delegator: hp} using the HP snapshot of the latest entry
    """
    active = {}
    for delegator, entries in history.items():
        if not entries:
            continue
        latest = entries[-1]
        if latest.total_vests > 0 and latest.hp > 0:
            active[delegator] = latest.hp
    return active


def verify_history(history: DelegationHistory, tolerance: float = 1e-6) -> List[str]:
    """
    Check that replaying each delegator's deltas reproduces the latest total.

    Returns:
        Delegators whose history is inconsistent
    """
    broken = []
    for delegator, entries in history.items():
        running = 0.0
        for entry in entries:
            running += entry.vests
        scale = max(1.0, abs(current_vests(entries)))
        if abs(running - current_vests(entries)) > tolerance * scale:
            broken.append(delegator)
    return broken
