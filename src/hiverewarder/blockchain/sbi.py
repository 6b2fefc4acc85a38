"""
hiverewarder/blockchain/sbi.py

Chunked payout of accumulated balances to @steembasicincome (SBI).

For every delegator whose balance holds at least one payout unit, the
executor sends one unit at a time with the memo ``@<pool>:@<delegator>``,
which enrolls the delegator as the SBI beneficiary. A chunk is booked
(balance decremented, total_sent incremented, log entry appended) only
after the transfer is confirmed, and the books are persisted before the
next chunk is attempted.

Per-delegator state machine:
    ATTEMPT -> CONFIRMED -> ATTEMPT ...   while balance >= unit
    ATTEMPT -> RETRY (next node) ...      up to the retry bound
    RETRY   -> ABANDONED                  balance kept for the next cycle

Usage:
    sender = LiveSender(client, pool_account, active_key, nodes)
    executor = SBIPayoutExecutor(sender, persist=save_books)
    report = executor.process(balances, payout_log, excluded, today)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Set

from ..config import (
    BALANCE_PRECISION,
    PAYOUT_RETRIES,
    PAYOUT_RETRY_DELAY,
    SBI_ACCOUNT,
    SBI_ASSET,
    SBI_CHUNK,
)
from ..errors import DocumentValidationError, HiveClientError
from ..hive.client import HiveClient, format_amount
from ..hive.failover import with_failover
from ..protocol.accumulator import Balances
from ..protocol.rewards import round_half_up

logger = logging.getLogger("hiverewarder.blockchain.sbi")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class PayoutLogEntry:
    """One confirmed SBI transfer (sbi_log.json)."""
    date: str
    delegator: str
    sent: float

    def to_dict(self) -> dict:
        return {"date": self.date, "delegator": self.delegator, "sent": self.sent}

    @classmethod
    def from_dict(cls, data: Any) -> "PayoutLogEntry":
        """
        Raises:
            DocumentValidationError: If a field is missing or malformed
        """
        try:
            return cls(
                date=str(data["date"]),
                delegator=str(data["delegator"]),
                sent=float(data["sent"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DocumentValidationError(f"Invalid payout log entry {data!r}: {e}")


def payout_log_from_list(data: Any) -> List[PayoutLogEntry]:
    """
    Parse sbi_log.json.

    Raises:
        DocumentValidationError: If the document is not a list of entries
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise DocumentValidationError("sbi_log.json must be a list")
    return [PayoutLogEntry.from_dict(item) for item in data]


@dataclass
class PayoutReport:
    """Outcome of one payout pass."""
    chunks_sent: int = 0
    total_sent: float = 0.0
    abandoned: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)


def sbi_memo(sponsor: str, beneficiary: str) -> str:
    """Memo binding the sending pool to the SBI beneficiary."""
    return f"@{sponsor}:@{beneficiary}"


def build_exclusion_set(config_doc: Any, extra: Iterable[str] = ()) -> Set[str]:
    """
    Merge config.json ``excluded_from_sbi`` with a runtime list.

    Args:
        config_doc: Parsed config.json (anything else counts as empty)
        extra: Additional names (e.g. from SBI_EXCLUDE)

    Returns:
        Lower-cased delegator names
    """
    from_file: List[str] = []
    if isinstance(config_doc, dict) and isinstance(config_doc.get("excluded_from_sbi"), list):
        from_file = [str(name) for name in config_doc["excluded_from_sbi"]]
    names = [n.strip() for n in list(from_file) + list(extra)]
    return {n.lower() for n in names if n}


# ============================================================================
# SENDERS
# ============================================================================

class LiveSender:
    """
    Broadcasts real transfers with node failover.

    Each chunk is tried up to ``retries`` times; after a failure the next
    node in ``nodes`` is used, with a fixed ``delay`` between attempts.
    """

    def __init__(
        self,
        client: HiveClient,
        sponsor: str,
        active_key: str,
        nodes: Optional[List[str]] = None,
        retries: int = PAYOUT_RETRIES,
        delay: float = PAYOUT_RETRY_DELAY,
        recipient: str = SBI_ACCOUNT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.sponsor = sponsor
        self.active_key = active_key
        self.nodes = list(nodes) if nodes else list(client.nodes)
        self.retries = retries
        self.delay = delay
        self.recipient = recipient
        self.sleep = sleep
        self.node_index = 0

    def send(self, beneficiary: str, amount: float) -> bool:
        """
        Send one chunk for ``beneficiary``.

        Returns:
            True if the transfer was confirmed by a node
        """
        if not self.active_key:
            logger.warning("Missing HIVE_KEY environment variable. Cannot send SBI.")
            return False

        memo = sbi_memo(self.sponsor, beneficiary)
        try:
            txid, idx = with_failover(
                self.nodes,
                lambda node: self.client.broadcast_transfer(
                    self.sponsor, self.recipient, amount, memo, self.active_key,
                    node=node, asset=SBI_ASSET,
                ),
                attempts=self.retries,
                delay=self.delay,
                start=self.node_index,
                sleep=self.sleep,
            )
        except HiveClientError as e:
            logger.error(f"All {self.retries} attempts failed for @{beneficiary}: {e}")
            return False

        self.node_index = idx
        logger.info(
            f"Sent {format_amount(amount, SBI_ASSET)} to @{self.recipient} for @{beneficiary}"
        )
        logger.info(f"Transaction ID: {txid}")
        return True


class DryRunSender:
    """Simulated sender that always succeeds and touches nothing external."""

    def __init__(self, sponsor: str, recipient: str = SBI_ACCOUNT):
        self.sponsor = sponsor
        self.recipient = recipient
        self.sent: List[str] = []

    def send(self, beneficiary: str, amount: float) -> bool:
        logger.info(
            f"DRY-RUN: Would send {format_amount(amount, SBI_ASSET)} "
            f"from @{self.sponsor} to @{self.recipient}"
        )
        logger.info(f"DRY-RUN: Memo: {sbi_memo(self.sponsor, beneficiary)}")
        self.sent.append(beneficiary)
        return True


# ============================================================================
# EXECUTOR
# ============================================================================

class SBIPayoutExecutor:
    """
    Drains balances of at least one payout unit, one unit per transfer.

    ``persist(balances, payout_log)`` is called after every confirmed chunk
    so a crash never loses a booked transfer or books one twice.
    """

    def __init__(
        self,
        sender: Any,
        persist: Optional[Callable[[Balances, List[PayoutLogEntry]], None]] = None,
        unit: float = SBI_CHUNK,
    ):
        self.sender = sender
        self.persist = persist
        self.unit = unit

    def process(
        self,
        balances: Balances,
        payout_log: List[PayoutLogEntry],
        excluded: Set[str],
        today: str,
    ) -> PayoutReport:
        """
        Run one payout pass over all delegators.

        Args:
            balances: Balances, updated in place
            payout_log: Payout log, appended in place
            excluded: Lower-cased delegators never paid out
            today: Date stamp for log entries

        Returns:
            PayoutReport
        """
        report = PayoutReport()

        for name, entry in balances.items():
            if name.lower() in excluded:
                if entry.balance >= self.unit:
                    logger.info(f"Excluded from SBI: @{name} (balance: {entry.balance})")
                report.excluded.append(name)
                continue

            while entry.balance >= self.unit:
                if not self.sender.send(name, self.unit):
                    logger.warning(f"Skipping further SBI sends for @{name} due to failure.")
                    report.abandoned.append(name)
                    break

                entry.balance = max(0.0, round_half_up(entry.balance - self.unit, BALANCE_PRECISION))
                entry.total_sent = round_half_up(entry.total_sent + self.unit, BALANCE_PRECISION)
                entry.last_updated = today
                payout_log.append(PayoutLogEntry(date=today, delegator=name, sent=self.unit))

                report.chunks_sent += 1
                report.total_sent = round_half_up(report.total_sent + self.unit, BALANCE_PRECISION)

                if self.persist is not None:
                    self.persist(balances, payout_log)

                logger.info(
                    f"@{name}: sent {self.unit} HIVE to SBI | balance: {entry.balance} "
                    f"| total_sent: {entry.total_sent}"
                )

        logger.info("SBI Payout Summary:")
        logger.info(f"   Total chunks sent: {report.total_sent} HIVE")
        logger.info(f"   Transactions logged: {report.chunks_sent}")
        return report
