"""
hiverewarder/cycle.py

Daily reward cycle.

Stages, in order:
    1. sync        fetch new account history, merge delegations,
                   compute eligibility and earnings, write payout_summary.json
    2. accumulate  read payout_summary.json, apply the multiplier, persist balances
    3. payout      drain balances in 1 HIVE chunks to SBI
    4. checkpoint  advance the sync cursor

The cursor is advanced last. Any fatal error before that leaves it in place
and the next run repeats the same work: delegation merges are idempotent and
the accrual of a given history range is recorded in the balances ``_meta``
entry so it is never applied twice.
"""

import fcntl
import logging
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from .blockchain.sbi import (
    DryRunSender,
    LiveSender,
    PayoutLogEntry,
    PayoutReport,
    SBIPayoutExecutor,
    build_exclusion_set,
    payout_log_from_list,
)
from .checkpoint import SyncCheckpoint
from .config import (
    BALANCES_FILE,
    CONFIG_FILE,
    DELEGATION_HISTORY_FILE,
    LOCK_FILE,
    PAYOUT_SUMMARY_FILE,
    RETENTION_FRACTION,
    SBI_LOG_FILE,
    SYNC_DB_FILE,
    Settings,
)
from .errors import DocumentValidationError, HiveRewarderError
from .hive.client import HiveClient, fetch_new_operations
from .protocol.accumulator import Balances, accumulate_summary, balance_totals
from .protocol.delegation import (
    DelegationHistory,
    build_delegation_history,
    extract_delegation_events,
    get_active_delegators,
    history_from_dict,
    history_to_dict,
    merge_delegation_events,
    verify_history,
)
from .protocol.earnings import curation_window, windowed_earnings
from .protocol.eligibility import compute_eligible_stakes, eligibility_cutoff
from .protocol.rewards import (
    DEFAULT_POLICY,
    MultiplierPolicy,
    PayoutSummary,
    build_payout_summary,
)
from .storage import JsonStore

logger = logging.getLogger("hiverewarder.cycle")


# Cycle outcomes
STATUS_COMPLETED = "completed"
STATUS_NO_NEW_OPERATIONS = "no_new_operations"
STATUS_NO_ACTIVE = "no_active_delegators"
STATUS_NO_ELIGIBLE = "no_eligible_delegators"
STATUS_NO_EARNINGS = "no_distributable_earnings"
STATUS_ALREADY_ACCRUED = "already_accrued"


@dataclass
class CycleResult:
    """Outcome of a cycle or stage."""
    status: str
    latest_index: Optional[int] = None
    summary: Optional[PayoutSummary] = None
    multiplier: Optional[float] = None
    payout: Optional[PayoutReport] = None


@dataclass
class PoolConfig:
    """Parsed config.json."""
    excluded: set = field(default_factory=set)
    policy: MultiplierPolicy = DEFAULT_POLICY


@contextmanager
def run_lock(store: JsonStore):
    """
    Hold an exclusive lock on the data directory for the duration of a run.

    Raises:
        HiveRewarderError: If another run holds the lock
    """
    lock_path = store.path(LOCK_FILE)
    with open(lock_path, "w") as handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            raise HiveRewarderError(f"Another run holds {lock_path}")
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _utc_today(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


class RewardCycle:
    """
    Runs the sync, accumulation and payout stages against one data directory.

    Example:
        settings = Settings.from_env()
        cycle = RewardCycle(settings)
        result = cycle.run()
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[HiveClient] = None,
        store: Optional[JsonStore] = None,
        checkpoint: Optional[SyncCheckpoint] = None,
        sender: Any = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the cycle.

        Args:
            settings: Runtime settings
            client: Hive client (built from settings if None)
            store: JSON store (settings.data_dir if None)
            checkpoint: Sync cursor (data_dir/sync.db if None)
            sender: Payout sender (dry-run or live per settings if None)
            now: Clock returning an aware datetime
        """
        self.settings = settings
        self.store = store or JsonStore(settings.data_dir)
        self.client = client or HiveClient(nodes=settings.api_nodes)
        self.checkpoint = checkpoint or SyncCheckpoint(self.store.path(SYNC_DB_FILE))
        self._sender = sender
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def load_pool_config(self) -> PoolConfig:
        """Exclusions and multiplier policy from config.json and the environment."""
        doc = self.store.load(CONFIG_FILE, {})
        excluded = build_exclusion_set(doc, self.settings.extra_excluded)
        policy = DEFAULT_POLICY
        if isinstance(doc, dict) and doc.get("multiplier_policy") is not None:
            policy = MultiplierPolicy.from_dict(doc["multiplier_policy"])
        return PoolConfig(excluded=excluded, policy=policy)

    def load_history(self) -> DelegationHistory:
        data = self.store.load(DELEGATION_HISTORY_FILE, {})
        try:
            history = history_from_dict(data)
        except DocumentValidationError as e:
            logger.error(f"Discarding unreadable {DELEGATION_HISTORY_FILE}: {e}")
            return {}
        logger.info(f"Loaded existing {DELEGATION_HISTORY_FILE} ({len(history)} delegators)")
        return history

    def load_balances(self) -> Balances:
        data = self.store.load(BALANCES_FILE, {})
        try:
            return Balances.from_dict(data)
        except DocumentValidationError as e:
            logger.error(f"Discarding unreadable {BALANCES_FILE}: {e}")
            return Balances()

    def accrued_through_index(self) -> int:
        """Highest history index whose claims are already in the balances."""
        meta = self.load_balances().meta
        if not isinstance(meta, dict):
            return 0
        try:
            return int(meta.get("accrued_through_index", 0))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid accrued_through_index: {meta!r}")
            return 0

    def load_payout_log(self) -> List[PayoutLogEntry]:
        data = self.store.load(SBI_LOG_FILE, [])
        try:
            return payout_log_from_list(data)
        except DocumentValidationError as e:
            logger.error(f"Discarding unreadable {SBI_LOG_FILE}: {e}")
            return []

    def save_books(self, balances: Balances, payout_log: List[PayoutLogEntry]) -> None:
        """Persist balances, then the payout log."""
        self.store.save(BALANCES_FILE, balances.to_dict())
        self.store.save(SBI_LOG_FILE, [entry.to_dict() for entry in payout_log])

    def load_summary(self) -> PayoutSummary:
        """
        Read and validate payout_summary.json.

        Raises:
            DocumentValidationError: If the summary is missing or invalid
        """
        logger.info("Loading payout summary...")
        data = self.store.load(PAYOUT_SUMMARY_FILE, None)
        summary = PayoutSummary.from_dict(data)
        logger.info(f"Payout summary loaded for date: {summary.date}")
        logger.info(f"Total delegation: {summary.total_delegation_hp} HP")
        logger.info(f"Delegators found: {len(summary.delegators)}")
        return summary

    # ========================================================================
    # STAGES
    # ========================================================================

    def _guard(self, locked: bool):
        return run_lock(self.store) if locked else nullcontext()

    def sender(self) -> Any:
        if self._sender is None:
            if self.settings.dry_run:
                self._sender = DryRunSender(self.settings.account)
            else:
                if not self.settings.has_key:
                    logger.warning("HIVE_KEY is not set; SBI payouts will be skipped")
                self._sender = LiveSender(
                    self.client,
                    self.settings.account,
                    self.settings.active_key,
                    nodes=self.settings.broadcast_nodes,
                )
        return self._sender

    def sync(self, last_index: int) -> CycleResult:
        """
        Fetch new history and produce this cycle's payout summary.

        Args:
            last_index: Sync cursor at the start of the cycle

        Returns:
            CycleResult; ``summary`` is set only when there is something to accrue

        Raises:
            HiveClientError: If no node could serve a read
            HiveRewarderError: If the source account does not exist
        """
        account = self.settings.source_account
        logger.info(f"Fetching delegators for @{account}...")

        self.client.pick_working_node(account)
        info = self.client.get_account(account)
        if not info:
            raise HiveRewarderError(f"Account @{account} not found")
        logger.info(f"Account found: {info.get('name', account)}")
        logger.info(f"Received vesting shares: {info.get('received_vesting_shares')}")

        props = self.client.get_global_properties()
        operations, latest_index = fetch_new_operations(self.client, account, last_index)
        if not operations:
            logger.info("No new operations to process. Existing data unchanged.")
            return CycleResult(status=STATUS_NO_NEW_OPERATIONS, latest_index=latest_index)

        events = extract_delegation_events(operations, account)
        if last_index == 0:
            logger.info(f"Initial full sync: building delegation history from {len(operations)} operations")
            history = build_delegation_history(events, props)
        else:
            logger.info(f"Incremental sync: merging {len(operations)} new operations")
            history = merge_delegation_events(self.load_history(), events, props)

        broken = verify_history(history)
        if broken:
            logger.warning(f"Delegation history replay mismatch for: {', '.join(broken)}")

        self.store.save(DELEGATION_HISTORY_FILE, history_to_dict(history))
        logger.info(f"Total delegators found in history: {len(history)}")

        active = get_active_delegators(history)
        logger.info(f"Active delegators: {len(active)}")
        if not active:
            logger.warning("No active delegators found.")
            return CycleResult(status=STATUS_NO_ACTIVE, latest_index=latest_index)

        # Claims at or below the accrual mark were paid by an earlier run
        counted_from = max(last_index, self.accrued_through_index())
        if counted_from > last_index:
            logger.warning(
                f"Operations through index {counted_from} already accrued; "
                "their claims are not counted again"
            )
        claims = [op for op in operations if op.index > counted_from]

        now = self._now()
        start_ms, end_ms = curation_window(now)
        earnings = windowed_earnings(claims, start_ms, end_ms, props)
        logger.info(f"Total curation rewards (last 24h): {earnings:.6f} HIVE")

        cutoff_ms = eligibility_cutoff(now)
        cutoff_iso = datetime.fromtimestamp(cutoff_ms / 1000, tz=timezone.utc).isoformat()
        logger.info(f"Eligibility cutoff: {cutoff_iso}")
        eligible = compute_eligible_stakes(history, cutoff_ms, props)
        logger.info(f"Eligible delegators: {len(eligible)}")

        summary = build_payout_summary(_utc_today(now), eligible, earnings)
        if summary is None:
            logger.warning("No eligible delegations found.")
            return CycleResult(status=STATUS_NO_ELIGIBLE, latest_index=latest_index)

        self.store.save(PAYOUT_SUMMARY_FILE, summary.to_dict())
        logger.info(f"Eligible delegation: {summary.total_delegation_hp:.3f} HP")
        logger.info(f"Total curation (24h): {summary.total_curation_hive:.6f} HIVE")
        logger.info(
            f"Distributable ({(1 - RETENTION_FRACTION) * 100:.0f}%): "
            f"{summary.distributable_hive:.6f} HIVE"
        )
        return CycleResult(status=STATUS_COMPLETED, latest_index=latest_index, summary=summary)

    def accumulate(self, through_index: Optional[int] = None, locked: bool = True) -> CycleResult:
        """
        Accumulation stage: apply payout_summary.json, then run payouts.

        Balances are persisted before any payout is attempted.

        Args:
            through_index: History index the summary covers; when set, a summary
                already applied for this index is not accrued again
            locked: Take the data directory lock (False when the caller holds it)

        Raises:
            DocumentValidationError: If payout_summary.json is missing or invalid
            HiveRewarderError: If another run holds the lock
        """
        with self._guard(locked):
            return self._accumulate(through_index)

    def _accumulate(self, through_index: Optional[int]) -> CycleResult:
        logger.info("Starting reward accumulation...")
        summary = self.load_summary()
        pool = self.load_pool_config()

        balances = self.load_balances()
        today = _utc_today(self._now())
        meta = balances.meta if isinstance(balances.meta, dict) else {}
        already_accrued = (
            through_index is not None and meta.get("accrued_through_index", -1) >= through_index
        )

        if not already_accrued and summary.distributable_hive <= 0 and all(
            d.base_reward <= 0 for d in summary.delegators
        ):
            logger.info("No distributable earnings this cycle.")
            return CycleResult(status=STATUS_NO_EARNINGS, summary=summary)

        if already_accrued:
            logger.warning(
                f"Summary for index {through_index} already accrued; skipping accrual"
            )
            status = STATUS_ALREADY_ACCRUED
            multiplier = None
        else:
            multiplier = accumulate_summary(summary, balances, pool.policy, today)
            if through_index is not None:
                meta = dict(meta)
                meta["accrued_through_index"] = through_index
                meta["accrued_date"] = summary.date
                balances.meta = meta
            self.store.save(BALANCES_FILE, balances.to_dict())
            status = STATUS_COMPLETED

        report = self.payout(balances=balances, excluded=pool.excluded, locked=False)

        outstanding, sent = balance_totals(balances)
        logger.info("Accumulation complete!")
        logger.info(f"Date: {summary.date}")
        logger.info(f"Delegators processed: {len(summary.delegators)}")
        logger.info(f"Total outstanding balance: {outstanding} HIVE")
        logger.info(f"Total SBI sent (all time): {sent} HIVE")
        return CycleResult(status=status, summary=summary, multiplier=multiplier, payout=report)

    def payout(
        self,
        balances: Optional[Balances] = None,
        excluded: Optional[set] = None,
        locked: bool = True,
    ) -> PayoutReport:
        """
        Payout stage: drain every balance of at least one unit.

        Raises:
            HiveRewarderError: If ``locked`` and another run holds the lock
        """
        with self._guard(locked):
            return self._payout(balances, excluded)

    def _payout(self, balances: Optional[Balances], excluded: Optional[set]) -> PayoutReport:
        logger.info("Processing SBI payouts...")
        if self.settings.dry_run:
            logger.info("Running in DRY-RUN mode. No real transactions will be sent.")

        if balances is None:
            balances = self.load_balances()
        if excluded is None:
            excluded = self.load_pool_config().excluded
        payout_log = self.load_payout_log()

        executor = SBIPayoutExecutor(self.sender(), persist=self.save_books)
        report = executor.process(balances, payout_log, excluded, _utc_today(self._now()))
        self.save_books(balances, payout_log)

        if self.settings.dry_run:
            logger.info("DRY-RUN complete. No actual HIVE was transferred.")
        return report

    def run(self) -> CycleResult:
        """
        Full cycle: sync, accumulate, payout, then advance the checkpoint.

        Raises:
            HiveRewarderError: On any fatal condition; the checkpoint is untouched
        """
        with run_lock(self.store), self.checkpoint:
            last_index = self.checkpoint.get_last_index()
            logger.info(f"Last processed index from DB: {last_index}")

            result = self.sync(last_index)
            if result.status == STATUS_NO_NEW_OPERATIONS:
                return result

            if result.summary is not None:
                staged = self.accumulate(through_index=result.latest_index, locked=False)
                result.multiplier = staged.multiplier
                result.payout = staged.payout
                if staged.status != STATUS_COMPLETED:
                    result.status = staged.status

            self.checkpoint.set_last_index(result.latest_index)
            logger.info("Reward cycle complete")
            return result

    def status(self) -> Tuple[int, float, float, int]:
        """
        Returns:
            (last_index, outstanding balance, total sent, payout log entries)
        """
        with self.checkpoint:
            last_index = self.checkpoint.get_last_index()
        outstanding, sent = balance_totals(self.load_balances())
        return last_index, outstanding, sent, len(self.load_payout_log())
