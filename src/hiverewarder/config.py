"""
hiverewarder/config.py

Configuration constants and runtime settings for hiverewarder.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


# Pool account receiving delegations
DEFAULT_ACCOUNT = "bayanihive"

# Payout beneficiary and chunk size
SBI_ACCOUNT = "steembasicincome"
SBI_CHUNK = 1.0
SBI_ASSET = "HIVE"

# Hive API nodes used for history reads (tried in order)
API_NODES: List[str] = [
    "https://api.deathwing.me",
    "https://api.openhive.network",
    "https://api.hive.blog",
    "https://anyx.io",
    "https://hive.roelandp.nl",
    "https://rpc.ausbit.dev",
    "https://hived.emre.sh",
    "https://hive-api.arcange.eu",
    "https://api.c0ff33a.uk",
    "https://rpc.ecency.com",
    "https://techcoderx.com",
    "https://api.hive.blue",
    "https://rpc.mahdiyari.info",
    "https://herpc.dtools.dev",
]

# Nodes used for broadcasting payouts
BROADCAST_NODES: List[str] = [
    "https://api.hive.blog",
    "https://api.openhive.network",
    "https://anyx.io",
    "https://rpc.ecency.com",
]

# Civil timezone the daily cadence is anchored to
CIVIL_TIMEZONE = "Asia/Manila"

# Reward cycle parameters
ELIGIBILITY_DAYS = 6            # stake must be held this long to count
CURATION_WINDOW_HOUR = 8        # claims between 08:00 and 08:00 local
RETENTION_FRACTION = 0.05       # kept by the pool operator
DELEGATION_EPSILON = 1e-6       # VESTS deltas at or below this are no-ops
REWARD_PRECISION = 6            # decimals for base rewards
BALANCE_PRECISION = 3           # decimals for balances (HIVE precision)

# Payout retry parameters
PAYOUT_RETRIES = 3
PAYOUT_RETRY_DELAY = 2.0        # seconds

# History paging
HISTORY_BATCH_SIZE = 1000
REQUEST_TIMEOUT = 30.0          # seconds

# Persisted documents
DELEGATION_HISTORY_FILE = "delegation_history.json"
BALANCES_FILE = "delegator_balances.json"
SBI_LOG_FILE = "sbi_log.json"
PAYOUT_SUMMARY_FILE = "payout_summary.json"
CONFIG_FILE = "config.json"
SYNC_DB_FILE = "sync.db"
LOCK_FILE = ".lock"

# Reserved key in the balances document
META_KEY = "_meta"


def _split_list(value: Optional[str]) -> List[str]:
    """Split a comma separated environment value, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings, normally read from the environment."""
    account: str = DEFAULT_ACCOUNT
    source_account: str = ""
    active_key: str = ""
    dry_run: bool = False
    data_dir: Path = field(default_factory=lambda: Path("data"))
    extra_excluded: List[str] = field(default_factory=list)
    api_nodes: List[str] = field(default_factory=lambda: list(API_NODES))
    broadcast_nodes: List[str] = field(default_factory=lambda: list(BROADCAST_NODES))
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.source_account:
            self.source_account = self.account
        self.data_dir = Path(self.data_dir)

    @property
    def has_key(self) -> bool:
        """Check whether a signing key is configured."""
        return bool(self.active_key)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """
        Build settings from environment variables.

        Recognised variables: HIVE_USER, HIVE_SOURCE_ACCOUNT, HIVE_KEY,
        DRY_RUN, SBI_EXCLUDE, HIVE_REWARDER_DATA_DIR, HIVE_NODES, LOG_LEVEL.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Settings instance
        """
        env = os.environ if environ is None else environ
        account = env.get("HIVE_USER") or DEFAULT_ACCOUNT
        nodes = _split_list(env.get("HIVE_NODES"))
        return cls(
            account=account,
            source_account=env.get("HIVE_SOURCE_ACCOUNT") or account,
            active_key=env.get("HIVE_KEY", ""),
            dry_run=env.get("DRY_RUN", "").strip().lower() == "true",
            data_dir=Path(env.get("HIVE_REWARDER_DATA_DIR") or "data"),
            extra_excluded=_split_list(env.get("SBI_EXCLUDE")),
            api_nodes=nodes or list(API_NODES),
            broadcast_nodes=nodes or list(BROADCAST_NODES),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
