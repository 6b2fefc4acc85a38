"""
hiverewarder/hive - Hive blockchain access for the reward engine.

Provides account history reads, global properties and transfer
broadcasting against an ordered list of API nodes with failover.
"""

from .client import (
    AccountOperation,
    GlobalProperties,
    HiveClient,
    fetch_new_operations,
    format_amount,
    parse_asset,
    parse_timestamp,
)
from .failover import with_failover
from ..errors import HiveClientError

__all__ = [
    "AccountOperation",
    "GlobalProperties",
    "HiveClient",
    "HiveClientError",
    "fetch_new_operations",
    "format_amount",
    "parse_asset",
    "parse_timestamp",
    "with_failover",
]
