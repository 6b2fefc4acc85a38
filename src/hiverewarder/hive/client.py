"""
hiverewarder/hive/client.py

Hive JSON-RPC client for the reward engine.

Provides methods for:
- Account history queries (latest index, history ranges)
- Account lookups
- Dynamic global properties (VESTS to HP conversion)
- Transfer broadcasting
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from ..config import API_NODES, HISTORY_BATCH_SIZE, REQUEST_TIMEOUT
from ..errors import HiveClientError
from .failover import with_failover

logger = logging.getLogger("hiverewarder.hive.client")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class AccountOperation:
    """One entry of an account's operation history."""
    index: int
    timestamp_ms: int
    op_type: str
    data: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_history_item(cls, item: Any) -> "AccountOperation":
        """
        Parse a ``[index, {timestamp, op}]`` history item.

        Handles both the condenser ``[type, data]`` op shape and the appbase
        ``{"type": "..._operation", "value": {...}}`` shape.
        """
        index, body = item[0], item[1]
        op = body["op"]
        if isinstance(op, dict):
            op_type = op["type"]
            if op_type.endswith("_operation"):
                op_type = op_type[: -len("_operation")]
            data = op.get("value", {})
        else:
            op_type, data = op[0], op[1]
        return cls(
            index=int(index),
            timestamp_ms=parse_timestamp(body["timestamp"]),
            op_type=op_type,
            data=data,
        )


@dataclass(frozen=True)
class GlobalProperties:
    """Subset of dynamic global properties needed for VESTS conversion."""
    total_vesting_fund_hive: float
    total_vesting_shares: float

    def vests_to_hp(self, vests: float) -> float:
        """Convert VESTS to Hive Power at the current rate."""
        if self.total_vesting_shares <= 0:
            return 0.0
        return vests * self.total_vesting_fund_hive / self.total_vesting_shares

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalProperties":
        return cls(
            total_vesting_fund_hive=parse_asset(data["total_vesting_fund_hive"]),
            total_vesting_shares=parse_asset(data["total_vesting_shares"]),
        )


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def parse_timestamp(value: str) -> int:
    """Convert a chain timestamp (UTC, no zone suffix) to epoch milliseconds."""
    value = value.rstrip("Z")
    dt = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def parse_asset(value: Any) -> float:
    """
    Parse an asset amount.

    Accepts legacy strings (``"123.456 VESTS"``), NAI dicts
    (``{"amount": "123456", "precision": 3, "nai": ...}``) and bare numbers.
    """
    if isinstance(value, dict):
        return int(value["amount"]) / (10 ** int(value.get("precision", 0)))
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value).split(" ")[0])


def format_amount(amount: float, asset: str = "HIVE") -> str:
    """Format a transfer amount with Hive's three decimals."""
    return f"{amount:.3f} {asset}"


# ============================================================================
# HIVE CLIENT
# ============================================================================

class HiveClient:
    """
    JSON-RPC client over an ordered list of Hive API nodes.

    Read calls try nodes in order until one answers. The node that answered
    becomes the preferred node for the next call on this client instance.

    Example:
        client = HiveClient()
        client.pick_working_node("bayanihive")
        latest = client.get_latest_index("bayanihive")
        ops = client.get_history("bayanihive", latest, 100)
    """

    def __init__(
        self,
        nodes: Optional[List[str]] = None,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            nodes: Ordered node URLs. Uses defaults if None.
            timeout: Per-request timeout in seconds
            session: requests session (created if None)
        """
        self.nodes = list(nodes) if nodes else list(API_NODES)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.preferred_index = 0
        self._request_id = 0

    @property
    def current_node(self) -> str:
        return self.nodes[self.preferred_index]

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def call_node(self, node: str, method: str, params: Any) -> Any:
        """
        Make a JSON-RPC call against one node.

        Raises:
            HiveClientError: On HTTP or server error
        """
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }
        response = self.session.post(node, json=payload, timeout=self.timeout)
        if response.status_code != 200:
            raise HiveClientError(f"HTTP {response.status_code} from {node}")
        body = response.json()
        if body.get("error"):
            error = body["error"]
            msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise HiveClientError(f"Server error: {msg}")
        return body.get("result")

    def _call(self, method: str, params: Any) -> Any:
        """Call ``method`` with node failover, starting at the preferred node."""
        result, idx = with_failover(
            self.nodes,
            lambda node: self.call_node(node, method, params),
            start=self.preferred_index,
        )
        self.preferred_index = idx
        return result

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def pick_working_node(self, account: str) -> str:
        """
        Try nodes in order and keep the first that serves ``account``.

        Returns:
            URL of the working node

        Raises:
            HiveClientError: If no node answered
        """
        for idx, node in enumerate(self.nodes):
            logger.info(f"Trying Hive API node: {node}")
            try:
                result = self.call_node(node, "condenser_api.get_accounts", [[account]])
            except (HiveClientError, requests.RequestException, ValueError) as e:
                logger.warning(f"Node {node} failed: {e}")
                continue
            if result:
                self.preferred_index = idx
                logger.info(f"Using Hive API: {node}")
                return node
        raise HiveClientError("No working Hive API found")

    def get_account(self, account: str) -> Optional[Dict[str, Any]]:
        """
        Look up an account.

        Returns:
            Account attributes, or None if the account does not exist
        """
        result = self._call("condenser_api.get_accounts", [[account]])
        if not result:
            return None
        return result[0]

    def get_global_properties(self) -> GlobalProperties:
        result = self._call("condenser_api.get_dynamic_global_properties", [])
        return GlobalProperties.from_dict(result)

    def get_latest_index(self, account: str) -> int:
        """Index of the most recent operation in ``account``'s history."""
        result = self._call("condenser_api.get_account_history", [account, -1, 1])
        if not result:
            return 0
        return int(result[-1][0])

    def get_history(self, account: str, start: int, limit: int) -> List[AccountOperation]:
        """
        Fetch up to ``limit`` operations ending at index ``start``.

        Returns:
            Operations in ascending index order
        """
        result = self._call("condenser_api.get_account_history", [account, start, limit])
        operations = [AccountOperation.from_history_item(item) for item in result or []]
        operations.sort(key=lambda op: op.index)
        return operations

    def broadcast_transfer(
        self,
        sender: str,
        to: str,
        amount: float,
        memo: str,
        key: str,
        node: Optional[str] = None,
        asset: str = "HIVE",
    ) -> str:
        """
        Sign and broadcast a transfer through one node.

        No failover happens here; callers retry against other nodes.

        Args:
            sender: Sending account
            to: Receiving account
            amount: Amount in ``asset``
            memo: Transfer memo
            key: Sender's active key (WIF)
            node: Node URL (defaults to the preferred node)
            asset: Asset symbol

        Returns:
            Transaction ID

        Raises:
            HiveClientError: If signing or broadcasting fails
        """
        try:
            from beem import Hive
            from beem.account import Account
        except ImportError:
            logger.error("beem not available for transfer broadcasting")
            raise HiveClientError("beem required for transfer broadcasting")

        node = node or self.current_node
        try:
            chain = Hive(node=[node], keys=[key], num_retries=0, timeout=self.timeout)
            account = Account(sender, blockchain_instance=chain)
            result = account.transfer(to, float(f"{amount:.3f}"), asset, memo)
        except Exception as e:
            raise HiveClientError(f"Broadcast via {node} failed: {e}") from e

        txid = ""
        if isinstance(result, dict):
            txid = result.get("trx_id") or result.get("id") or ""
        logger.info(f"Transfer broadcast successful: {txid or '(no id returned)'}")
        return txid


# ============================================================================
# INCREMENTAL SYNC
# ============================================================================

def fetch_new_operations(
    client: HiveClient,
    account: str,
    last_index: int,
    batch_size: int = HISTORY_BATCH_SIZE,
) -> Tuple[List[AccountOperation], int]:
    """
    Fetch every operation with index greater than ``last_index``.

    Pages backwards from the latest index in batches, then returns the
    operations sorted ascending and de-duplicated by index.

    Args:
        client: Hive client
        account: Account whose history is scanned
        last_index: Last fully processed index
        batch_size: Operations per request (node maximum is 1000)

    Returns:
        (new_operations, latest_index)
    """
    latest_index = client.get_latest_index(account)
    logger.info(f"Latest blockchain index: {latest_index}")
    logger.info(f"Last processed index: {last_index}")

    if latest_index <= last_index:
        logger.info(
            f"No new operations. (latest: {latest_index}, last processed: {last_index})"
        )
        return [], latest_index

    logger.info(
        f"{latest_index - last_index} new operation(s) to fetch "
        f"(index {last_index + 1} -> {latest_index})"
    )

    collected: List[AccountOperation] = []
    start = latest_index
    while True:
        limit = min(batch_size, start - last_index)
        if limit <= 0:
            break

        logger.debug(f"Fetching operations from index {start} (limit: {limit})")
        batch = client.get_history(account, start, limit)
        if not batch:
            logger.info("No more operations found")
            break

        fresh = [op for op in batch if op.index > last_index]
        collected.extend(fresh)
        logger.debug(f"Fetched {len(fresh)} new operations (total: {len(collected)})")

        lowest = batch[0].index
        if lowest <= last_index + 1:
            break
        start = lowest - 1
        if start <= last_index:
            break
        if len(batch) < limit:
            logger.info("Reached end of available history")
            break

    seen = set()
    deduped = []
    for op in sorted(collected, key=lambda o: o.index):
        if op.index in seen:
            continue
        seen.add(op.index)
        deduped.append(op)

    logger.info(f"Total new operations fetched: {len(deduped)}")
    return deduped, latest_index
