"""
hiverewarder/tests/test_hive_client.py

Tests for the Hive JSON-RPC client with a mocked HTTP session:
- Parse helpers
- Node failover and preferred-node tracking
- Incremental history paging
"""

from unittest.mock import Mock

import pytest
import requests

from hiverewarder.errors import HiveClientError
from hiverewarder.hive.client import (
    AccountOperation,
    GlobalProperties,
    HiveClient,
    fetch_new_operations,
    format_amount,
    parse_asset,
    parse_timestamp,
)
from hiverewarder.hive.failover import with_failover


NODES = ["https://node-a", "https://node-b"]


def _response(result=None, error=None, status=200):
    response = Mock()
    response.status_code = status
    body = {"jsonrpc": "2.0", "id": 1}
    if error is not None:
        body["error"] = error
    else:
        body["result"] = result
    response.json.return_value = body
    return response


def _history_item(index, op_type="vote", data=None, timestamp="2024-06-01T00:00:00"):
    return [index, {"timestamp": timestamp, "op": [op_type, data or {}]}]


# ============================================================================
# Helpers
# ============================================================================

class TestParsing:
    """Tests for the parse helpers."""

    def test_parse_timestamp(self):
        assert parse_timestamp("2024-06-01T00:00:00") == 1717200000000
        assert parse_timestamp("2024-06-01T00:00:00Z") == 1717200000000

    def test_parse_asset_string(self):
        assert parse_asset("1234.567890 VESTS") == 1234.56789

    def test_parse_asset_nai(self):
        assert parse_asset({"amount": "1500", "precision": 3, "nai": "@@000000021"}) == 1.5

    def test_parse_asset_number(self):
        assert parse_asset(7) == 7.0

    def test_format_amount(self):
        assert format_amount(1.0) == "1.000 HIVE"

    def test_condenser_history_item(self):
        op = AccountOperation.from_history_item(_history_item(
            5, "delegate_vesting_shares", {"delegator": "alice"}
        ))
        assert op.index == 5
        assert op.op_type == "delegate_vesting_shares"
        assert op.data["delegator"] == "alice"
        assert op.timestamp_ms == 1717200000000

    def test_appbase_history_item(self):
        op = AccountOperation.from_history_item([6, {
            "timestamp": "2024-06-01T00:00:00",
            "op": {"type": "claim_reward_balance_operation", "value": {"reward_vests": "1 VESTS"}},
        }])
        assert op.op_type == "claim_reward_balance"
        assert op.data == {"reward_vests": "1 VESTS"}

    def test_global_properties(self):
        props = GlobalProperties.from_dict({
            "total_vesting_fund_hive": "500.000 HIVE",
            "total_vesting_shares": "1000.000000 VESTS",
        })
        assert props.vests_to_hp(10.0) == 5.0
        assert GlobalProperties(1.0, 0.0).vests_to_hp(10.0) == 0.0


# ============================================================================
# Failover
# ============================================================================

class TestWithFailover:
    """Tests for the ordered-node failover helper."""

    def test_returns_answering_index(self):
        op = Mock(side_effect=[requests.ConnectionError("down"), "ok"])
        assert with_failover(NODES, op) == ("ok", 1)

    def test_wraps_around_from_start(self):
        op = Mock(side_effect=[HiveClientError("x"), "ok"])
        assert with_failover(NODES, op, start=1) == ("ok", 0)
        assert [c.args[0] for c in op.call_args_list] == ["https://node-b", "https://node-a"]

    def test_delay_between_attempts(self):
        sleep = Mock()
        op = Mock(side_effect=HiveClientError("x"))
        with pytest.raises(HiveClientError):
            with_failover(NODES, op, attempts=3, delay=2.0, sleep=sleep)
        assert op.call_count == 3
        assert sleep.call_count == 2

    def test_no_nodes(self):
        with pytest.raises(HiveClientError):
            with_failover([], Mock())

    def test_unexpected_errors_propagate(self):
        op = Mock(side_effect=KeyError("bug"))
        with pytest.raises(KeyError):
            with_failover(NODES, op)


# ============================================================================
# Client
# ============================================================================

class TestHiveClient:
    """Tests for HiveClient calls over a mocked session."""

    @pytest.fixture
    def session(self):
        return Mock()

    @pytest.fixture
    def client(self, session):
        return HiveClient(NODES, session=session)

    def test_payload_shape(self, client, session):
        session.post.return_value = _response([[42, {}]])
        client.get_latest_index("pool")
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == NODES[0]
        assert payload["method"] == "condenser_api.get_account_history"
        assert payload["params"] == ["pool", -1, 1]

    def test_latest_index(self, client, session):
        session.post.return_value = _response([_history_item(42)])
        assert client.get_latest_index("pool") == 42

    def test_failover_on_http_error(self, client, session):
        session.post.side_effect = [_response(status=502), _response([_history_item(7)])]
        assert client.get_latest_index("pool") == 7
        assert client.preferred_index == 1
        assert client.current_node == NODES[1]

    def test_server_error_fails_over(self, client, session):
        session.post.side_effect = [
            _response(error={"code": -32000, "message": "overloaded"}),
            _response([_history_item(9)]),
        ]
        assert client.get_latest_index("pool") == 9

    def test_all_nodes_fail(self, client, session):
        session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(HiveClientError):
            client.get_global_properties()

    def test_get_account_missing(self, client, session):
        session.post.return_value = _response([])
        assert client.get_account("nobody") is None

    def test_get_history_sorted(self, client, session):
        session.post.return_value = _response([_history_item(3), _history_item(1), _history_item(2)])
        assert [op.index for op in client.get_history("pool", 3, 3)] == [1, 2, 3]

    def test_pick_working_node(self, client, session):
        session.post.side_effect = [requests.ConnectionError("down"), _response([{"name": "pool"}])]
        assert client.pick_working_node("pool") == NODES[1]
        assert client.preferred_index == 1

    def test_pick_working_node_none(self, client, session):
        session.post.return_value = _response([])
        with pytest.raises(HiveClientError):
            client.pick_working_node("pool")


# ============================================================================
# Incremental fetch
# ============================================================================

class FakeHistory:
    """Serves a contiguous account history like a node would."""

    def __init__(self, latest, first=0, overlap=0):
        self.latest = latest
        self.first = first
        self.overlap = overlap
        self.requests = []

    def get_latest_index(self, account):
        return self.latest

    def get_history(self, account, start, limit):
        self.requests.append((start, limit))
        low = max(self.first, start - limit + 1 - self.overlap)
        return [AccountOperation(i, 1717200000000 + i, "vote") for i in range(low, start + 1)]


class TestFetchNewOperations:
    """Tests for the backwards paging loop."""

    def test_fetches_everything_after_last_index(self):
        history = FakeHistory(latest=2500)
        ops, latest = fetch_new_operations(history, "pool", 0, batch_size=1000)
        assert latest == 2500
        assert [op.index for op in ops] == list(range(1, 2501))
        assert history.requests == [(2500, 1000), (1500, 1000), (500, 500)]

    def test_nothing_new(self):
        history = FakeHistory(latest=10)
        assert fetch_new_operations(history, "pool", 10) == ([], 10)
        assert history.requests == []

    def test_small_gap_uses_small_limit(self):
        history = FakeHistory(latest=105)
        ops, _ = fetch_new_operations(history, "pool", 100, batch_size=1000)
        assert [op.index for op in ops] == [101, 102, 103, 104, 105]
        assert history.requests == [(105, 5)]

    def test_overlapping_pages_deduplicated(self):
        """Nodes that return extra items do not cause duplicates."""
        history = FakeHistory(latest=30, overlap=3)
        ops, _ = fetch_new_operations(history, "pool", 0, batch_size=10)
        assert [op.index for op in ops] == list(range(1, 31))

    def test_short_history_stops(self):
        """History that starts later than expected ends the loop."""
        history = FakeHistory(latest=50, first=40)
        ops, _ = fetch_new_operations(history, "pool", 0, batch_size=10)
        assert [op.index for op in ops] == list(range(40, 51))
