"""
hiverewarder/tests/test_cli.py

Tests for the command line interface.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from hiverewarder.cli import cli
from hiverewarder.cycle import run_lock
from hiverewarder.errors import HiveClientError
from hiverewarder.storage import JsonStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


def _write_summary(data_dir):
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "payout_summary.json").write_text(json.dumps({
        "date": "2024-06-30",
        "total_delegation_hp": 4000.0,
        "total_curation_hive": 10.0,
        "distributable_hive": 9.5,
        "delegators": [
            {"name": "bob", "hp": 3000.0, "base_reward": 7.125},
            {"name": "alice", "hp": 1000.0, "base_reward": 2.375},
        ],
    }), encoding="utf-8")


class TestCli:
    """Test CLI commands."""

    def test_status_on_empty_directory(self, runner, data_dir):
        result = runner.invoke(cli, ["--data-dir", str(data_dir), "status"], env={})
        assert result.exit_code == 0
        assert "Last processed index: 0" in result.output
        assert "Payout log entries: 0" in result.output

    def test_accumulate_without_summary_fails(self, runner, data_dir):
        result = runner.invoke(cli, ["--data-dir", str(data_dir), "accumulate"])
        assert result.exit_code == 1

    def test_accumulate_dry_run(self, runner, data_dir):
        _write_summary(data_dir)
        result = runner.invoke(
            cli, ["--data-dir", str(data_dir), "--dry-run", "accumulate"],
            env={"HIVE_KEY": ""},
        )
        assert result.exit_code == 0
        assert "Accumulation finished: completed" in result.output

        balances = json.loads((data_dir / "delegator_balances.json").read_text())
        assert balances["bob"]["balance"] == 0.375
        assert balances["bob"]["total_sent"] == 21.0
        assert len(json.loads((data_dir / "sbi_log.json").read_text())) == 28

    def test_payout_dry_run_via_env(self, runner, data_dir):
        data_dir.mkdir(parents=True)
        (data_dir / "delegator_balances.json").write_text(json.dumps({
            "alice": {"balance": 2.4, "total_sent": 0.0, "last_updated": "2024-06-29"},
        }))
        result = runner.invoke(
            cli, ["--data-dir", str(data_dir), "payout"], env={"DRY_RUN": "true"},
        )
        assert result.exit_code == 0
        assert "Payout finished: 2 chunk(s)" in result.output

    def test_run_failure_exits_nonzero(self, runner, data_dir):
        with patch("hiverewarder.cli.RewardCycle") as cycle_cls:
            cycle_cls.return_value.run.side_effect = HiveClientError("No working Hive API found")
            result = runner.invoke(cli, ["--data-dir", str(data_dir), "run"])
        assert result.exit_code == 1

    def test_run_success(self, runner, data_dir):
        with patch("hiverewarder.cli.RewardCycle") as cycle_cls:
            cycle_cls.return_value.run.return_value.status = "completed"
            cycle_cls.return_value.run.return_value.latest_index = 6
            result = runner.invoke(cli, ["--data-dir", str(data_dir), "run"])
        assert result.exit_code == 0
        assert "Cycle finished: completed (index 6)" in result.output

    def test_accumulate_refused_while_locked(self, runner, data_dir):
        _write_summary(data_dir)
        with run_lock(JsonStore(data_dir)):
            result = runner.invoke(cli, ["--data-dir", str(data_dir), "--dry-run", "accumulate"])
        assert result.exit_code == 1
        assert not (data_dir / "delegator_balances.json").exists()

    def test_payout_refused_while_locked(self, runner, data_dir):
        data_dir.mkdir(parents=True)
        (data_dir / "delegator_balances.json").write_text(json.dumps({
            "alice": {"balance": 2.4, "total_sent": 0.0, "last_updated": "2024-06-29"},
        }))
        with run_lock(JsonStore(data_dir)):
            result = runner.invoke(cli, ["--data-dir", str(data_dir), "--dry-run", "payout"])
        assert result.exit_code == 1
        assert not (data_dir / "sbi_log.json").exists()
