"""
hiverewarder/cli.py

Command line entry point.

Run with: hive-rewarder run
      or: python -m hiverewarder run
"""

import logging
import sys
from pathlib import Path

import click

from .config import Settings
from .cycle import RewardCycle
from .errors import DocumentValidationError, HiveRewarderError

logger = logging.getLogger("hiverewarder.cli")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


@click.group()
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Directory holding the JSON documents and sync.db.")
@click.option("--dry-run", is_flag=True, default=False,
              help="Simulate payouts without broadcasting.")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"],
              case_sensitive=False), default=None)
@click.pass_context
def cli(ctx: click.Context, data_dir, dry_run, log_level):
    """Delegation reward accumulator and SBI payout engine."""
    settings = Settings.from_env()
    if data_dir is not None:
        settings.data_dir = data_dir
    if dry_run:
        settings.dry_run = True
    if log_level:
        settings.log_level = log_level.upper()

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def run(ctx: click.Context):
    """Full cycle: sync history, accrue rewards, pay out, checkpoint."""
    cycle = RewardCycle(_settings(ctx))
    try:
        result = cycle.run()
    except HiveRewarderError as e:
        logger.error(f"Cycle aborted: {e}")
        sys.exit(1)
    click.echo(f"Cycle finished: {result.status} (index {result.latest_index})")


@cli.command()
@click.pass_context
def accumulate(ctx: click.Context):
    """Accrue payout_summary.json into balances, then pay out."""
    cycle = RewardCycle(_settings(ctx))
    try:
        result = cycle.accumulate()
    except DocumentValidationError as e:
        logger.error(f"{e}. Cannot proceed.")
        sys.exit(1)
    except HiveRewarderError as e:
        logger.error(f"Accumulation aborted: {e}")
        sys.exit(1)
    click.echo(f"Accumulation finished: {result.status}")


@cli.command()
@click.pass_context
def payout(ctx: click.Context):
    """Drain balances of at least one unit to SBI."""
    cycle = RewardCycle(_settings(ctx))
    try:
        report = cycle.payout()
    except HiveRewarderError as e:
        logger.error(f"Payout aborted: {e}")
        sys.exit(1)
    click.echo(
        f"Payout finished: {report.chunks_sent} chunk(s), "
        f"{len(report.abandoned)} abandoned, {len(report.excluded)} excluded"
    )


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show the sync cursor and balance totals."""
    cycle = RewardCycle(_settings(ctx))
    last_index, outstanding, sent, log_entries = cycle.status()
    click.echo(f"Last processed index: {last_index}")
    click.echo(f"Outstanding balance: {outstanding} HIVE")
    click.echo(f"Total sent (all time): {sent} HIVE")
    click.echo(f"Payout log entries: {log_entries}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
