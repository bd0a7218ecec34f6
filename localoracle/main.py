"""
Main orchestration module for LocalOracle.

This module wires the settlement and trading workflows to the command line:
1. Load and validate configuration
2. Build the chosen workflow(s) and the decision journal
3. Run one cycle now, or register cron jobs and keep running
4. Send a cycle summary to Telegram after each cycle
"""

import argparse
import logging
import signal
import sys
import time
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from localoracle.config import Config, WORKFLOW_SETTLEMENT, WORKFLOW_TRADING
from localoracle.models import CycleSummary
from localoracle.scheduler import (
    CronPayload,
    MissingScheduleTimeError,
    get_scheduler_status,
    on_cron_trigger,
    start_scheduler,
    stop_scheduler,
)
from localoracle.settlement import build_settlement_workflow
from localoracle.storage import Storage
from localoracle.telegram_notifier import send_cycle_summary
from localoracle.trading import build_trading_workflow
from localoracle.utils import format_usdc

COMMAND_SETTLE = "settle"
COMMAND_TRADE = "trade"
COMMAND_ALL = "all"

COMMAND_WORKFLOWS = {
    COMMAND_SETTLE: [WORKFLOW_SETTLEMENT],
    COMMAND_TRADE: [WORKFLOW_TRADING],
    COMMAND_ALL: [WORKFLOW_SETTLEMENT, WORKFLOW_TRADING],
}


# Configure logging
def setup_logging(config: Config) -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if config.log_file:
        config.ensure_directories()
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )


logger = logging.getLogger(__name__)


def validate_config(config: Config, workflows: list[str]) -> bool:
    """
    Validate the configuration for every workflow about to run.

    Returns:
        True if valid, False otherwise (errors are logged)
    """
    errors: list[str] = []
    for workflow in workflows:
        _, workflow_errors = config.validate(workflow)
        errors.extend(e for e in workflow_errors if e not in errors)

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return False

    return True


def build_workflows(config: Config, workflows: list[str], storage: Optional[Storage]) -> dict:
    """
    Build run functions for the requested workflows.

    Returns:
        Mapping of workflow name to a callable taking the scheduled time
    """
    builders = {
        WORKFLOW_SETTLEMENT: build_settlement_workflow,
        WORKFLOW_TRADING: build_trading_workflow,
    }
    return {name: builders[name](config, storage).run for name in workflows}


def run_and_notify(workflow, config: Config, scheduled_time: datetime) -> CycleSummary:
    """
    Run one workflow cycle and send its summary to Telegram.

    Shared by single runs and cron firings.
    """
    summary = workflow(scheduled_time)
    logger.info(f"{summary.workflow} cycle complete: {summary.status}")

    if send_cycle_summary(summary, config):
        logger.info("Telegram notification sent successfully")
    else:
        logger.debug("Telegram notification skipped (not configured, nothing to report or failed)")

    return summary


def run_cycle(workflow, config: Config, payload: CronPayload) -> CycleSummary:
    """
    Run one workflow invocation and notify.

    Args:
        workflow: Workflow run function
        config: Configuration (for notifications)
        payload: Trigger payload

    Returns:
        CycleSummary of the cycle

    Raises:
        MissingScheduleTimeError: If the payload has no scheduled time
    """
    return on_cron_trigger(payload, partial(run_and_notify, workflow, config))


def print_history(storage: Storage, limit: int) -> None:
    """Print the most recent journal entries."""
    print("\nRecent cycles:")
    for row in storage.recent_cycles(limit):
        print(
            f"  {row['scheduled_time']}  {row['workflow']:<10}  {row['status']:<14}  "
            f"decided={row['decided']} ok={row['succeeded']} failed={row['failed']}"
        )

    print("\nRecent settlements:")
    for row in storage.recent_settlements(limit):
        outcome = "YES" if row["outcome"] else "NO"
        print(
            f"  #{row['market_id']:<5} {outcome:<3}  {row['method']:<15}  "
            f"{row['tx_status']:<8}  {row['tx_hash'] or '-'}"
        )

    print("\nRecent trades:")
    for row in storage.recent_trades(limit):
        side = "YES" if row["side"] else "NO"
        print(
            f"  #{row['market_id']:<5} {side:<3}  {format_usdc(row['amount']):>16}  "
            f"edge {row['edge']:+d} pp  {row['tx_status']:<8}  {row['tx_hash'] or '-'}"
        )
    print()


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for LocalOracle.

    Supports two modes:
    - Single run: Execute one cycle of the chosen workflow(s) and exit
    - Scheduled: Register cron jobs and run until interrupted

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="LocalOracle - hyperlocal weather market settlement and trading",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Settle expired markets once
  python -m localoracle.main settle

  # Run the trading agent once
  python -m localoracle.main trade

  # Run both workflows on their cron schedules
  python -m localoracle.main all --schedule

  # Show the last 10 journal entries
  python -m localoracle.main --history 10
        """
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=list(COMMAND_WORKFLOWS),
        default=COMMAND_ALL,
        help="Workflow(s) to run (default: all)"
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run in scheduled mode (SETTLEMENT_SCHEDULE / TRADING_SCHEDULE cron expressions)"
    )
    parser.add_argument(
        "--history",
        type=int,
        metavar="N",
        default=None,
        help="Print the last N journal entries and exit"
    )

    args = parser.parse_args(argv)

    config = Config.from_env()
    setup_logging(config)

    config.ensure_directories()
    storage = Storage(config.db_path)

    if args.history is not None:
        print_history(storage, args.history)
        return 0

    workflows = COMMAND_WORKFLOWS[args.command]
    if not validate_config(config, workflows):
        return 1

    runners = build_workflows(config, workflows, storage)

    if args.schedule:
        return _run_scheduled_mode(config, runners)

    return _run_single_mode(config, runners)


def _run_single_mode(config: Config, runners: dict) -> int:
    """
    Run one cycle of each workflow and exit.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    payload = CronPayload(scheduled_execution_time=datetime.now(timezone.utc))

    try:
        for runner in runners.values():
            run_cycle(runner, config, payload)
        return 0

    except MissingScheduleTimeError as e:
        logger.error(f"Trigger fault: {e}")
        return 1

    except KeyboardInterrupt:
        logger.info("Cycle interrupted by user")
        return 130


def _run_scheduled_mode(config: Config, runners: dict) -> int:
    """
    Run in scheduled mode with continuous execution.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger.info("Starting in scheduled mode")

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        stop_scheduler(wait=True)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    schedules = {
        WORKFLOW_SETTLEMENT: config.settlement_schedule,
        WORKFLOW_TRADING: config.trading_schedule,
    }
    jobs = {
        name: (schedules[name], partial(run_and_notify, runner, config))
        for name, runner in runners.items()
    }

    if not start_scheduler(jobs, timezone=config.scheduler_timezone):
        logger.error("Failed to start scheduler")
        return 1

    status = get_scheduler_status()
    for name, job in status["jobs"].items():
        logger.info(f"{name}: cron '{job['cron']}', next run {job['next_run_time'] or 'N/A'}")

    logger.info("Scheduler is running. Press Ctrl+C to stop.")

    try:
        while True:
            time.sleep(1)  # Sleep and check for signals

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        stop_scheduler(wait=True)
        return 0


if __name__ == "__main__":
    sys.exit(main())
