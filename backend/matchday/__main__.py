"""MatchDay settlement engine CLI entry point."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from matchday import __version__
from matchday.config import get_settings
from matchday.scheduler import start_scheduler
from matchday.settlement import open_engine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# MatchDay Settlement Configuration
# Operational parameters only. API keys and secrets belong in .env.

resolution:
  typical_duration_minutes: 95
  recheck_offsets_minutes: [0, 5, 10, 20]
  recheck_interval_minutes: 10
  hard_cutoff_hours: 3
  lookback_hours: 48
  backlog_retry_minutes: 10

cancellation:
  grace_period_minutes: 60
  sweep_interval_minutes: 15
  reason: "Match postponed - auto-cancelled"

scheduler:
  ingestion_hour_utc: 6
  ingest_on_startup: true
  close_check_minutes: 1
  pending_cleanup_minutes: 5
  pending_bet_timeout_minutes: 5

ledger:
  paper_mode: true
  max_batch_size: 50

api:
  host: 127.0.0.1
  port: 8000
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from matchday.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _run_with_engine(action):
    async def runner():
        async with open_engine(get_settings()) as engine:
            return await action(engine)

    return asyncio.run(runner())


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory and configuration file."""
    data_dir = Path("data").resolve()

    try:
        data_dir.mkdir(exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Add your API keys and ledger credential to .env")
        print("2. Review and customize data/config.yaml if needed")
        print("3. Run 'python -m matchday config' to verify configuration")
        print("4. Run 'python -m matchday run' to start the engine\n")
        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== MatchDay Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Database: {settings.resolved_database_url}\n")

        r = settings.resolution
        print("Resolution:")
        print(f"  Typical Duration: {r.typical_duration_minutes} min")
        print(f"  Recheck Offsets: {r.recheck_offsets_minutes} min, then every {r.recheck_interval_minutes} min")
        print(f"  Hard Cutoff: {r.hard_cutoff_hours}h after kickoff")
        print(f"  Lookback: {r.lookback_hours}h")
        print(f"  Backlog Retry: {r.backlog_retry_minutes} min\n")

        c = settings.cancellation
        print("Cancellation:")
        print(f"  Grace Period: {c.grace_period_minutes} min")
        print(f"  Sweep Interval: {c.sweep_interval_minutes} min\n")

        s = settings.scheduler
        print("Scheduler:")
        print(f"  Daily Ingestion: {s.ingestion_hour_utc:02d}:00 UTC")
        print(f"  Betting Close Check: {s.close_check_minutes} min")
        print(f"  Pending Bet Cleanup: {s.pending_cleanup_minutes} min\n")

        print("Ledger:")
        print(f"  Paper Mode: {settings.ledger.paper_mode}")
        print(f"  Max Batch Size: {settings.ledger.max_batch_size}\n")

        print("API Keys:")
        print(f"  Football Data: {'✓ Set' if settings.football_api_key else '✗ Not set'}")
        print(f"  Ledger Key: {'✓ Set' if settings.ledger_api_key else '✗ Not set'}")
        print(f"  Ledger Private Key: {'✓ Set' if settings.get_ledger_private_key() else '✗ Not set'}")
        print(f"  Telegram: {'✓ Set' if settings.telegram_bot_token else '✗ Not set'}")
        print(f"  Admin Token: {'✓ Set' if settings.admin_api_token else '✗ Not set'}")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")
        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display tracked events and settlement state."""

    async def show(engine):
        return await engine.status(), await engine.store.list_settlement_backlog()

    try:
        status, backlog = _run_with_engine(show)

        print("\n=== MatchDay Settlement Status ===\n")
        print("Events by status:")
        if status["events"]:
            for name, count in sorted(status["events"].items()):
                print(f"  {name}: {count}")
        else:
            print("  (None)")
        print(f"\nAwaiting result: {status['awaiting_result']}")
        print(f"Settlement backlog: {status['settlement_backlog']}")
        for event in backlog[:5]:
            print(f"  • {event.label} (ledger {event.ledger_id}, {event.outcome.label})")
        if len(backlog) > 5:
            print(f"  ... and {len(backlog) - 5} more")
        print()
        return 0

    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


def cmd_ingest(args: argparse.Namespace) -> int:
    """Fetch today's fixtures into the store."""
    _init_logfire()

    try:
        result = _run_with_engine(lambda engine: engine.run_ingestion())
        print(f"\n✓ Ingestion complete: {result.fetched} fixtures "
              f"({result.created} new, {result.updated} updated)\n")
        return 0
    except Exception as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        print(f"\n❌ Ingestion failed: {e}\n")
        return 1


def cmd_poll(args: argparse.Namespace) -> int:
    """Run one resolution poll cycle now."""
    _init_logfire()

    try:
        result = _run_with_engine(lambda engine: engine.run_poll_cycle())
        if result is None:
            print("\n❌ Poll cycle failed, see logs\n")
            return 1

        print("\n=== Resolution Poll ===\n")
        print(f"Events checked: {result.checked}")
        print(f"Newly resolved: {len(result.resolved)}")
        for resolved in result.resolved:
            print(f"  • {resolved.home_team} {resolved.home_score}-"
                  f"{resolved.away_score} {resolved.away_team} ({resolved.outcome.label})")
        print(f"Settled on ledger: {len(result.dispatch.settled_ids)}")
        print(f"Failed (will retry): {len(result.dispatch.failed_ids)}\n")
        return 0
    except Exception as e:
        logger.error(f"Poll failed: {e}", exc_info=True)
        print(f"\n❌ Poll failed: {e}\n")
        return 1


def cmd_sweep(args: argparse.Namespace) -> int:
    """Run the stale-event cancellation sweep now."""
    _init_logfire()

    try:
        result = _run_with_engine(lambda engine: engine.run_stale_sweep())
        print("\n=== Stale Event Sweep ===\n")
        print(f"Eligible: {result.candidates}")
        print(f"Cancelled: {len(result.cancelled)}")
        for cancelled in result.cancelled:
            print(f"  • {cancelled.home_team} vs {cancelled.away_team} ({cancelled.competition})")
        print(f"Reconciled: {len(result.reconciled_ids)}")
        print(f"Skipped (resolved on ledger): {len(result.skipped_resolved_ids)}")
        print(f"Failed: {len(result.failed_ids)}\n")
        return 0
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        print(f"\n❌ Sweep failed: {e}\n")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Start the settlement engine."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()

        print("\n=== MatchDay Settlement Engine ===\n")
        print(f"Version: {__version__}")
        print(f"Ledger: {'PAPER' if settings.ledger.paper_mode else 'LIVE'}")
        print(f"Data Directory: {settings.data_dir}")
        if args.api:
            print(f"Admin API: http://{settings.api.host}:{settings.api.port}")
        print()

        print("Starting scheduler...\n")
        start_scheduler(settings, serve_api=args.api)
        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start engine: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="MatchDay: resolution scheduling and batch settlement for match bets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"MatchDay {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration file",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display tracked events and settlement backlog",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_ingest = subparsers.add_parser(
        "ingest",
        help="Fetch today's fixtures now",
    )
    parser_ingest.set_defaults(func=cmd_ingest)

    parser_poll = subparsers.add_parser(
        "poll",
        help="Run one resolution poll cycle now",
    )
    parser_poll.set_defaults(func=cmd_poll)

    parser_sweep = subparsers.add_parser(
        "sweep",
        help="Run the stale-event cancellation sweep now",
    )
    parser_sweep.set_defaults(func=cmd_sweep)

    parser_run = subparsers.add_parser(
        "run",
        help="Start the settlement engine",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.add_argument(
        "--api",
        action="store_true",
        help="Serve the admin API alongside the scheduler",
    )
    parser_run.set_defaults(func=cmd_run)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
