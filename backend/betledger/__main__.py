"""BetLedger CLI entry point."""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from betledger import __version__
from betledger.config import get_settings
from betledger.database import open_store
from betledger.engine.settlement import SettlementProcessor
from betledger.engine.transitions import StatusTransitionGuard
from betledger.errors import BetLedgerError
from betledger.models import Account
from betledger.scheduler import run_settlement_sweep, start_scheduler
from betledger.services.correction_service import CorrectionService
from betledger.services.exposure_service import ExposureService
from betledger.services.feed import create_feed_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# BetLedger Configuration
# Operational parameters for placement and settlement.
# Database URL and Logfire token belong in .env, not here.

placement:
  fancy_min_stake: 100
  fancy_max_stake: 500000
  require_live_market: true
  max_snapshot_retries: 3

settlement:
  batch_size: 50
  batch_timeout_seconds: 10
  interval_minutes: 5
  reversal_formula: legacy

feed:
  base_url: http://localhost:8080/api
  timeout_seconds: 10
  max_retries: 3
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from betledger.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


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
        print("1. Set BETLEDGER_DATABASE_URL in .env (defaults to SQLite in data/)")
        print("2. Review and customize data/config.yaml if needed")
        print("3. Run 'python -m betledger initdb' to create the tables")
        print("4. Run 'python -m betledger run' to start settlement sweeps\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== BetLedger Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Environment: {settings.environment}")
        print(f"Database: {settings.get_database_url()}\n")

        print("Placement:")
        print(f"  Fancy Stake Range: {settings.placement.fancy_min_stake} - {settings.placement.fancy_max_stake}")
        print(f"  Require Live Market: {settings.placement.require_live_market}")
        print(f"  Max Snapshot Retries: {settings.placement.max_snapshot_retries}\n")

        print("Settlement:")
        print(f"  Batch Size: {settings.settlement.batch_size}")
        print(f"  Batch Timeout: {settings.settlement.batch_timeout_seconds}s")
        print(f"  Sweep Interval: {settings.settlement.interval_minutes} min")
        print(f"  Reversal Formula: {settings.settlement.reversal_formula}\n")

        print("Feed:")
        print(f"  Base URL: {settings.feed.base_url}")
        print(f"  Timeout: {settings.feed.timeout_seconds}s")
        print(f"  Max Retries: {settings.feed.max_retries}\n")

        print(f"Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

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


def cmd_initdb(args: argparse.Namespace) -> int:
    """Create ledger tables."""
    async def _create() -> None:
        async with open_store(get_settings()):
            pass

    try:
        asyncio.run(_create())
        print("\n✓ Database tables ready\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to create tables: {e}", exc_info=True)
        print(f"\n❌ Failed to create tables: {e}\n")
        return 1


def cmd_account(args: argparse.Namespace) -> int:
    """Create or overwrite an account."""
    async def _create() -> Account:
        async with open_store(get_settings()) as store:
            return await store.create_account(
                Account(id=args.user_id, balance=Decimal(args.balance), status=args.status)
            )

    try:
        account = asyncio.run(_create())
        print(f"\n✓ Account {account.id}: balance {account.balance} ({account.status})\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to create account: {e}")
        print(f"\n❌ Failed to create account: {e}\n")
        return 1


def cmd_settle(args: argparse.Namespace) -> int:
    """Settle one event now."""
    _init_logfire()

    async def _settle():
        settings = get_settings()
        async with open_store(settings) as store, create_feed_client(settings.feed) as feed:
            processor = SettlementProcessor(store, feed, settings.settlement)
            return await processor.settle_event(args.event_id)

    try:
        print(f"\n=== Settlement: {args.event_id} ===\n")
        report = asyncio.run(_settle())

        print(f"Wagers Settled: {report.wagers_settled}")
        print(f"  Won: {report.wagers_won}")
        print(f"  Lost: {report.wagers_lost}")
        print(f"Still Pending: {report.wagers_unresolved}\n")
        if report.balance_deltas:
            print("Balance Changes:")
            for user_id, delta in sorted(report.balance_deltas.items()):
                print(f"  {user_id}: {delta:+}")
            print()

        return 0

    except Exception as e:
        logger.error(f"Settlement failed: {e}", exc_info=True)
        print(f"\n❌ Settlement failed: {e}\n")
        return 1


def cmd_sweep(args: argparse.Namespace) -> int:
    """Settle every event with pending wagers once."""
    _init_logfire()

    try:
        print("\n=== Settlement Sweep ===\n")
        reports = asyncio.run(run_settlement_sweep(get_settings()))

        if not reports:
            print("No events with pending wagers.\n")
            return 0

        for report in reports:
            if report.error:
                print(f"  ✗ {report.event_id}: {report.error}")
            else:
                print(
                    f"  ✓ {report.event_id}: {report.wagers_settled} settled, "
                    f"{report.wagers_unresolved} pending"
                )
        print()

        return 1 if any(r.error for r in reports) else 0

    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        print(f"\n❌ Sweep failed: {e}\n")
        return 1


def cmd_exposure(args: argparse.Namespace) -> int:
    """Show a user's exposure and available balance."""
    async def _load():
        async with open_store(get_settings()) as store:
            account = await store.get_account(args.user_id)
            service = ExposureService(store)
            view = await service.get_exposure_view(args.user_id)
            margins, fancy = {}, {}
            if args.event_id:
                margins = await service.get_margins(args.user_id, args.event_id)
                fancy = await service.get_fancy_exposure(args.user_id, args.event_id)
            return account, view, margins, fancy

    try:
        account, view, margins, fancy = asyncio.run(_load())
        if account is None:
            print(f"\n❌ User {args.user_id} not found\n")
            return 1

        print(f"\n=== Exposure: {args.user_id} ===\n")
        print(f"Balance: {account.balance}")
        print(f"Ordinary Exposure: {view.ordinary}")
        print(f"Fancy Exposure: {view.tiered}")
        for event_id, amount in sorted(view.tiered_by_event.items()):
            print(f"  {event_id}: {amount}")
        print(f"Available: {account.balance - view.total}\n")

        if margins:
            print(f"Margins for {args.event_id}:")
            for market_id, snapshot in sorted(margins.items()):
                print(
                    f"  {market_id} [{snapshot.selection_id}] "
                    f"profit={snapshot.profit} loss={snapshot.loss} v{snapshot.version}"
                )
            print()

        if fancy:
            print(f"Fancy Exposure for {args.event_id}:")
            for market_id, amount in sorted(fancy.items()):
                print(f"  {market_id}: {amount}")
            print()

        return 0

    except Exception as e:
        logger.error(f"Failed to load exposure: {e}")
        print(f"\n❌ Failed to load exposure: {e}\n")
        return 1


def cmd_markets(args: argparse.Namespace) -> int:
    """Show the priced market catalogue of an event."""
    async def _load():
        async with create_feed_client(get_settings().feed) as feed:
            return await feed.get_event_markets(args.event_id, args.sport_id)

    def best(levels) -> str:
        return f"{levels[0].price} x {levels[0].size}" if levels else "-"

    def show(title: str, markets) -> None:
        print(f"{title}: {len(markets)}")
        for priced in markets:
            market = priced.market
            print(f"  {market.market_id} {market.name} [{market.status}]")
            if priced.book is None:
                print("    no prices")
                continue
            for runner in priced.book.runners:
                print(
                    f"    {runner.selection_id or runner.name}: "
                    f"back {best(runner.back)} / lay {best(runner.lay)}"
                )
        print()

    try:
        catalogue = asyncio.run(_load())

        print(f"\n=== Markets: {catalogue.event_id} ===\n")
        if catalogue.event is None:
            print("Event not found in the sport's master list\n")
        if catalogue.match_odds is not None:
            print(f"Match Odds: {catalogue.match_odds.market_id} [{catalogue.match_odds.status}]\n")
        show("Bookmaker", catalogue.bookmaker)
        show("Fancy", catalogue.fancy)

        return 0

    except Exception as e:
        logger.error(f"Failed to load markets: {e}")
        print(f"\n❌ Failed to load markets: {e}\n")
        return 1


def cmd_correct(args: argparse.Namespace) -> int:
    """Manually change a wager's status."""
    async def _correct():
        settings = get_settings()
        async with open_store(settings) as store:
            guard = StatusTransitionGuard(settings.settlement.reversal_formula)
            return await CorrectionService(store, guard).change_status(args.wager_id, args.status)

    try:
        wager = asyncio.run(_correct())
        print(f"\n✓ Wager {wager.id} is now {wager.status.value}\n")
        return 0
    except BetLedgerError as e:
        print(f"\n❌ {e.message}\n")
        return 1
    except Exception as e:
        logger.error(f"Correction failed: {e}", exc_info=True)
        print(f"\n❌ Correction failed: {e}\n")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Start periodic settlement sweeps."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()

        print("\n=== BetLedger Settlement Service ===\n")
        print(f"Version: {__version__}")
        print(f"Environment: {settings.environment}")
        print(f"Sweep Interval: {settings.settlement.interval_minutes} min\n")

        if args.once:
            asyncio.run(run_settlement_sweep(settings))
            print("\nSweep complete.\n")
            return 0

        print("Starting scheduler...\n")
        start_scheduler(settings)

        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start service: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="BetLedger: wager exposure and settlement engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"BetLedger {__version__}",
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

    parser_initdb = subparsers.add_parser(
        "initdb",
        help="Create ledger database tables",
    )
    parser_initdb.set_defaults(func=cmd_initdb)

    parser_account = subparsers.add_parser(
        "account",
        help="Create or overwrite an account",
    )
    parser_account.add_argument("user_id", help="Account ID")
    parser_account.add_argument("--balance", default="0", help="Starting balance")
    parser_account.add_argument(
        "--status",
        choices=["active", "banned"],
        default="active",
        help="Account status",
    )
    parser_account.set_defaults(func=cmd_account)

    parser_settle = subparsers.add_parser(
        "settle",
        help="Settle pending wagers of one event",
    )
    parser_settle.add_argument("event_id", help="Event ID to settle")
    parser_settle.set_defaults(func=cmd_settle)

    parser_sweep = subparsers.add_parser(
        "sweep",
        help="Settle every event with pending wagers once",
    )
    parser_sweep.set_defaults(func=cmd_sweep)

    parser_exposure = subparsers.add_parser(
        "exposure",
        help="Show a user's exposure and available balance",
    )
    parser_exposure.add_argument("user_id", help="Account ID")
    parser_exposure.add_argument(
        "--event-id",
        help="Also list margins and fancy exposure for this event",
    )
    parser_exposure.set_defaults(func=cmd_exposure)

    parser_markets = subparsers.add_parser(
        "markets",
        help="Show the priced market catalogue of an event",
    )
    parser_markets.add_argument("event_id", help="Event ID")
    parser_markets.add_argument("--sport-id", required=True, help="Sport ID of the event")
    parser_markets.set_defaults(func=cmd_markets)

    parser_correct = subparsers.add_parser(
        "correct",
        help="Manually change a wager's status",
    )
    parser_correct.add_argument("wager_id", help="Wager ID")
    parser_correct.add_argument("status", choices=["pending", "won", "lost"], help="Target status")
    parser_correct.set_defaults(func=cmd_correct)

    parser_run = subparsers.add_parser(
        "run",
        help="Start periodic settlement sweeps",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.add_argument(
        "--once",
        action="store_true",
        help="Run one sweep then exit",
    )
    parser_run.set_defaults(func=cmd_run)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
