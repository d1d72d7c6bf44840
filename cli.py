#!/usr/bin/env python3
"""
CLI script for running one update cycle without the web interface.

Useful for backfilling an account, scheduled jobs, or debugging a feed.

Usage:
    python cli.py mainnet terra1...
    python cli.py testnet terra1... --namespace token
    python cli.py mainnet terra1... --force --json-output
    python cli.py mainnet terra1... --plain
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from collectors.models import AssetClass
from config.loader import ConfigurationManager
from config.models import Config
from core.exceptions import LedgerSyncError
from core.logging import configure_logging
from core.services import build_services

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Build the argument parser and parse ``argv``."""
    parser = argparse.ArgumentParser(
        description="Ledger Sync - one-shot update of an interaction aggregate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Update the NFT aggregate of an account on mainnet
  python cli.py mainnet terra1pa9tyjtxv0qd5pgqyu6ugtedds0d42wt5rxk4w

  # Rescan CW20 interactions from scratch
  python cli.py mainnet terra1... --namespace token --force

  # Only print what is stored
  python cli.py mainnet terra1... --plain
        """
    )

    parser.add_argument("network", help="Network name (e.g. mainnet, testnet)")
    parser.add_argument("address", help="Account address")

    parser.add_argument(
        "--namespace", "-n",
        choices=[asset_class.value for asset_class in AssetClass],
        default=AssetClass.NFT.value,
        help="Asset class to synchronize (default: nft)"
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="JSON configuration file; ./config.json is used when present"
    )

    parser.add_argument(
        "--env-file", "-e",
        type=str,
        default="./.env",
        help="dotenv file read before the environment"
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--force",
        action="store_true",
        help="Discard the stored aggregate and rescan from scratch"
    )
    mode.add_argument(
        "--plain",
        action="store_true",
        help="Print the stored aggregate without updating"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log at DEBUG level"
    )

    parser.add_argument(
        "--json-output",
        action="store_true",
        help="Print the full result as JSON instead of a summary"
    )

    return parser.parse_args(argv)


def load_configuration(config_path: Optional[str], env_file: str) -> Config:
    return ConfigurationManager(config_path=config_path, env_file=env_file).load_config()


async def run_update(config: Config, args: argparse.Namespace) -> dict:
    """Run one update (or plain read) and return the result.

    Returns:
        Dictionary with the key, status and aggregate.
    """
    services = await build_services(config)
    try:
        network = services.validate_network(args.network)
        asset_class = AssetClass(args.namespace)

        if args.plain:
            aggregate = await services.controller.get(asset_class, network, args.address)
            return {"status": "plain", "aggregate": aggregate.to_dict()}

        outcome = await services.controller.update(
            asset_class, network, args.address, force=args.force
        )
        return outcome.to_dict()
    finally:
        await services.close()


def print_results(results: dict, json_output: bool = False) -> None:
    """Write the result as JSON or as a short human readable report."""
    if json_output:
        print(json.dumps(results, indent=2, default=str))
        return

    aggregate = results["aggregate"]
    txs = aggregate["txs"]

    print("\n" + "=" * 60)
    print("UPDATE RESULTS")
    print("=" * 60)
    if results.get("key"):
        print(f"Key: {results['key']}")
    print(f"Status: {results['status']}")
    print(f"State: {aggregate['state']}")
    print(f"Scanned ids: {txs['external']['oldest']} .. {txs['external']['newest']}")
    if txs["internal"]["oldest"] is not None:
        print(f"Gap: {txs['internal']['oldest']} .. {txs['internal']['newest']}")

    print(f"\nInteracted contracts ({len(aggregate['interacted_contracts'])}):")
    for contract in aggregate["interacted_contracts"]:
        marker = "*" if contract in aggregate["owned_tokens"] else " "
        print(f"  {marker} {contract}")

    for phase in results.get("phases", []):
        flags = [
            name for name in ("has_timed_out", "has_error", "was_cancelled") if phase.get(name)
        ]
        print(
            f"\nPhase {phase['phase']}: {phase['pages_fetched']} page(s)"
            + (f" [{', '.join(flags)}]" if flags else "")
        )

    print("=" * 60 + "\n")


def main(argv: Optional[list[str]] = None) -> int:
    """Run the command and map the outcome to an exit code.

    Returns:
        Exit code (0 for a Full aggregate, 2 for Partial, 1 for failure).
    """
    args = parse_args(argv)

    configure_logging(
        level="DEBUG" if args.verbose else "INFO",
        fmt="text",
        service_name="ledger-sync-cli"
    )

    try:
        config = load_configuration(args.config, args.env_file)
        results = asyncio.run(run_update(config, args))
        print_results(results, json_output=args.json_output)

        if results["aggregate"]["state"] == "Partial":
            logger.warning("Update finished with a partial aggregate")
            return 2
        return 0

    except FileNotFoundError as e:
        logger.error(f"Missing configuration file: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ValidationError, ValueError) as e:
        logger.error(f"Rejected configuration: {e}")
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1
    except LedgerSyncError as e:
        logger.error(f"Update failed: {e.message}", extra={"error_type": type(e).__name__})
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Update interrupted by user")
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
