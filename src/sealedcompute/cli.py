#!/usr/bin/env python3
"""
SealedCompute CLI.

Provides a single entry point for local client operations:
- Running the confidential swap demo against an in-process cluster
- Configuration management

Usage:
    # Demo
    sealedcompute demo --amount 10000000 --min-output 8000000

    # Configuration
    sealedcompute config create --output client.yaml
    sealedcompute config validate client.yaml
    sealedcompute config show client.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .version import sealedcompute_version

# Configure logging early
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sealedcompute")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="sealedcompute",
        description="SealedCompute: confidential computation client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the swap demo against a local cluster
  sealedcompute demo --amount 10000000 --min-output 8000000

  # Create default configuration
  sealedcompute config create --output client.yaml

  # Validate configuration
  sealedcompute config validate client.yaml
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {sealedcompute_version()}",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Demo command
    demo_parser = subparsers.add_parser(
        "demo",
        help="Run a confidential swap against a local cluster",
    )
    _add_demo_args(demo_parser)

    # Config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_create = config_subparsers.add_parser("create", help="Create configuration")
    config_create.add_argument(
        "--output", "-o",
        type=str,
        default="sealedcompute.yaml",
        help="Output path (.yaml, .yml or .json)",
    )
    config_create.add_argument(
        "--context",
        type=str,
        default="default",
        help="Cluster context",
    )

    config_validate = config_subparsers.add_parser("validate", help="Validate configuration")
    config_validate.add_argument("config_path", type=str, help="Path to configuration file")

    config_show = config_subparsers.add_parser("show", help="Show configuration")
    config_show.add_argument("config_path", type=str, help="Path to configuration file")

    args = parser.parse_args(argv)

    # Set verbosity
    if args.verbose >= 2:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.verbose >= 1:
        logging.getLogger().setLevel(logging.INFO)
    else:
        logging.getLogger().setLevel(logging.WARNING)

    if args.command is None:
        parser.print_help()
        return 0

    handlers = {
        "demo": _handle_demo,
        "config": _handle_config,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Command failed: {e}")
        return 1


def _add_demo_args(parser: argparse.ArgumentParser) -> None:
    """Add demo arguments."""
    parser.add_argument(
        "--amount",
        type=int,
        default=10_000_000,
        help="Swap input amount",
    )
    parser.add_argument(
        "--min-output",
        type=int,
        default=8_000_000,
        help="Minimum acceptable output amount",
    )
    parser.add_argument(
        "--submitter",
        type=str,
        default="demo-user",
        help="Submitter identity",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Client configuration file",
    )
    parser.add_argument(
        "--finalize-delay",
        type=float,
        default=0.1,
        help="Simulated cluster latency in seconds",
    )


def _handle_demo(args: argparse.Namespace) -> int:
    """Handle demo command."""
    from .client import ConfidentialComputeClient
    from .compute.local import LocalExecutionSubstrate, compute_swap
    from .config import SealedComputeConfig, load_config
    from .errors import SealedComputeError

    config = load_config(args.config) if args.config else SealedComputeConfig()

    async def _run() -> List[int]:
        substrate = LocalExecutionSubstrate(finalize_delay=args.finalize_delay)
        substrate.register_handler("compute_swap", compute_swap)
        try:
            async with ConfidentialComputeClient(substrate, config) as client:
                return await client.run(
                    "compute_swap",
                    [args.amount, args.min_output],
                    args.submitter,
                )
        finally:
            await substrate.aclose()

    print("SealedCompute Swap Demo")
    print("=" * 50)
    print(f"  amount:     {args.amount}")
    print(f"  min output: {args.min_output}")

    try:
        execute, withdraw_amount = asyncio.run(_run())
    except SealedComputeError as e:
        print(f"\n[FAIL] {e}")
        return 1

    print("\nDecrypted result:")
    print(f"  execute:         {execute}")
    print(f"  withdraw amount: {withdraw_amount}")
    return 0


def _handle_config(args: argparse.Namespace) -> int:
    """Handle config command."""
    if args.config_command == "create":
        return _handle_config_create(args)
    elif args.config_command == "validate":
        return _handle_config_validate(args)
    elif args.config_command == "show":
        return _handle_config_show(args)
    else:
        logger.error("Subcommand required: create, validate, or show")
        return 1


def _handle_config_create(args: argparse.Namespace) -> int:
    """Handle config create command."""
    from .config import create_default_config, save_config

    config = create_default_config(cluster_context=args.context)
    save_config(config, args.output)
    logger.info(f"Configuration saved to {args.output}")
    return 0


def _handle_config_validate(args: argparse.Namespace) -> int:
    """Handle config validate command."""
    from .config import load_config

    try:
        config = load_config(args.config_path, validate=False)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load config: {e}")
        return 1

    has_errors = False
    for issue in config.validate():
        if issue.startswith("error:"):
            logger.error(issue)
            has_errors = True
        else:
            logger.warning(issue)

    if has_errors:
        logger.error("Configuration validation FAILED")
        return 1

    logger.info("Configuration is valid")
    return 0


def _handle_config_show(args: argparse.Namespace) -> int:
    """Handle config show command."""
    from .config import load_config

    try:
        config = load_config(args.config_path, validate=False)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to load config: {e}")
        return 1

    print(json.dumps(config.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
