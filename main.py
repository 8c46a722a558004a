#!/usr/bin/env python3
"""Entry point for the interchain relay sealer.

Watches the main chain wallet (-m), the side chain wallet (-s) or both,
until the configured deadline expires.
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from interchain_relay.config import RelayConfig
from interchain_relay.exceptions import LedgerConnectionError
from interchain_relay.relayer import InterchainRelayer


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse startup arguments."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Interchain relay sealer - mirror deposits between the main chain and the side chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  MAIN_CHAIN_RPC_URL  - RPC endpoint of the main chain
  SIDE_CHAIN_RPC_URL  - RPC endpoint of the side chain
  MAIN_CHAIN_WALLET   - BridgeWallet contract on the main chain
  SIDE_CHAIN_WALLET   - BridgeWallet contract on the side chain
  KEYFILE_PATH        - Encrypted sealer key file
  KEYFILE_PASSWORD    - Key file passphrase (prompted when unset)
  PRIVATE_KEY         - Raw sealer key, instead of a key file
  WATCH_MAIN_CHAIN    - Relay main chain deposits (default: true)
  WATCH_SIDE_CHAIN    - Relay side chain deposits (default: true)
  FROM_BLOCK          - First block to scan (default: 0)
  TO_BLOCK            - Last block to scan (default: follow the head)
  DEADLINE            - Seconds before shutdown, 0 for none (default: 120)
  POLLING_INTERVAL    - Event polling interval (default: 12)
  GAS_LIMIT           - Gas limit of submissions (default: 300000)
  REQUEST_TIMEOUT     - HTTP request timeout in seconds (default: 30)
  RECEIPT_TIMEOUT     - Seconds to wait for a receipt (default: 30)
  QUEUE_SIZE          - Events waiting for submission per pipeline (default: 100)
  SCAN_MODE           - "logs" (eth_getLogs) or "blocks" (block walk) (default: logs)
  LOG_LEVEL           - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "-m", "--mainchain",
        action="store_true",
        default=False,
        help="Watch the main chain wallet (mc2sc)"
    )
    parser.add_argument(
        "-s", "--sidechain",
        action="store_true",
        default=False,
        help="Watch the side chain wallet (sc2mc)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    return parser.parse_args(argv)


async def main() -> None:
    """Main entry point for the interchain relay.

    Raises:
        SystemExit: On configuration or connection errors
    """
    args: argparse.Namespace = parse_args()

    # Set up logging with specified level
    setup_logging(args.log_level)

    logger.info("=== Interchain Relay Starting ===")

    # Flags select the watched chains, none given falls back to the environment
    overrides: dict = {}
    if args.mainchain or args.sidechain:
        overrides = {"watch_main_chain": args.mainchain, "watch_side_chain": args.sidechain}

    if os.environ.get("KEYFILE_PATH") and "KEYFILE_PASSWORD" not in os.environ:
        overrides["keyfile_password"] = getpass.getpass("Key file passphrase: ")

    try:
        config: RelayConfig = RelayConfig.from_env(**overrides)
        config.log_config()

        relayer: InterchainRelayer = InterchainRelayer(config, config.sealer.load_private_key())
        relayer.check_connections()
        await relayer.run()

    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - MAIN_CHAIN_RPC_URL / SIDE_CHAIN_RPC_URL: chain RPC endpoints")
        logger.error("  - MAIN_CHAIN_WALLET / SIDE_CHAIN_WALLET: wallet contract addresses")
        logger.error("  - KEYFILE_PATH and KEYFILE_PASSWORD, or PRIVATE_KEY")
        sys.exit(1)

    except LedgerConnectionError as e:
        logger.error(f"Connection Error: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        if 'relayer' in locals():
            relayer.stop()

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
