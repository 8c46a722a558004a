#!/usr/bin/env python3
"""Deposit tool for the bridge wallets.

Locks value in the wallet of the origin chain for a receiver on the other
chain. The sealers watching that wallet then relay the deposit.
"""

import argparse
import getpass
import logging
import sys

from web3 import Web3

from .exceptions import LedgerConnectionError, SubmissionError
from .utils.contract_utility import ContractUtility
from .utils.key_utility import KeyUtility
from .wallet import WalletClient

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse deposit arguments."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Deposit value in a bridge wallet for a receiver on the other chain"
    )
    parser.add_argument("-k", "--keyjson", required=True, help="Path to the encrypted JSON key file of the sender")
    parser.add_argument("-p", "--password", help="Key file passphrase (prompted when omitted)")
    parser.add_argument("-e", "--endpoint", required=True, help="RPC endpoint of the origin chain")
    parser.add_argument("-w", "--wallet", required=True, help="Bridge wallet contract on the origin chain")
    parser.add_argument("-r", "--receiver", required=True, help="Receiver address on the target chain")
    parser.add_argument("-v", "--value", required=True, type=int, help="Value (wei) to transfer to the receiver")
    parser.add_argument("--gas-limit", type=int, default=300000, help="Gas limit of the deposit (default: 300000)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )

    args = parser.parse_args(argv)
    if args.value < 0:
        parser.error(f"value must be non-negative, got {args.value}")
    if not Web3.is_address(args.receiver):
        parser.error(f"invalid receiver address: {args.receiver}")
    if not Web3.is_address(args.wallet):
        parser.error(f"invalid wallet address: {args.wallet}")
    return args


def send_deposit(
    endpoint: str,
    wallet_address: str,
    receiver: str,
    value: int,
    private_key: str,
    gas_limit: int = 300000
) -> str:
    """
    Send a deposit transaction and wait for its receipt.

    Returns:
        Hash of the deposit transaction

    Raises:
        LedgerConnectionError: If the endpoint cannot be reached
        SubmissionError: If the deposit is rejected
    """
    contract_util = ContractUtility(rpc_url=endpoint, secret=private_key)
    chain_id = contract_util.ensure_connected()

    wallet = WalletClient(contract_util, wallet_address, gas_limit=gas_limit)
    logger.info(f"Depositing {value} wei in {wallet.address} (chain id {chain_id}) for {receiver}")

    tx_hash = wallet.deposit(receiver, value)
    logger.info(f"Transaction sent: {tx_hash}")
    return tx_hash


def main(argv: list[str] | None = None) -> int:
    """Run the deposit tool, returning the process exit code."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    password = args.password if args.password is not None else getpass.getpass("Enter your passphrase: ")

    try:
        private_key = KeyUtility(args.keyjson).fetch_key(password)
        send_deposit(
            endpoint=args.endpoint,
            wallet_address=args.wallet,
            receiver=args.receiver,
            value=args.value,
            private_key=private_key,
            gas_limit=args.gas_limit
        )

    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration Error: {e}")
        return 1

    except LedgerConnectionError as e:
        logger.error(f"Connection Error: {e}")
        return 1

    except SubmissionError as e:
        logger.error(f"Deposit error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
