"""
Deposit scanning for the wallet contracts.

Turns raw ledger logs into DepositInfo records. Two strategies are provided:

- scan_deposits: a single log query over a block range (the hot path)
- scan_block_deposits: walks the range block by block and inspects the
  receipts of transactions sent to the wallet, for endpoints that do not
  serve log filters over long ranges

Both are lazy, finite generators that share no state between calls, so the
two pipelines can scan their chains concurrently.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from .exceptions import DecodeError, TransientReadError
from .models import DepositEvent, DepositInfo
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)

DEPOSIT_EVENT_SIGNATURE = "Deposit(address,address,uint256)"
DEPOSIT_TOPIC: bytes = bytes(Web3.keccak(text=DEPOSIT_EVENT_SIGNATURE))
DEPOSIT_TOPIC_COUNT = 3  # signature + sender + receiver


def decode_deposit_log(log: Mapping[str, Any]) -> DepositEvent | None:
    """
    Decode a single raw log into a DepositEvent.

    The unindexed payload carries the value, the indexed sender and receiver
    are read from topics 1 and 2.

    Args:
        log: Raw log entry (eth_getLogs or receipt format)

    Returns:
        DepositEvent, or None if the log is not a deposit

    Raises:
        DecodeError: If the log looks like a deposit but cannot be decoded
    """
    data = BlockchainEncoder.to_bytes_safe(log.get('data'))
    if not data:
        return None

    try:
        (value,) = decode(['uint256'], data)
    except DecodingError as e:
        raise DecodeError(f"Cannot decode deposit payload 0x{data.hex()}: {e}") from e

    topics = list(log.get('topics') or [])
    if len(topics) != DEPOSIT_TOPIC_COUNT:
        return None
    if BlockchainEncoder.to_bytes_safe(topics[0]) != DEPOSIT_TOPIC:
        return None

    try:
        sender = BlockchainEncoder.topic_to_address(topics[1])
        receiver = BlockchainEncoder.topic_to_address(topics[2])
    except ValueError as e:
        raise DecodeError(f"Invalid indexed address in deposit log: {e}") from e

    return DepositEvent(sender=sender, receiver=receiver, value=value)


def get_deposit_event(
    logs: Iterable[Mapping[str, Any]],
    contract_address: str | None = None,
) -> DepositEvent | None:
    """
    Return the first deposit found in a transaction's logs.

    Args:
        logs: Receipt logs
        contract_address: If given, only logs emitted by this contract count

    Returns:
        The first DepositEvent, or None if the transaction made no deposit
    """
    wanted = Web3.to_checksum_address(contract_address) if contract_address else None

    for log in logs:
        if wanted and Web3.to_checksum_address(log.get('address', '')) != wanted:
            continue
        try:
            event = decode_deposit_log(log)
        except DecodeError as e:
            logger.warning(f"Skipping undecodable log: {e}")
            continue
        if event is not None:
            return event

    return None


def scan_deposits(
    w3: Web3,
    contract_address: str,
    from_block: int,
    to_block: int,
) -> Iterator[DepositInfo]:
    """
    Yield every deposit emitted by a wallet contract within a block range.

    Args:
        w3: Web3 connection to the ledger
        contract_address: Wallet contract address
        from_block: First block, inclusive
        to_block: Last block, inclusive

    Yields:
        DepositInfo records in ledger log order

    Raises:
        TransientReadError: If the log query itself fails
    """
    address = Web3.to_checksum_address(contract_address)

    try:
        logs = w3.eth.get_logs({
            'address': address,
            'fromBlock': from_block,
            'toBlock': to_block,
        })
    except Exception as e:
        raise TransientReadError(
            f"Failed to get logs of {address} in blocks {from_block}-{to_block}: {e}"
        ) from e

    found = 0
    skipped = 0
    for log in logs:
        try:
            event = decode_deposit_log(log)
        except DecodeError as e:
            logger.warning(f"Skipping log in block {log.get('blockNumber')}: {e}")
            skipped += 1
            continue

        if event is None:
            skipped += 1
            continue

        found += 1
        yield DepositInfo(
            event=event,
            tx_hash=BlockchainEncoder.to_hex_hash(log['transactionHash']),
            block_number=log['blockNumber'],
        )

    logger.debug(
        f"Deposit scan of {address} blocks {from_block}-{to_block} complete: "
        f"{found} deposits, {skipped} other logs"
    )


def scan_block_deposits(
    w3: Web3,
    wallet_address: str,
    from_block: int,
    to_block: int,
) -> Iterator[DepositInfo]:
    """
    Walk a block range and yield deposits made by transactions to the wallet.

    A block or receipt that cannot be read is logged and skipped, the walk
    continues with the next unit.

    Args:
        w3: Web3 connection to the ledger
        wallet_address: Wallet contract address
        from_block: First block, inclusive
        to_block: Last block, inclusive

    Yields:
        DepositInfo records in block and transaction order
    """
    wallet = Web3.to_checksum_address(wallet_address)

    for block_number in range(from_block, to_block + 1):
        try:
            block = w3.eth.get_block(block_number, full_transactions=True)
        except Exception as e:
            logger.warning(f"Can't get block {block_number}: {e}")
            continue

        for index, tx in enumerate(block.get('transactions', [])):
            to = tx.get('to')
            if not to or Web3.to_checksum_address(to) != wallet:
                continue

            tx_hash = BlockchainEncoder.to_hex_hash(tx['hash'])
            try:
                receipt = w3.eth.get_transaction_receipt(tx_hash)
            except Exception as e:
                logger.warning(f"Can't get receipt of {tx_hash} in block {block_number}: {e}")
                continue

            event = get_deposit_event(receipt.get('logs', []), wallet)
            if event is None:
                logger.info(f"No deposit event in transaction {block_number}:{index} ({tx_hash})")
                continue

            yield DepositInfo(event=event, tx_hash=tx_hash, block_number=block_number)

    logger.debug(f"Block walk of {wallet} blocks {from_block}-{to_block} complete")
