"""
Blockchain encoding utilities for the interchain relay.

This module normalizes the raw values returned by different providers
(HexBytes, bytes or hex strings) into the byte and address forms used by
the scanner, the signer and the wallet client.
"""

import logging
from typing import Union

from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)


class BlockchainEncoder:
    """Utilities for encoding and decoding log fields."""

    ADDRESS_TOPIC_PADDING = 12  # 32-byte topic minus 20-byte address

    @staticmethod
    def to_bytes_safe(value: Union[HexBytes, bytes, str, None]) -> bytes:
        """
        Safely convert value to bytes, handling HexBytes, bytes, and hex strings.

        Args:
            value: Value to convert (HexBytes, bytes, hex string or None)

        Returns:
            Bytes representation, empty for None or "0x"
        """
        if value is None:
            return b''
        if isinstance(value, HexBytes):
            return bytes(value)
        elif isinstance(value, bytes):
            return value
        else:
            return Web3.to_bytes(hexstr=value)

    @staticmethod
    def to_hex_hash(value: Union[HexBytes, bytes, str]) -> str:
        """
        Normalize a 32-byte hash to a lowercase 0x-prefixed hex string.

        Args:
            value: Hash as HexBytes, bytes or hex string (with or without 0x)

        Returns:
            0x-prefixed hex string
        """
        raw = BlockchainEncoder.to_bytes_safe(value)
        if len(raw) != 32:
            raise ValueError(f"Expected a 32-byte hash, got {len(raw)} bytes")
        return '0x' + raw.hex()

    @staticmethod
    def topic_to_address(topic: Union[HexBytes, bytes, str]) -> str:
        """
        Extract the right-aligned address from an indexed 32-byte topic.

        Args:
            topic: 32-byte topic value

        Returns:
            Checksummed address

        Raises:
            ValueError: If the topic is not 32 bytes or its padding is not zero
        """
        raw = BlockchainEncoder.to_bytes_safe(topic)
        if len(raw) != 32:
            raise ValueError(f"Expected a 32-byte topic, got {len(raw)} bytes")

        padding = BlockchainEncoder.ADDRESS_TOPIC_PADDING
        if any(raw[:padding]):
            raise ValueError(f"Topic is not a padded address: 0x{raw.hex()}")

        return Web3.to_checksum_address(raw[padding:])

    @staticmethod
    def address_to_topic(address: str) -> bytes:
        """Left-pad an address to a 32-byte topic."""
        return Web3.to_bytes(hexstr=address).rjust(32, b'\0')
