"""
Canonical message hashing for withdrawal attestations.

The digest is the Solidity ``keccak256(abi.encodePacked(...))`` of

    0x19 | version | contractAddress | txHash | receiver | value | data

so that the wallet contract can recompute it and ``ecrecover`` the sealers'
signatures. Every sealer derives the same digest from the same deposit.
"""

from web3 import Web3

from .utils.blockchain_encoder import BlockchainEncoder

MESSAGE_PREFIX = b'\x19'
SIGNATURE_VERSION = 1

DIGEST_ABI_TYPES = [
    'bytes1',   # prefix
    'uint8',    # version
    'address',  # wallet contract
    'bytes32',  # source transaction hash
    'address',  # receiver
    'uint256',  # value
    'bytes',    # data
]


def compute_digest(
    contract_address: str,
    tx_hash: bytes | str,
    receiver: str,
    value: int,
    data: bytes = b'',
    version: int = SIGNATURE_VERSION,
) -> bytes:
    """
    Compute the canonical digest a sealer signs for one withdrawal.

    Args:
        contract_address: Wallet contract that verifies the signature
        tx_hash: Hash of the deposit transaction on the source chain
        receiver: Address credited by the withdrawal
        value: Amount in wei
        data: Opaque call data, usually empty
        version: Message format version

    Returns:
        32-byte Keccak-256 digest
    """
    return bytes(Web3.solidity_keccak(
        DIGEST_ABI_TYPES,
        [
            MESSAGE_PREFIX,
            version,
            Web3.to_checksum_address(contract_address),
            BlockchainEncoder.to_bytes_safe(tx_hash),
            Web3.to_checksum_address(receiver),
            value,
            data,
        ],
    ))
