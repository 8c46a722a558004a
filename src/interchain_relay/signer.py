"""
ECDSA signing of canonical digests.

Signatures are produced over the raw 32-byte digest (no personal-message
prefix) with deterministic RFC 6979 nonces, which is what the wallet
contract's ``ecrecover`` expects.
"""

import logging

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from web3 import Web3

from .exceptions import MalformedSignatureError, SigningError
from .models import Signature

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65
V_OFFSET = 27


def parse_signature(raw: bytes) -> Signature:
    """
    Split a 65-byte ``r | s | recovery_id`` signature into v, r and s.

    Args:
        raw: Raw signature, recovery id in the last byte (0 or 1)

    Returns:
        Signature with v normalized to 27 or 28

    Raises:
        MalformedSignatureError: If raw is not exactly 65 bytes
    """
    if len(raw) != SIGNATURE_LENGTH:
        raise MalformedSignatureError(
            f"Expected a {SIGNATURE_LENGTH}-byte signature, got {len(raw)} bytes"
        )

    return Signature(
        v=raw[64] + V_OFFSET,
        r=bytes(raw[0:32]),
        s=bytes(raw[32:64]),
    )


def sign(digest: bytes, private_key: bytes | str) -> Signature:
    """
    Sign a 32-byte digest with a secp256k1 private key.

    Args:
        digest: Message digest from compute_digest
        private_key: 32-byte key as bytes or hex string

    Returns:
        Parsed Signature

    Raises:
        SigningError: If the key is invalid or signing fails
    """
    try:
        key_bytes = (
            Web3.to_bytes(hexstr=private_key) if isinstance(private_key, str) else bytes(private_key)
        )
        signature = keys.PrivateKey(key_bytes).sign_msg_hash(digest)
    except (ValidationError, ValueError, TypeError) as e:
        raise SigningError(f"Sign failed: {e}") from e

    return parse_signature(signature.to_bytes())


def recover_signer(digest: bytes, signature: Signature) -> str:
    """
    Recover the checksummed address that produced a signature.

    Raises:
        SigningError: If the signature does not recover to a public key
    """
    try:
        recoverable = keys.Signature(vrs=(
            signature.v - V_OFFSET,
            int.from_bytes(signature.r, 'big'),
            int.from_bytes(signature.s, 'big'),
        ))
        public_key = recoverable.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError) as e:
        raise SigningError(f"Recover failed: {e}") from e

    return public_key.to_checksum_address()
