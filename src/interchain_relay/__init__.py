"""
Interchain relay package.

Sealer service for a two-chain asset bridge: watches Deposit events on
both wallets, attests withdrawals and forwards them once signed by quorum.
"""

from .config import RelayConfig
from .event_processor import EventProcessor, SignatureAggregator
from .message_hash import compute_digest
from .models import DepositEvent, DepositInfo, Direction, Signature
from .relayer import InterchainRelayer
from .signer import parse_signature, sign

__all__ = [
    "RelayConfig",
    "InterchainRelayer",
    "EventProcessor",
    "SignatureAggregator",
    "DepositEvent",
    "DepositInfo",
    "Direction",
    "Signature",
    "compute_digest",
    "parse_signature",
    "sign",
]
__version__ = "0.1.0"
