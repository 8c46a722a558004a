#!/usr/bin/env python3
"""Data models for the interchain relay.

This module provides immutable data classes for the deposits, signatures
and aggregated withdrawals that flow between the main chain and the
side chain wallets.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Direction(Enum):
    """Relay direction, also used as the log tag of a pipeline."""

    MAIN_TO_SIDE = "mc2sc"
    SIDE_TO_MAIN = "sc2mc"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class DepositEvent:
    """A decoded Deposit event.

    A zero value is a legitimate deposit. The absence of a deposit is
    represented by ``None`` wherever a DepositEvent is expected.

    Attributes:
        sender: Checksummed address that locked the funds
        receiver: Checksummed address credited on the other chain
        value: Deposited amount in wei
    """

    sender: str
    receiver: str
    value: int


@dataclass(frozen=True, slots=True)
class DepositInfo:
    """A deposit paired with the transaction that emitted it.

    Attributes:
        event: The decoded deposit
        tx_hash: 0x-prefixed hash of the emitting transaction
        block_number: Block that contains the transaction
    """

    event: DepositEvent
    tx_hash: str
    block_number: int

    def __str__(self) -> str:
        return (
            f"DepositInfo(tx={self.tx_hash[:10]}..., "
            f"block={self.block_number}, "
            f"receiver={self.event.receiver}, "
            f"value={self.event.value})"
        )


@dataclass(frozen=True, slots=True)
class Signature:
    """The v/r/s decomposition of a recoverable ECDSA signature.

    Attributes:
        v: Recovery id plus 27, either 27 or 28
        r: 32-byte r component
        s: 32-byte s component
    """

    v: int
    r: bytes
    s: bytes

    def as_tuple(self) -> tuple[int, bytes, bytes]:
        return (self.v, self.r, self.s)


@dataclass(frozen=True, slots=True)
class SignatureRecord:
    """A SignatureAdded event read back from the side chain wallet."""

    tx_hash: str
    signer: str
    block_number: int


@dataclass(frozen=True, slots=True)
class AggregatedTransaction:
    """Withdrawal details and collected signatures for one deposit.

    Mirrors the return value of ``getAggregatedSignatures`` and is the
    argument set of ``finalizeWithdrawal``.
    """

    destination: str
    value: int
    data: bytes
    v: list[int]
    r: list[bytes]
    s: list[bytes]

    @property
    def signature_count(self) -> int:
        return len(self.v)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "destination": self.destination,
            "value": self.value,
            "data": "0x" + self.data.hex(),
            "signatures": self.signature_count,
        }
