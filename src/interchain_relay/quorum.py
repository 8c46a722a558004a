"""
Quorum detection for side chain withdrawals.

has_enough_signatures is the authoritative check: it re-reads every
SignatureAdded event of the wallet. SignatureTally keeps a running count
fed by the aggregation watcher, so the full rescan only runs once a
transaction can actually have reached the threshold.
"""

import logging
from collections import OrderedDict
from collections.abc import Iterable
from typing import Protocol

from .models import SignatureRecord
from .utils.blockchain_encoder import BlockchainEncoder

logger = logging.getLogger(__name__)


class SignatureSource(Protocol):
    """The wallet reads the quorum check depends on."""

    def required_threshold(self, caller: str | None = None) -> int: ...

    def signature_events(
        self, from_block: int = 0, to_block: int | str = 'latest'
    ) -> list[SignatureRecord]: ...


def has_enough_signatures(wallet: SignatureSource, caller: str | None, tx_hash: str) -> bool:
    """
    Check whether a withdrawal has collected exactly the required signatures.

    Signatures are counted per event, not per signer: the contract is
    expected to reject a sealer signing the same transaction twice. The
    comparison is strict equality, so a count above the threshold reports
    False.

    Args:
        wallet: Side chain wallet holding the signatures
        caller: Address used as the sender of the threshold call
        tx_hash: Source deposit transaction hash

    Returns:
        True if the signature count equals the threshold

    Raises:
        QueryError: If the threshold or the events cannot be read
    """
    wanted = BlockchainEncoder.to_hex_hash(tx_hash)

    threshold = wallet.required_threshold(caller)
    count = sum(1 for record in wallet.signature_events(from_block=0) if record.tx_hash == wanted)

    if count > threshold:
        logger.warning(
            f"Transaction {wanted} has {count} signatures for a threshold of {threshold}"
        )

    logger.debug(f"Transaction {wanted}: {count}/{threshold} signatures")
    return count == threshold


class SignatureTally:
    """Running count of SignatureAdded events per transaction.

    Bounded like an LRU: once max_entries transactions are tracked, the
    least recently updated one is evicted. A transaction that comes back
    after an eviction may be undercounted until the next reconcile, so it
    is reported as partial.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._counts: OrderedDict[str, int] = OrderedDict()
        self._partial: set[str] = set()
        self._evicted = False

    def add(self, record: SignatureRecord) -> int:
        """Record one event and return the new count for its transaction."""
        tx_hash = record.tx_hash
        if tx_hash in self._counts:
            self._counts.move_to_end(tx_hash)
        else:
            if len(self._counts) >= self.max_entries:
                evicted, _ = self._counts.popitem(last=False)
                self._partial.discard(evicted)
                self._evicted = True
            if self._evicted:
                self._partial.add(tx_hash)
            self._counts[tx_hash] = 0

        self._counts[tx_hash] += 1
        return self._counts[tx_hash]

    def count(self, tx_hash: str) -> int:
        return self._counts.get(tx_hash, 0)

    def is_partial(self, tx_hash: str) -> bool:
        """True if earlier signatures of tx_hash may have been evicted."""
        return tx_hash in self._partial or (self._evicted and tx_hash not in self._counts)

    def reconcile(self, records: Iterable[SignatureRecord]) -> None:
        """Rebuild the tally from an authoritative list of events."""
        self._counts.clear()
        self._partial.clear()
        self._evicted = False
        for record in records:
            self.add(record)
        logger.info(f"Signature tally reconciled: {len(self._counts)} transactions")

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, tx_hash: object) -> bool:
        return tx_hash in self._counts
