"""
Event processors for the interchain relay.

This module contains the logic that turns discovered events into wallet
submissions, keeping it separate from the scanning and task orchestration
in relayer.py:

- EventProcessor handles DepositInfo records for one direction
- SignatureAggregator handles SignatureAdded events and finalizes
  withdrawals on the main chain once quorum is reached

Ledger calls are blocking web3 calls, they run in worker threads so a slow
endpoint only stalls the task that is waiting on it.
"""

import asyncio
import logging
from collections import OrderedDict

from .exceptions import MalformedSignatureError, QueryError, SigningError, SubmissionError
from .message_hash import SIGNATURE_VERSION, compute_digest
from .models import DepositInfo, Direction, Signature, SignatureRecord
from .quorum import SignatureTally, has_enough_signatures
from .signer import recover_signer, sign
from .wallet import WalletClient

logger = logging.getLogger(__name__)


class EventProcessor:
    """Relays deposits of one direction to the side chain wallet."""

    def __init__(
        self,
        direction: Direction,
        side_wallet: WalletClient,
        private_key: str | None = None,
        sealer_address: str | None = None
    ) -> None:
        """Initialize the event processor.

        Args:
            direction: MAIN_TO_SIDE mirrors transfers, SIDE_TO_MAIN records signatures
            side_wallet: Side chain wallet receiving the submissions
            private_key: Sealer key, required for SIDE_TO_MAIN
            sealer_address: Address of the sealer key, used to check signatures
        """
        if direction is Direction.SIDE_TO_MAIN and not private_key:
            raise ValueError("A private key is required to attest side chain deposits")

        self.direction = direction
        self.side_wallet = side_wallet
        self.private_key = private_key
        self.sealer_address = sealer_address

        # Metrics tracking
        self.deposits_seen = 0
        self.deposits_relayed = 0
        self.signing_failures = 0
        self.submission_failures = 0

    async def process_deposit(self, info: DepositInfo) -> str | None:
        """
        Relay a single deposit according to this processor's direction.

        Failures are logged and the deposit is dropped for this pass; a later
        scan of the same range submits it again.

        Args:
            info: Deposit discovered by the scanner

        Returns:
            Submitted transaction hash, None if the deposit was dropped
        """
        self.deposits_seen += 1
        logger.info(f"[{self.direction}] Deposit detected: {info}")

        try:
            match self.direction:
                case Direction.MAIN_TO_SIDE:
                    tx_hash = await self.mirror_transfer(info)
                case Direction.SIDE_TO_MAIN:
                    tx_hash = await self.attest_withdrawal(info)

        except (SigningError, MalformedSignatureError) as e:
            self.signing_failures += 1
            logger.error(f"[{self.direction}] {info.block_number} {info.tx_hash} signing failed: {e}")
            return None

        except SubmissionError as e:
            self.submission_failures += 1
            logger.error(f"[{self.direction}] {info.block_number} {info.tx_hash} submission failed: {e}")
            return None

        self.deposits_relayed += 1
        logger.info(f"[{self.direction}] {info.block_number} {info.tx_hash} -> {tx_hash}")
        return tx_hash

    async def mirror_transfer(self, info: DepositInfo) -> str:
        """Vote for the side chain transfer of a main chain deposit."""
        return await asyncio.to_thread(
            self.side_wallet.record_transfer,
            info.tx_hash,
            info.event.receiver,
            info.event.value,
            b''
        )

    async def attest_withdrawal(self, info: DepositInfo) -> str:
        """Sign a side chain deposit and record the signature on the side wallet."""
        signature = self.sign_deposit(info)
        return await asyncio.to_thread(
            self.side_wallet.record_signature,
            info.tx_hash,
            info.event.receiver,
            info.event.value,
            b'',
            signature
        )

    def sign_deposit(self, info: DepositInfo) -> Signature:
        """
        Sign the canonical digest of a withdrawal.

        Raises:
            SigningError: If signing fails or the signature does not recover to the sealer
        """
        digest = compute_digest(
            self.side_wallet.address,
            info.tx_hash,
            info.event.receiver,
            info.event.value,
            b'',
            SIGNATURE_VERSION
        )
        signature = sign(digest, self.private_key)

        if self.sealer_address and recover_signer(digest, signature) != self.sealer_address:
            raise SigningError(f"Signature of {info.tx_hash} does not recover to {self.sealer_address}")

        return signature

    def get_stats(self) -> dict[str, int]:
        """
        Get current processor statistics.

        Returns:
            Dictionary with current state metrics
        """
        return {
            'deposits_seen': self.deposits_seen,
            'deposits_relayed': self.deposits_relayed,
            'signing_failures': self.signing_failures,
            'submission_failures': self.submission_failures,
        }


class SignatureAggregator:
    """Finalizes side chain withdrawals on the main chain once signed by quorum."""

    MAX_FINALIZED_HASHES: int = 10_000

    def __init__(
        self,
        side_wallet: WalletClient,
        main_wallet: WalletClient,
        caller: str | None = None,
        tally: SignatureTally | None = None
    ) -> None:
        """Initialize the aggregator.

        Args:
            side_wallet: Side chain wallet collecting signatures
            main_wallet: Main chain wallet releasing funds
            caller: Address used as the sender of contract calls
            tally: Running signature count, a fresh one by default
        """
        self.side_wallet = side_wallet
        self.main_wallet = main_wallet
        self.caller = caller
        self.tally = tally or SignatureTally()
        self.threshold: int | None = None

        # OrderedDict provides O(1) lookups and insertion order for LRU eviction
        self.finalized_tx_hashes: OrderedDict[str, None] = OrderedDict()

        self.signatures_seen = 0
        self.withdrawals_finalized = 0
        self.failures = 0

    async def sync(self, from_block: int = 0) -> int:
        """
        Load the threshold and every recorded signature, then finalize the
        withdrawals already at quorum whose signatures were added at or after
        from_block.

        Args:
            from_block: First block whose signatures may trigger a finalization

        Returns:
            The chain head the tally is synced to

        Raises:
            QueryError: If the side chain wallet cannot be read
        """
        head = await asyncio.to_thread(self.side_wallet.block_number)
        self.threshold = await asyncio.to_thread(self.side_wallet.required_threshold, self.caller)
        records = await asyncio.to_thread(self.side_wallet.signature_events, 0, head)
        self.tally.reconcile(records)

        logger.info(
            f"Signature aggregation synced to block {head}: "
            f"{len(records)} signatures, threshold {self.threshold}"
        )

        candidates = dict.fromkeys(r.tx_hash for r in records if r.block_number >= from_block)
        for tx_hash in candidates:
            await self.try_finalize(tx_hash)

        return head

    async def process_signature_added(self, record: SignatureRecord) -> str | None:
        """
        Count a new SignatureAdded event and finalize its withdrawal if ready.

        Args:
            record: Event read from the side chain wallet

        Returns:
            Hash of the finalizeWithdrawal transaction, None otherwise
        """
        self.signatures_seen += 1
        count = self.tally.add(record)
        logger.info(
            f"[sc2mc] Signature for {record.tx_hash} by {record.signer} "
            f"in block {record.block_number} ({count}/{self.threshold})"
        )
        return await self.try_finalize(record.tx_hash)

    async def try_finalize(self, tx_hash: str) -> str | None:
        """Run the quorum check and forward the aggregated withdrawal."""
        if tx_hash in self.finalized_tx_hashes:
            return None

        try:
            if self.threshold is None:
                self.threshold = await asyncio.to_thread(
                    self.side_wallet.required_threshold, self.caller
                )

            # An evicted count may be short, let the full rescan decide
            if self.tally.count(tx_hash) < self.threshold and not self.tally.is_partial(tx_hash):
                return None

            enough = await asyncio.to_thread(
                has_enough_signatures, self.side_wallet, self.caller, tx_hash
            )
            if not enough:
                logger.warning(f"[sc2mc] {tx_hash} is not at quorum, skipping")
                return None

            aggregated = await asyncio.to_thread(
                self.side_wallet.get_aggregated_signatures, tx_hash, self.caller
            )
            logger.info(f"[sc2mc] Quorum reached for {tx_hash}: {aggregated.to_dict()}")

            finalize_hash = await asyncio.to_thread(
                self.main_wallet.finalize_withdrawal, tx_hash, aggregated
            )

        except (QueryError, SubmissionError) as e:
            self.failures += 1
            logger.error(f"[sc2mc] Failed to finalize {tx_hash}: {e}")
            return None

        self._track_finalized(tx_hash)
        self.withdrawals_finalized += 1
        logger.info(f"[sc2mc] Withdrawal {tx_hash} finalized: {finalize_hash}")
        return finalize_hash

    def _track_finalized(self, tx_hash: str) -> None:
        """
        Track a finalized transaction hash with automatic LRU eviction.

        Args:
            tx_hash: Transaction hash to track
        """
        if tx_hash in self.finalized_tx_hashes:
            self.finalized_tx_hashes.move_to_end(tx_hash)
        else:
            if len(self.finalized_tx_hashes) >= self.MAX_FINALIZED_HASHES:
                self.finalized_tx_hashes.popitem(last=False)

            self.finalized_tx_hashes[tx_hash] = None

    def get_stats(self) -> dict[str, int]:
        return {
            'signatures_seen': self.signatures_seen,
            'withdrawals_finalized': self.withdrawals_finalized,
            'failures': self.failures,
            'tracked_transactions': len(self.tally),
        }
