#!/usr/bin/env python3
"""Bridge wallet contract client.

This module wraps the multisig wallet contract deployed on each chain:
deposits, transfer mirroring, signature recording, signature aggregation
and withdrawal finalization. Calls raise QueryError, transactions raise
SubmissionError.
"""

import logging
from typing import TYPE_CHECKING, Any

from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.types import TxParams, TxReceipt, Wei

from .exceptions import QueryError, SubmissionError
from .models import AggregatedTransaction, Signature, SignatureRecord
from .utils.blockchain_encoder import BlockchainEncoder

if TYPE_CHECKING:
    from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

WALLET_CONTRACT_NAME = "BridgeWallet"


class WalletClient:
    """Reads from and submits transactions to one BridgeWallet contract."""

    def __init__(
        self,
        contract_util: "ContractUtility",
        contract_address: str,
        gas_limit: int = 300000,
        receipt_timeout: int = 30
    ) -> None:
        """
        Initialize the WalletClient.

        Args:
            contract_util: Connected utility, with signing middleware for submissions
            contract_address: Address of the wallet contract
            gas_limit: Gas limit used for every submission
            receipt_timeout: Seconds to wait for a transaction receipt
        """
        self.contract_util: ContractUtility = contract_util
        self.w3: Web3 = contract_util.w3
        self.address: str = Web3.to_checksum_address(contract_address)
        self.gas_limit: int = gas_limit
        self.receipt_timeout: int = receipt_timeout

        self.contract: Contract = contract_util.get_contract(WALLET_CONTRACT_NAME, self.address)

    @property
    def sender(self) -> str | None:
        """Account that signs this client's transactions."""
        return self.contract_util.address

    # Reads

    def block_number(self) -> int:
        """Current head of the chain this wallet lives on."""
        try:
            return self.w3.eth.block_number
        except Exception as e:
            raise QueryError(f"Failed to read block number: {e}") from e

    def required_threshold(self, caller: str | None = None) -> int:
        """Number of signatures the contract needs to release funds."""
        try:
            return self.contract.functions.requiredThreshold().call(self._call_params(caller))
        except Exception as e:
            raise QueryError(f"requiredThreshold failed on {self.address}: {e}") from e

    def signature_events(
        self,
        from_block: int = 0,
        to_block: int | str = 'latest'
    ) -> list[SignatureRecord]:
        """All SignatureAdded events emitted in a block range, in log order."""
        try:
            events = self.contract.events.SignatureAdded.get_logs(
                from_block=from_block,
                to_block=to_block
            )
        except Exception as e:
            raise QueryError(
                f"SignatureAdded query failed on {self.address} "
                f"blocks {from_block}-{to_block}: {e}"
            ) from e

        return [
            SignatureRecord(
                tx_hash=BlockchainEncoder.to_hex_hash(event['args']['txHash']),
                signer=Web3.to_checksum_address(event['args']['signer']),
                block_number=event['blockNumber'],
            )
            for event in events
        ]

    def get_aggregated_signatures(
        self,
        tx_hash: str,
        caller: str | None = None
    ) -> AggregatedTransaction:
        """Read back the withdrawal details and all collected signatures."""
        try:
            destination, value, data, v, r, s = self.contract.functions.getAggregatedSignatures(
                BlockchainEncoder.to_bytes_safe(tx_hash)
            ).call(self._call_params(caller))
        except Exception as e:
            raise QueryError(f"getAggregatedSignatures({tx_hash}) failed: {e}") from e

        return AggregatedTransaction(
            destination=Web3.to_checksum_address(destination),
            value=value,
            data=bytes(data),
            v=list(v),
            r=[bytes(item) for item in r],
            s=[bytes(item) for item in s],
        )

    # Submissions

    def deposit(self, receiver: str, value: int) -> str:
        """Lock value in the wallet for receiver on the other chain."""
        return self._transact(
            "deposit",
            self.contract.functions.deposit(Web3.to_checksum_address(receiver)),
            value=value
        )

    def record_transfer(self, tx_hash: str, receiver: str, value: int, data: bytes = b'') -> str:
        """Vote for mirroring a main chain deposit on this wallet."""
        return self._transact(
            "recordTransfer",
            self.contract.functions.recordTransfer(
                BlockchainEncoder.to_bytes_safe(tx_hash),
                Web3.to_checksum_address(receiver),
                value,
                data
            )
        )

    def record_signature(
        self,
        tx_hash: str,
        receiver: str,
        value: int,
        data: bytes,
        signature: Signature
    ) -> str:
        """Store this sealer's signature of a withdrawal on this wallet."""
        return self._transact(
            "recordSignature",
            self.contract.functions.recordSignature(
                BlockchainEncoder.to_bytes_safe(tx_hash),
                Web3.to_checksum_address(receiver),
                value,
                data,
                signature.v,
                signature.r,
                signature.s
            )
        )

    def finalize_withdrawal(self, tx_hash: str, aggregated: AggregatedTransaction) -> str:
        """Submit a fully signed withdrawal so this wallet releases the funds."""
        return self._transact(
            "finalizeWithdrawal",
            self.contract.functions.finalizeWithdrawal(
                BlockchainEncoder.to_bytes_safe(tx_hash),
                aggregated.destination,
                aggregated.value,
                aggregated.data,
                aggregated.v,
                aggregated.r,
                aggregated.s
            )
        )

    def _call_params(self, caller: str | None) -> TxParams:
        return {'from': Web3.to_checksum_address(caller)} if caller else {}

    def _transact(self, name: str, function: Any, value: int = 0) -> str:
        """
        Send a contract transaction and wait for it to be mined.

        Returns:
            0x-prefixed transaction hash

        Raises:
            SubmissionError: If sending fails or the transaction reverts
        """
        try:
            tx_params: TxParams = {
                'gas': self.gas_limit,
                'gasPrice': self.w3.eth.gas_price,
                'value': Wei(value)
            }
            if self.sender:
                tx_params['from'] = self.sender

            tx_hash: HexBytes = function.transact(tx_params)
            logger.debug(f"{name} submitted: {Web3.to_hex(tx_hash)}")

            receipt: TxReceipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout
            )
        except Exception as e:
            raise SubmissionError(f"{name} failed: {e}") from e

        if (status := receipt.get('status', 0)) != 1:
            raise SubmissionError(
                f"{name} reverted with status={status} in transaction {Web3.to_hex(tx_hash)}"
            )

        logger.debug(f"{name} confirmed in block {receipt['blockNumber']}")
        return Web3.to_hex(tx_hash)
