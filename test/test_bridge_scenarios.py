#!/usr/bin/env python3
"""
End-to-end bridge scenarios against in-memory ledgers.

FakeLedger keeps balances and Deposit logs and charges gas per
transaction. FakeWallet plays the BridgeWallet contract: it checks that
submitters are sealers, rejects duplicate votes and signatures, verifies
every signature with ecrecover and releases funds at the threshold.
"""

from collections import defaultdict

import pytest
import pytest_asyncio
from eth_abi import encode
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

from interchain_relay.deposit_scanner import DEPOSIT_TOPIC, scan_deposits
from interchain_relay.event_processor import EventProcessor, SignatureAggregator
from interchain_relay.exceptions import SubmissionError
from interchain_relay.message_hash import compute_digest
from interchain_relay.models import AggregatedTransaction, Direction, Signature, SignatureRecord
from interchain_relay.quorum import has_enough_signatures
from interchain_relay.signer import recover_signer, sign
from interchain_relay.utils.blockchain_encoder import BlockchainEncoder

TX_GAS = 21000
GAS_PRICE = 2
GAS_COST = TX_GAS * GAS_PRICE

ACCOUNT_BALANCE = 10_000_000_000
WALLET_BALANCE = 50_000_000_000
VALUE = 200_000_000


def make_key(seed):
    return "0x" + f"{seed:02x}" * 32


SEALER_1_KEY, SEALER_2_KEY, TESTER_1_KEY, TESTER_2_KEY = (make_key(i) for i in (1, 2, 3, 4))
SEALER_1 = Account.from_key(SEALER_1_KEY).address
SEALER_2 = Account.from_key(SEALER_2_KEY).address
TESTER_1 = Account.from_key(TESTER_1_KEY).address
TESTER_2 = Account.from_key(TESTER_2_KEY).address
MAIN_WALLET = Account.from_key(make_key(5)).address
SIDE_WALLET = Account.from_key(make_key(6)).address


class FakeLedger:
    """A chain mining one transaction per block."""

    def __init__(self, name, balances):
        self.name = name
        self.balances = defaultdict(int, balances)
        self.logs = []
        self.block_number = 0
        self.eth = self

    def get_logs(self, params):
        return [
            log for log in self.logs
            if log['address'] == params['address']
            and params['fromBlock'] <= log['blockNumber'] <= params['toBlock']
        ]

    def mine(self, sender):
        """Include a transaction from sender in a new block and charge its gas."""
        self.block_number += 1
        self.balances[sender] -= GAS_COST
        return HexBytes(Web3.keccak(text=f"{self.name}:{self.block_number}"))

    def move(self, source, destination, value):
        if self.balances[source] < value:
            raise SubmissionError(f"insufficient funds in {source}")
        self.balances[source] -= value
        self.balances[destination] += value


class FakeWalletContract:
    """State of one BridgeWallet deployment."""

    def __init__(self, ledger, address, sealers, threshold, signing_wallet=None):
        self.ledger = ledger
        self.address = address
        self.sealers = set(sealers)
        self.threshold = threshold
        self.signing_wallet = signing_wallet or address
        self.transfer_votes = defaultdict(set)
        self.withdrawals = {}
        self.signature_log = []
        self.finalized = set()


class FakeWallet:
    """WalletClient stand-in bound to one sending account."""

    def __init__(self, contract, sender):
        self.contract = contract
        self.address = contract.address
        self.sender = sender
        self.w3 = contract.ledger

    @property
    def ledger(self):
        return self.contract.ledger

    def _require_sealer(self):
        if self.sender not in self.contract.sealers:
            raise SubmissionError(f"{self.sender} is not a sealer")

    def block_number(self):
        return self.ledger.block_number

    def required_threshold(self, caller=None):
        return self.contract.threshold

    def signature_events(self, from_block=0, to_block='latest'):
        last = self.ledger.block_number if to_block == 'latest' else to_block
        return [r for r in self.contract.signature_log if from_block <= r.block_number <= last]

    def get_aggregated_signatures(self, tx_hash, caller=None):
        receiver, value, data, signatures = self.contract.withdrawals[tx_hash]
        return AggregatedTransaction(
            destination=receiver,
            value=value,
            data=data,
            v=[s.v for s in signatures],
            r=[s.r for s in signatures],
            s=[s.s for s in signatures],
        )

    def deposit(self, receiver, value):
        tx_hash = self.ledger.mine(self.sender)
        self.ledger.move(self.sender, self.address, value)
        self.ledger.logs.append({
            'address': self.address,
            'topics': [
                HexBytes(DEPOSIT_TOPIC),
                HexBytes(BlockchainEncoder.address_to_topic(self.sender)),
                HexBytes(BlockchainEncoder.address_to_topic(receiver)),
            ],
            'data': HexBytes(encode(['uint256'], [value])),
            'blockNumber': self.ledger.block_number,
            'transactionHash': tx_hash,
        })
        return Web3.to_hex(tx_hash)

    def record_transfer(self, tx_hash, receiver, value, data=b''):
        self._require_sealer()
        votes = self.contract.transfer_votes[tx_hash]
        if self.sender in votes:
            raise SubmissionError(f"recordTransfer reverted: {self.sender} already voted for {tx_hash}")

        sent = self.ledger.mine(self.sender)
        votes.add(self.sender)
        if len(votes) == self.contract.threshold:
            self.ledger.move(self.address, receiver, value)
        return Web3.to_hex(sent)

    def record_signature(self, tx_hash, receiver, value, data, signature):
        self._require_sealer()
        digest = compute_digest(self.address, tx_hash, receiver, value, data, 1)
        if recover_signer(digest, signature) != self.sender:
            raise SubmissionError("recordSignature reverted: invalid signature")

        _, _, _, signatures = self.contract.withdrawals.setdefault(tx_hash, (receiver, value, data, []))
        if any(recover_signer(digest, s) == self.sender for s in signatures):
            raise SubmissionError(f"recordSignature reverted: {self.sender} already signed {tx_hash}")

        sent = self.ledger.mine(self.sender)
        signatures.append(signature)
        self.contract.signature_log.append(
            SignatureRecord(tx_hash=tx_hash, signer=self.sender, block_number=self.ledger.block_number)
        )
        return Web3.to_hex(sent)

    def finalize_withdrawal(self, tx_hash, aggregated):
        if tx_hash in self.contract.finalized:
            raise SubmissionError(f"finalizeWithdrawal reverted: {tx_hash} already finalized")

        digest = compute_digest(
            self.contract.signing_wallet, tx_hash, aggregated.destination, aggregated.value, aggregated.data, 1
        )
        signers = set()
        for v, r, s in zip(aggregated.v, aggregated.r, aggregated.s):
            signers.add(recover_signer(digest, Signature(v=v, r=r, s=s)))
        if not signers <= self.contract.sealers or len(signers) < self.contract.threshold:
            raise SubmissionError("finalizeWithdrawal reverted: not enough valid signatures")

        sent = self.ledger.mine(self.sender)
        self.ledger.move(self.address, aggregated.destination, aggregated.value)
        self.contract.finalized.add(tx_hash)
        return Web3.to_hex(sent)


@pytest.fixture
def main_ledger():
    return FakeLedger("main", {
        MAIN_WALLET: WALLET_BALANCE,
        SEALER_1: ACCOUNT_BALANCE,
        SEALER_2: ACCOUNT_BALANCE,
        TESTER_2: ACCOUNT_BALANCE,
    })


@pytest.fixture
def side_ledger():
    return FakeLedger("side", {
        SIDE_WALLET: WALLET_BALANCE,
        SEALER_1: ACCOUNT_BALANCE,
        SEALER_2: ACCOUNT_BALANCE,
        TESTER_1: ACCOUNT_BALANCE,
    })


@pytest.fixture
def main_contract(main_ledger):
    # Main chain withdrawals are authorized by signatures over the side wallet address
    return FakeWalletContract(main_ledger, MAIN_WALLET, [SEALER_1, SEALER_2], 2, signing_wallet=SIDE_WALLET)


@pytest.fixture
def side_contract(side_ledger):
    return FakeWalletContract(side_ledger, SIDE_WALLET, [SEALER_1, SEALER_2], 2)


def scan_all(wallet):
    return list(scan_deposits(wallet.w3, wallet.address, 0, wallet.block_number()))


class TestMainChainToSideChain:
    """A deposit on the main chain is paid out on the side chain."""

    @pytest_asyncio.fixture
    async def relayed(self, main_ledger, side_ledger, main_contract, side_contract):
        FakeWallet(main_contract, TESTER_2).deposit(TESTER_1, VALUE)

        deposits = scan_all(FakeWallet(main_contract, SEALER_1))
        processors = [
            EventProcessor(Direction.MAIN_TO_SIDE, FakeWallet(side_contract, sealer))
            for sealer in (SEALER_1, SEALER_2)
        ]
        for processor in processors:
            for info in deposits:
                await processor.process_deposit(info)

        return deposits, processors

    @pytest.mark.asyncio
    async def test_deposit_is_scanned(self, relayed):
        deposits, _ = relayed

        assert len(deposits) == 1
        assert deposits[0].event.sender == TESTER_2
        assert deposits[0].event.receiver == TESTER_1
        assert deposits[0].event.value == VALUE

    @pytest.mark.asyncio
    async def test_transfer_confirmed(self, relayed, side_contract):
        deposits, processors = relayed

        assert side_contract.transfer_votes[deposits[0].tx_hash] == {SEALER_1, SEALER_2}
        assert all(p.get_stats()['deposits_relayed'] == 1 for p in processors)

    @pytest.mark.asyncio
    async def test_balances(self, relayed, main_ledger, side_ledger):
        assert main_ledger.balances[TESTER_2] == ACCOUNT_BALANCE - VALUE - GAS_COST
        assert side_ledger.balances[TESTER_1] == ACCOUNT_BALANCE + VALUE
        assert main_ledger.balances[MAIN_WALLET] == WALLET_BALANCE + VALUE
        assert side_ledger.balances[SIDE_WALLET] == WALLET_BALANCE - VALUE

    @pytest.mark.asyncio
    async def test_rescan_is_rejected(self, relayed, side_ledger):
        """Re-running over the same range does not pay twice."""
        _, processors = relayed

        for info in relayed[0]:
            assert await processors[0].process_deposit(info) is None

        assert processors[0].get_stats()['submission_failures'] == 1
        assert side_ledger.balances[TESTER_1] == ACCOUNT_BALANCE + VALUE


class TestSideChainToMainChain:
    """A deposit on the side chain is attested and paid out on the main chain."""

    @pytest_asyncio.fixture
    async def attested(self, side_contract):
        FakeWallet(side_contract, TESTER_1).deposit(TESTER_2, VALUE)

        deposits = scan_all(FakeWallet(side_contract, SEALER_1))
        for sealer, key in ((SEALER_1, SEALER_1_KEY), (SEALER_2, SEALER_2_KEY)):
            processor = EventProcessor(
                Direction.SIDE_TO_MAIN, FakeWallet(side_contract, sealer),
                private_key=key, sealer_address=sealer
            )
            for info in deposits:
                assert await processor.process_deposit(info) is not None

        return deposits

    @pytest.mark.asyncio
    async def test_has_enough_signatures(self, attested, side_contract):
        tx_hash = attested[0].tx_hash

        assert has_enough_signatures(FakeWallet(side_contract, SEALER_1), SEALER_1, tx_hash) is True

    @pytest.mark.asyncio
    async def test_aggregated_signatures(self, attested, side_contract):
        """The wallet returns exactly the two sealers' reproducible signatures."""
        info = attested[0]
        aggregated = FakeWallet(side_contract, SEALER_1).get_aggregated_signatures(info.tx_hash)

        digest = compute_digest(SIDE_WALLET, info.tx_hash, info.event.receiver, info.event.value, b'', 1)
        first = sign(digest, SEALER_1_KEY)
        second = sign(digest, SEALER_2_KEY)

        assert aggregated.destination == TESTER_2
        assert aggregated.value == VALUE
        assert aggregated.data == b''
        assert aggregated.v == [first.v, second.v]
        assert aggregated.r == [first.r, second.r]
        assert aggregated.s == [first.s, second.s]

    @pytest.mark.asyncio
    async def test_finalized_on_main_chain(self, attested, main_ledger, side_ledger, main_contract, side_contract):
        aggregator = SignatureAggregator(
            FakeWallet(side_contract, SEALER_1), FakeWallet(main_contract, SEALER_1), caller=SEALER_1
        )

        await aggregator.sync(from_block=0)

        assert aggregator.get_stats()['withdrawals_finalized'] == 1
        assert side_ledger.balances[TESTER_1] == ACCOUNT_BALANCE - VALUE - GAS_COST
        assert main_ledger.balances[TESTER_2] == ACCOUNT_BALANCE + VALUE
        assert main_ledger.balances[MAIN_WALLET] == WALLET_BALANCE - VALUE
        assert side_ledger.balances[SIDE_WALLET] == WALLET_BALANCE + VALUE

    @pytest.mark.asyncio
    async def test_second_sealer_cannot_finalize_again(self, attested, main_ledger, main_contract, side_contract):
        """Both sealers race to finalize; the wallet pays out once."""
        for sealer in (SEALER_1, SEALER_2):
            aggregator = SignatureAggregator(
                FakeWallet(side_contract, sealer), FakeWallet(main_contract, sealer), caller=sealer
            )
            await aggregator.sync(from_block=0)

        assert main_ledger.balances[TESTER_2] == ACCOUNT_BALANCE + VALUE
        assert main_contract.finalized == {attested[0].tx_hash}

    @pytest.mark.asyncio
    async def test_incremental_aggregation(self, side_contract, main_ledger, main_contract):
        """Signatures arriving one by one finalize on the one reaching quorum."""
        FakeWallet(side_contract, TESTER_1).deposit(TESTER_2, VALUE)
        (info,) = scan_all(FakeWallet(side_contract, SEALER_1))
        aggregator = SignatureAggregator(
            FakeWallet(side_contract, SEALER_1), FakeWallet(main_contract, SEALER_1), caller=SEALER_1
        )
        head = await aggregator.sync()

        results = []
        for sealer, key in ((SEALER_1, SEALER_1_KEY), (SEALER_2, SEALER_2_KEY)):
            processor = EventProcessor(
                Direction.SIDE_TO_MAIN, FakeWallet(side_contract, sealer), private_key=key
            )
            await processor.process_deposit(info)
            for record in FakeWallet(side_contract, sealer).signature_events(head + 1):
                head = record.block_number
                results.append(await aggregator.process_signature_added(record))

        assert results[0] is None
        assert results[1] is not None
        assert main_ledger.balances[TESTER_2] == ACCOUNT_BALANCE + VALUE
