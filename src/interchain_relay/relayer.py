"""
Interchain relay implementation.

This module contains the main relay service. It wires one pipeline per
watched direction, each made of a polling listener feeding a queue and a
worker draining it into the event processor:

- mc2sc: main chain Deposit events -> recordTransfer on the side wallet
- sc2mc: side chain Deposit events -> recordSignature on the side wallet
- aggregation: side wallet SignatureAdded events -> finalizeWithdrawal on
  the main wallet once quorum is reached. It follows the head: in a bounded
  run it stops at the side chain head read once the deposit pipelines have
  drained, so the signatures they recorded are picked up

Pipelines share nothing but the read-only configuration and each opens its
own ledger connections.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional

from eth_account import Account

from .config import ChainConfig, RelayConfig
from .deposit_scanner import scan_block_deposits, scan_deposits
from .event_processor import EventProcessor, SignatureAggregator
from .exceptions import QueryError
from .models import DepositInfo, Direction
from .utils.contract_utility import ContractUtility
from .utils.polling_event_listener import PollingEventListener
from .wallet import WalletClient

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class Pipeline:
    """A listener feeding a bounded queue drained by one worker."""
    name: str
    listener: PollingEventListener
    handler: Callable[[Any], Awaitable[Any]]
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    dropped: int = 0


class InterchainRelayer:
    """
    Main relay service that orchestrates event monitoring and processing.

    This class focuses on coordination and lifecycle management, delegating
    event processing logic to the EventProcessor and SignatureAggregator.
    """

    STATUS_LOG_INTERVAL = 30  # seconds

    def __init__(self, config: RelayConfig, private_key: str):
        """
        Initialize the relayer.

        Args:
            config: Relay configuration
            private_key: Decrypted sealer key
        """
        self.config = config
        self.private_key = private_key
        self.running = False

        self.processors: dict[str, EventProcessor] = {}
        self.aggregator: Optional[SignatureAggregator] = None
        self.pipelines: dict[str, Pipeline] = {}

        # Async coordination
        self.shutdown_event = asyncio.Event()

        self._init_utilities()

    def _connect(self, chain: str) -> ContractUtility:
        """Open a new signing connection to the main or side chain."""
        chain_config = self.config.main_chain if chain == "main" else self.config.side_chain
        return ContractUtility(
            rpc_url=chain_config.rpc_url,
            secret=self.private_key,
            request_timeout=self.config.monitoring.request_timeout
        )

    def _wallet(self, chain: str) -> WalletClient:
        chain_config = self.config.main_chain if chain == "main" else self.config.side_chain
        return WalletClient(
            contract_util=self._connect(chain),
            contract_address=chain_config.wallet_address,
            gas_limit=self.config.monitoring.gas_limit,
            receipt_timeout=self.config.monitoring.receipt_timeout
        )

    def _init_utilities(self) -> None:
        """Create the wallets and processors of every watched direction."""
        self.sealer_address = Account.from_key(self.private_key).address

        if self.config.watch_main_chain:
            self.main_scan_wallet = self._wallet("main")
            self.processors["mc2sc"] = EventProcessor(
                direction=Direction.MAIN_TO_SIDE,
                side_wallet=self._wallet("side")
            )

        if self.config.watch_side_chain:
            self.side_scan_wallet = self._wallet("side")
            self.processors["sc2mc"] = EventProcessor(
                direction=Direction.SIDE_TO_MAIN,
                side_wallet=self._wallet("side"),
                private_key=self.private_key,
                sealer_address=self.sealer_address
            )
            self.aggregator = SignatureAggregator(
                side_wallet=self._wallet("side"),
                main_wallet=self._wallet("main"),
                caller=self.sealer_address
            )

        logger.info(f"Initialized relayer for sealer {self.sealer_address} ({', '.join(self.config.directions)})")

    @classmethod
    def from_env(cls, **overrides: Any) -> "InterchainRelayer":
        """
        Create an InterchainRelayer from environment variables.

        Args:
            overrides: Keyword arguments passed to RelayConfig.from_env

        Returns:
            Configured InterchainRelayer instance

        Raises:
            ValueError: If the configuration is invalid or the key cannot be decrypted
        """
        config = RelayConfig.from_env(**overrides)
        config.log_config()
        return cls(config, config.sealer.load_private_key())

    def check_connections(self) -> None:
        """
        Verify both endpoints are reachable.

        Raises:
            LedgerConnectionError: If a chain cannot be reached
        """
        for name, chain_config in (("main", self.config.main_chain), ("side", self.config.side_chain)):
            chain_id = ContractUtility(chain_config.rpc_url).ensure_connected()
            logger.info(f"Connected to {name} chain {chain_config.rpc_url} (chain id {chain_id})")

    def _deposit_scanner(
        self,
        wallet: WalletClient,
        chain_config: ChainConfig
    ) -> Callable[[int, int], Iterable[DepositInfo]]:
        """Bind the configured deposit scan strategy to a wallet."""
        scan = scan_block_deposits if self.config.monitoring.scan_mode == "blocks" else scan_deposits
        return partial(scan, wallet.w3, chain_config.wallet_address)

    async def init_event_monitoring(self) -> None:
        """Initialize polling listeners and queues for the watched directions."""
        logger.info("Initializing event monitoring...")
        monitoring = self.config.monitoring

        if self.config.watch_main_chain:
            self.pipelines["mc2sc"] = Pipeline(
                name="mc2sc",
                listener=PollingEventListener(
                    name="mc2sc",
                    get_block_number=self.main_scan_wallet.block_number,
                    scan_range=self._deposit_scanner(self.main_scan_wallet, self.config.main_chain),
                    from_block=monitoring.from_block,
                    to_block=monitoring.to_block
                ),
                handler=self.processors["mc2sc"].process_deposit,
                queue=asyncio.Queue(maxsize=monitoring.queue_size)
            )

        if self.config.watch_side_chain:
            self.pipelines["sc2mc"] = Pipeline(
                name="sc2mc",
                listener=PollingEventListener(
                    name="sc2mc",
                    get_block_number=self.side_scan_wallet.block_number,
                    scan_range=self._deposit_scanner(self.side_scan_wallet, self.config.side_chain),
                    from_block=monitoring.from_block,
                    to_block=monitoring.to_block
                ),
                handler=self.processors["sc2mc"].process_deposit,
                queue=asyncio.Queue(maxsize=monitoring.queue_size)
            )

            # Signatures recorded before the head are handled by the sync
            head = await self.aggregator.sync(from_block=monitoring.from_block)
            aggregation_wallet = self.aggregator.side_wallet
            self.pipelines["aggregation"] = Pipeline(
                name="aggregation",
                listener=PollingEventListener(
                    name="aggregation",
                    get_block_number=aggregation_wallet.block_number,
                    scan_range=aggregation_wallet.signature_events,
                    from_block=head + 1
                ),
                handler=self.aggregator.process_signature_added,
                queue=asyncio.Queue(maxsize=monitoring.queue_size)
            )

        for name, pipeline in self.pipelines.items():
            logger.info(f"{name} pipeline ready from block {pipeline.listener.from_block}")

    async def _worker(self, pipeline: Pipeline) -> None:
        """Submit discovered events one at a time, in discovery order."""
        while True:
            item = await pipeline.queue.get()
            try:
                if item is _STOP:
                    return
                await pipeline.handler(item)
            finally:
                pipeline.queue.task_done()

    def get_stats(self) -> dict[str, dict[str, int]]:
        """Collect the statistics of every processor."""
        stats: dict[str, dict[str, int]] = {
            name: processor.get_stats() for name, processor in self.processors.items()
        }
        if self.aggregator:
            stats["aggregation"] = self.aggregator.get_stats()
        for name, pipeline in self.pipelines.items():
            stats.setdefault(name, {})["queued"] = pipeline.queue.qsize()
        return stats

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            for name, stats in self.get_stats().items():
                logger.info(f"Status [{name}]: {stats}")

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and not task.cancelled() and task.exception() is not None:
                logger.error(f"{name} task failed: {task.exception()}", exc_info=task.exception())
                return False
        return True

    def _deposit_scans_complete(self) -> bool:
        """True when every deposit listener has scanned its whole bounded range."""
        deposits = [pipeline for name, pipeline in self.pipelines.items() if name != "aggregation"]
        return bool(deposits) and all(pipeline.listener.is_finished for pipeline in deposits)

    async def _bound_aggregation(self) -> None:
        """Stop the signature watcher at the side chain head once deposits are relayed."""
        pipeline = self.pipelines.get("aggregation")
        if pipeline is None or pipeline.listener.to_block is not None:
            return

        try:
            head = await asyncio.to_thread(self.aggregator.side_wallet.block_number)
        except QueryError as e:
            logger.error(f"[aggregation] Can't get latest block: {e}")
            return

        pipeline.listener.to_block = max(head, pipeline.listener.next_block - 1)
        logger.info(
            f"[aggregation] Deposits relayed, watching signatures up to block {pipeline.listener.to_block}"
        )

    def _scans_complete(self) -> bool:
        """True when every listener has scanned its whole bounded range."""
        return bool(self.pipelines) and all(
            pipeline.listener.is_finished for pipeline in self.pipelines.values()
        )

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop scanning, let in-flight submissions finish, then cancel the rest."""
        for pipeline in self.pipelines.values():
            await pipeline.listener.stop()

        # A listener blocked on a full queue must not enqueue after the drain
        listeners = [task for name, task in tasks.items() if name.endswith("listener")]
        for task in listeners:
            task.cancel()
        await asyncio.gather(*listeners, return_exceptions=True)

        # Discovered but unsubmitted events are left to the next run
        for pipeline in self.pipelines.values():
            while not pipeline.queue.empty():
                pipeline.queue.get_nowait()
                pipeline.queue.task_done()
                pipeline.dropped += 1
            if pipeline.dropped:
                logger.warning(f"[{pipeline.name}] {pipeline.dropped} queued events dropped at shutdown")
            pipeline.queue.put_nowait(_STOP)

        workers = [task for name, task in tasks.items() if name.endswith("worker")]
        await asyncio.gather(*workers, return_exceptions=True)

        # Cancel all remaining tasks
        for name, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

    async def run(self) -> None:
        """Main event loop for the relay service."""
        self.running = True
        loop = asyncio.get_running_loop()
        deadline = self.config.monitoring.deadline
        expires_at = loop.time() + deadline if deadline else None

        logger.info("Interchain relay starting...")
        logger.info(f"Polling interval: {self.config.monitoring.polling_interval}s")
        logger.info(f"Deadline: {f'{deadline}s' if deadline else 'none'}")

        tasks: dict[str, asyncio.Task] = {}
        try:
            await self.init_event_monitoring()

            for name, pipeline in self.pipelines.items():
                tasks[f"{name} listener"] = asyncio.create_task(
                    pipeline.listener.start_polling(
                        callback=pipeline.queue.put,
                        interval=self.config.monitoring.polling_interval
                    )
                )
                tasks[f"{name} worker"] = asyncio.create_task(self._worker(pipeline))
            tasks["status"] = asyncio.create_task(self._periodic_status_logger())

            logger.info("Event monitoring started, waiting for events...")

            # Wait until shutdown, deadline, end of range or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                if expires_at is not None and loop.time() >= expires_at:
                    logger.info("Deadline reached, shutting down")
                    break

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

                if self._deposit_scans_complete():
                    await asyncio.gather(*(
                        pipeline.queue.join() for name, pipeline in self.pipelines.items()
                        if name != "aggregation"
                    ))
                    await self._bound_aggregation()

                if self._scans_complete():
                    await asyncio.gather(*(p.queue.join() for p in self.pipelines.values()))
                    logger.info("All block ranges scanned and relayed")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            for name, stats in self.get_stats().items():
                logger.info(f"Final [{name}]: {stats}")
            logger.info("Interchain relay stopped")

    def stop(self) -> None:
        """Stop the relay service."""
        self.running = False
        self.shutdown_event.set()
