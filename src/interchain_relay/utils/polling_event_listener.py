"""
Polling-based event listener utility for blockchain event monitoring.

"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Dict, Generic, Optional, TypeVar

from ..exceptions import RelayError

T = TypeVar("T")

_DONE = object()


class PollingEventListener(Generic[T]):
    """
    Utility for polling a chain for events over consecutive block ranges.

    The listener follows the chain head from from_block, or stops after
    to_block when one is given. Each range is handed to scan_range, which
    returns the events found there; a range whose scan fails is retried on
    the next poll.
    """

    def __init__(
        self,
        name: str,
        get_block_number: Callable[[], int],
        scan_range: Callable[[int, int], Iterable[T]],
        from_block: int = 0,
        to_block: Optional[int] = None
    ):
        """
        Initialize the polling event listener.

        Args:
            name: Label used in logs (e.g. "mc2sc deposits")
            get_block_number: Blocking call returning the current chain head
            scan_range: Blocking call returning the events of an inclusive block range
            from_block: First block to scan
            to_block: Last block to scan, None to follow the head forever
        """
        self.name = name
        self.get_block_number = get_block_number
        self.scan_range = scan_range
        self.from_block = from_block
        self.to_block = to_block

        # State tracking
        self.next_block = from_block
        self.last_processed_block: Optional[int] = None
        self.events_found = 0
        self.is_running = False
        self._stop_event = asyncio.Event()

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def is_finished(self) -> bool:
        """True once a bounded range has been fully scanned."""
        return self.to_block is not None and self.next_block > self.to_block

    async def poll_for_events(self, callback: Callable[[T], Awaitable[Any]]) -> None:
        """
        Scan the blocks produced since the last poll.

        Args:
            callback: Async function to call for each event, in scan order
        """
        try:
            current_block = await asyncio.to_thread(self.get_block_number)
        except RelayError as e:
            self.logger.error(f"[{self.name}] Can't get latest block: {e}")
            return

        to_block = current_block if self.to_block is None else min(current_block, self.to_block)
        from_block = self.next_block

        # Skip if no new blocks
        if from_block > to_block:
            return

        found = 0
        try:
            events = iter(self.scan_range(from_block, to_block))
            while (event := await asyncio.to_thread(next, events, _DONE)) is not _DONE:
                await callback(event)
                found += 1
                if not self.is_running:
                    # Stopped mid-range: the unscanned part is picked up by a re-run
                    return
        except RelayError as e:
            self.logger.error(f"[{self.name}] Error scanning blocks {from_block}-{to_block}: {e}")
            # Don't advance past a range that failed
            return

        if found:
            self.logger.info(f"[{self.name}] Found {found} events in blocks {from_block}-{to_block}")

        self.events_found += found
        self.last_processed_block = to_block
        self.next_block = to_block + 1

    async def start_polling(
        self,
        callback: Callable[[T], Awaitable[Any]],
        interval: int = 12
    ) -> None:
        """
        Poll for events at the specified interval until stopped or finished.

        Args:
            callback: Async function to call when events are received
            interval: Polling interval in seconds
        """
        if self.is_running:
            self.logger.warning(f"[{self.name}] Polling already running")
            return

        self.is_running = True
        self._stop_event.clear()
        self.logger.info(
            f"[{self.name}] Starting polling from block {self.from_block}"
            f"{'' if self.to_block is None else f' to {self.to_block}'} every {interval} seconds"
        )

        try:
            while self.is_running:
                await self.poll_for_events(callback)

                if self.is_finished:
                    self.logger.info(f"[{self.name}] Reached block {self.to_block}, scan complete")
                    break

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass  # Next poll
        finally:
            self.is_running = False

    async def stop(self) -> None:
        """Stop the polling loop after the current ledger call."""
        self.logger.info(f"[{self.name}] Stopping polling")
        self.is_running = False
        self._stop_event.set()

    def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the polling listener.

        Returns:
            Dictionary with status information
        """
        return {
            "name": self.name,
            "is_running": self.is_running,
            "next_block": self.next_block,
            "last_processed_block": self.last_processed_block,
            "to_block": self.to_block,
            "events_found": self.events_found,
        }
