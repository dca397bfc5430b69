"""
Periodic market monitor that polls a feed and fans out classified updates.
"""
import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import MONITOR_INTERVAL_MS, SIGNIFICANT_CHANGE_THRESHOLD
from ..errors import FeedFetchError, InvalidInputError
from .feed import MarketFeed, MarketSnapshot

logger = logging.getLogger(__name__)


class UpdateType(str, Enum):
    REGULAR = "REGULAR"
    SIGNIFICANT_CHANGE = "SIGNIFICANT_CHANGE"


@dataclass(frozen=True)
class MarketUpdate:
    instrument_id: str
    snapshot: MarketSnapshot
    update_type: UpdateType


UpdateCallback = Callable[
    [str, MarketSnapshot, UpdateType], Union[None, Awaitable[Any]]
]


class MarketMonitor:
    """
    Polls a MarketFeed per instrument and notifies subscribers.

    Each successful fetch replaces the stored snapshot before the update is
    queued, so classification always compares against the freshest value.
    Notifications are delivered by a dispatcher task draining a queue,
    never inline with the fetch.
    """

    def __init__(
        self,
        feed: MarketFeed,
        significant_change: float = SIGNIFICANT_CHANGE_THRESHOLD
    ):
        self.feed = feed
        self.significant_change = significant_change
        self._snapshots: Dict[str, MarketSnapshot] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._subscribers: Dict[int, UpdateCallback] = {}
        self._tokens = itertools.count(1)
        self._queue: Optional[asyncio.Queue] = None
        self._dispatcher: Optional[asyncio.Task] = None

    @property
    def monitored_instruments(self) -> List[str]:
        return [i for i, task in self._tasks.items() if not task.done()]

    def latest_snapshot(self, instrument_id: str) -> Optional[MarketSnapshot]:
        return self._snapshots.get(instrument_id)

    def subscribe(self, callback: UpdateCallback) -> int:
        """Register a callback. Returns the token needed to unsubscribe."""
        token = next(self._tokens)
        self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> bool:
        """Remove exactly one registration. Unknown tokens are ignored."""
        return self._subscribers.pop(token, None) is not None

    def start_monitoring(self, instrument_id: str, interval_ms: int = MONITOR_INTERVAL_MS) -> None:
        """Start polling an instrument. No-op if already monitored.

        Must be called from a running event loop.
        """
        if interval_ms <= 0:
            raise InvalidInputError(f"Monitor interval must be > 0 ms, got {interval_ms}")

        existing = self._tasks.get(instrument_id)
        if existing is not None and not existing.done():
            return

        self._ensure_dispatcher()
        self._tasks[instrument_id] = asyncio.create_task(
            self._poll(instrument_id, interval_ms / 1000),
            name=f"monitor-{instrument_id}",
        )
        logger.info(f"Started monitoring {instrument_id} every {interval_ms}ms")

    def stop_monitoring(self, instrument_id: str) -> None:
        """Cancel polling for an instrument. Idempotent."""
        task = self._tasks.pop(instrument_id, None)
        if task is None:
            return
        task.cancel()
        logger.info(f"Stopped monitoring {instrument_id}")

    async def _poll(self, instrument_id: str, interval: float) -> None:
        while True:
            await self.fetch_and_update(instrument_id)
            await asyncio.sleep(interval)

    async def fetch_and_update(self, instrument_id: str) -> Optional[MarketUpdate]:
        """
        Run one fetch cycle.

        Returns the published update, or None if the fetch failed. A failed
        fetch leaves the stored snapshot untouched and notifies nobody.
        """
        try:
            snapshot = await self.feed.fetch_snapshot(instrument_id)
        except FeedFetchError as e:
            logger.warning(f"Feed fetch failed for {instrument_id}: {e}")
            return None
        except Exception as e:
            logger.error(f"Error fetching market data for {instrument_id}: {e}")
            return None

        previous = self._snapshots.get(instrument_id)
        update_type = UpdateType.REGULAR
        if previous is not None and abs(snapshot.price - previous.price) > self.significant_change:
            update_type = UpdateType.SIGNIFICANT_CHANGE

        self._snapshots[instrument_id] = snapshot

        update = MarketUpdate(instrument_id, snapshot, update_type)
        self._ensure_dispatcher()
        self._queue.put_nowait(update)

        logger.debug(
            f"{instrument_id}: price={snapshot.price:.4f} "
            f"volume={snapshot.volume:.0f} ({update_type.value})"
        )
        return update

    def _ensure_dispatcher(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(
                self._dispatch(), name="monitor-dispatcher"
            )

    async def _dispatch(self) -> None:
        while True:
            update = await self._queue.get()
            try:
                for token, callback in list(self._subscribers.items()):
                    try:
                        result = callback(
                            update.instrument_id, update.snapshot, update.update_type
                        )
                        if inspect.isawaitable(result):
                            await result
                    except Exception as e:
                        logger.error(f"Subscriber {token} failed on {update.instrument_id}: {e}")
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued update has been delivered."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """
        Cancel every polling task and the dispatcher, and wait for them.

        Updates still queued are discarded, so drain() returns immediately
        after close.
        """
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if self._dispatcher is not None:
            tasks.append(self._dispatcher)
            self._dispatcher = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        dropped = 0
        if self._queue is not None:
            while not self._queue.empty():
                self._queue.get_nowait()
                self._queue.task_done()
                dropped += 1
            self._queue = None

        if dropped:
            logger.warning(f"Market monitor closed with {dropped} undelivered updates")
        else:
            logger.info("Market monitor closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
