"""
Market feeds producing price snapshots for monitored instruments.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import aiohttp
import numpy as np

from ..config import POLYMARKET_CLOB_URL, REQUEST_TIMEOUT
from ..errors import FeedFetchError, InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time market state for one instrument."""
    instrument_id: str
    price: float
    volume: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not 0.0 <= self.price <= 1.0 or math.isnan(self.price):
            raise InvalidInputError(f"Snapshot price must be in [0, 1], got {self.price}")
        if self.volume < 0:
            raise InvalidInputError(f"Snapshot volume must be >= 0, got {self.volume}")


class MarketFeed(Protocol):
    """Source of market snapshots. Failures surface as FeedFetchError."""

    async def fetch_snapshot(self, instrument_id: str) -> MarketSnapshot:
        ...


class PolymarketFeed:
    """
    REST feed backed by the Polymarket CLOB order book.

    The instrument id is the CLOB token id. Price is the midpoint of the best
    bid and ask; volume is the total resting size on both sides.
    """

    def __init__(self, base_url: str = POLYMARKET_CLOB_URL, timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _request(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        """Make HTTP GET request to CLOB API."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"

        async with session.get(url, params=params) as response:
            response.raise_for_status()
            return await response.json()

    async def get_orderbook(self, token_id: str) -> Dict:
        """Get order book for a token.

        Returns dict with 'bids' and 'asks' lists.
        Each bid/ask has 'price' and 'size'.
        """
        return await self._request("/book", params={"token_id": token_id})

    @staticmethod
    def snapshot_from_book(instrument_id: str, book: Dict) -> MarketSnapshot:
        bids = book.get("bids") or []
        asks = book.get("asks") or []

        best_bid = max((float(b["price"]) for b in bids), default=0.0)
        best_ask = min((float(a["price"]) for a in asks), default=1.0)

        if bids and asks:
            price = (best_bid + best_ask) / 2
        elif bids:
            price = best_bid
        elif asks:
            price = best_ask
        else:
            raise FeedFetchError(f"Empty order book for {instrument_id}")

        volume = sum(float(level["size"]) for level in (*bids, *asks))

        return MarketSnapshot(
            instrument_id=instrument_id,
            price=price,
            volume=volume,
        )

    async def fetch_snapshot(self, instrument_id: str) -> MarketSnapshot:
        try:
            book = await self.get_orderbook(instrument_id)
            return self.snapshot_from_book(instrument_id, book)
        except FeedFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedFetchError(f"Polymarket API error for {instrument_id}: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise FeedFetchError(f"Malformed order book for {instrument_id}: {e}") from e

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


class SimulatedFeed:
    """
    Random-walk feed for demos and offline runs.

    Each fetch moves the price by up to +/- 1.5 points, bounded to
    [0.01, 0.99], starting from the configured initial price.
    """

    def __init__(
        self,
        initial_price: float = 0.5,
        max_step: float = 0.015,
        seed: Optional[int] = None
    ):
        self.initial_price = initial_price
        self.max_step = max_step
        self._rng = np.random.default_rng(seed)
        self._prices: Dict[str, float] = {}

    async def fetch_snapshot(self, instrument_id: str) -> MarketSnapshot:
        base = self._prices.get(instrument_id, self.initial_price)
        step = self._rng.uniform(-self.max_step, self.max_step)
        price = float(np.clip(base + step, 0.01, 0.99))
        self._prices[instrument_id] = price

        volume = float(self._rng.integers(100, 1100))

        return MarketSnapshot(
            instrument_id=instrument_id,
            price=price,
            volume=volume,
        )
