"""
Market data module for probquant.

Provides:
- Market feeds (Polymarket CLOB order book, simulated random walk)
- Historical price stores (in-memory, CSV)
- MarketMonitor for periodic polling and update fan-out
"""
from .feed import MarketFeed, MarketSnapshot, PolymarketFeed, SimulatedFeed
from .history import CSVHistoryStore, DataPoint, HistoricalDataProvider, InMemoryHistoryStore
from .monitor import MarketMonitor, MarketUpdate, UpdateType

__all__ = [
    "MarketFeed",
    "MarketSnapshot",
    "PolymarketFeed",
    "SimulatedFeed",
    "CSVHistoryStore",
    "DataPoint",
    "HistoricalDataProvider",
    "InMemoryHistoryStore",
    "MarketMonitor",
    "MarketUpdate",
    "UpdateType",
]
