"""
Volatility estimation for probability-denominated markets.

Two estimators are provided over a daily price history:
- HISTORICAL: sample standard deviation of log returns
- EWMA: exponentially weighted variance (RiskMetrics style, lambda=0.94)

Both annualize with a 365-day year and are bounded to [10%, 100%].
"""
import asyncio
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional

import numpy as np

from ..config import (
    DAYS_PER_YEAR,
    DEFAULT_VOLATILITY,
    EWMA_LAMBDA,
    EWMA_SEED_RETURNS,
    HISTORY_WINDOW_DAYS,
    MAX_VOLATILITY,
    MIN_VOLATILITY,
)
from ..data.history import DataPoint, HistoricalDataProvider

logger = logging.getLogger(__name__)


class VolatilityMethod(str, Enum):
    HISTORICAL = "HISTORICAL"
    EWMA = "EWMA"


@dataclass(frozen=True)
class VolatilityEstimate:
    """Cached volatility for one instrument."""
    instrument_id: str
    annualized_vol: float
    method: VolatilityMethod
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _log_returns(points: Iterable[DataPoint]) -> np.ndarray:
    """
    Log returns of the time-ordered series.

    A pair is skipped when either price is non-positive, so no return
    spans a bad tick.
    """
    ordered = sorted(points, key=lambda p: p.timestamp)
    prices = np.array([p.price for p in ordered], dtype=float)
    if prices.size < 2:
        return np.empty(0)

    previous, current = prices[:-1], prices[1:]
    valid = (previous > 0) & (current > 0)
    return np.log(current[valid] / previous[valid])


def _annualize(daily_variance: float) -> float:
    annualized = math.sqrt(max(daily_variance, 0.0) * DAYS_PER_YEAR)
    return min(max(annualized, MIN_VOLATILITY), MAX_VOLATILITY)


def historical_volatility(points: Iterable[DataPoint]) -> float:
    """Annualized close-to-close volatility with an n-1 sample variance."""
    returns = _log_returns(points)
    if returns.size < 2:
        return DEFAULT_VOLATILITY

    variance = float(np.var(returns, ddof=1))
    return _annualize(variance)


def ewma_volatility(points: Iterable[DataPoint], decay: float = EWMA_LAMBDA) -> float:
    """
    Annualized EWMA volatility.

    The variance is seeded with the mean squared return of the first
    (up to) five returns, then every return is folded in:
        var = decay * var + (1 - decay) * r^2
    """
    returns = _log_returns(points)
    if returns.size < 2:
        return DEFAULT_VOLATILITY

    seed = returns[:min(EWMA_SEED_RETURNS, returns.size)]
    variance = float(np.mean(seed ** 2))

    for r in returns:
        variance = decay * variance + (1 - decay) * r * r

    return _annualize(variance)


def apply_term_structure(base_vol: float, time_to_expiry: float) -> float:
    """
    Adjust volatility for time to expiry.

    Short-dated (< 0.1y) options get inflated vol, long-dated (> 0.5y) get
    up to a 30% haircut. Expired options (T <= 0) keep the base vol.
    """
    T = time_to_expiry
    if T <= 0:
        return base_vol

    if T < 0.1:
        return base_vol * (1 + (0.1 - T) * 3)
    elif T > 0.5:
        return base_vol * (1 - min(0.3, (T - 0.5) * 0.3))

    return base_vol


_ESTIMATORS = {
    VolatilityMethod.HISTORICAL: historical_volatility,
    VolatilityMethod.EWMA: ewma_volatility,
}


class VolatilityEstimator:
    """
    Computes and caches one volatility estimate per instrument.

    Cache reads never wait on a recompute: callers get the previous value
    (or DEFAULT_VOLATILITY) while a refresh runs in the background.
    """

    def __init__(
        self,
        history: HistoricalDataProvider,
        window_days: int = HISTORY_WINDOW_DAYS,
        default_method: VolatilityMethod = VolatilityMethod.HISTORICAL
    ):
        self.history = history
        self.window_days = window_days
        self.default_method = default_method
        self._cache: Dict[str, VolatilityEstimate] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    async def estimate(
        self,
        instrument_id: str,
        method: Optional[VolatilityMethod] = None
    ) -> float:
        """
        Recompute volatility from history and store it in the cache.

        Falls back to DEFAULT_VOLATILITY when fewer than two usable
        observations exist.
        """
        method = VolatilityMethod(method or self.default_method)
        points = await self.history.get_historical_data(instrument_id, self.window_days)

        usable = [p for p in points if p.price > 0]
        if len(usable) < 2:
            logger.debug(
                f"Insufficient history for {instrument_id} "
                f"({len(usable)} usable points), using default volatility"
            )
            vol = DEFAULT_VOLATILITY
        else:
            vol = _ESTIMATORS[method](usable)

        estimate = VolatilityEstimate(
            instrument_id=instrument_id,
            annualized_vol=vol,
            method=method,
        )
        with self._lock:
            self._cache[instrument_id] = estimate

        logger.debug(f"Volatility for {instrument_id}: {vol:.4f} ({method.value})")
        return vol

    def get_estimate(self, instrument_id: str) -> Optional[VolatilityEstimate]:
        with self._lock:
            return self._cache.get(instrument_id)

    def get_volatility(self, instrument_id: str) -> float:
        """Cached volatility, or DEFAULT_VOLATILITY if none computed yet."""
        estimate = self.get_estimate(instrument_id)
        if estimate is None:
            return DEFAULT_VOLATILITY
        return estimate.annualized_vol

    def get_dynamic_volatility(self, instrument_id: str, time_to_expiry: float) -> float:
        """
        Term-adjusted volatility for quoting.

        On a cache miss a background refresh is scheduled and the default
        is used for this quote.
        """
        if self.get_estimate(instrument_id) is None:
            self.refresh(instrument_id)
        return apply_term_structure(self.get_volatility(instrument_id), time_to_expiry)

    def refresh(
        self,
        instrument_id: str,
        method: Optional[VolatilityMethod] = None
    ) -> Optional[asyncio.Task]:
        """
        Schedule a background recompute on the running event loop.

        At most one refresh per instrument is in flight; a second call while
        one is running returns the existing task. Returns None when called
        outside an event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, skipping refresh for {instrument_id}")
            return None

        with self._lock:
            pending = self._pending.get(instrument_id)
            if pending is not None and not pending.done():
                return pending

            task = loop.create_task(self._refresh(instrument_id, method))
            self._pending[instrument_id] = task

        task.add_done_callback(lambda t: self._clear_pending(instrument_id, t))
        return task

    def _clear_pending(self, instrument_id: str, task: asyncio.Task) -> None:
        with self._lock:
            if self._pending.get(instrument_id) is task:
                del self._pending[instrument_id]

    async def _refresh(
        self,
        instrument_id: str,
        method: Optional[VolatilityMethod]
    ) -> Optional[float]:
        try:
            return await self.estimate(instrument_id, method)
        except Exception as e:
            # Keep serving the previous estimate
            logger.error(f"Error updating volatility for {instrument_id}: {e}")
            return None
