"""
Pricing engine wiring volatility, the pricing model, the market monitor
and (optionally) the AMM into a single quote entry point.
"""
import logging
from datetime import datetime
from typing import Optional

from .amm import AutomatedMarketMaker
from .config import DEFAULT_LIQUIDITY_FACTOR, RISK_FREE_RATE
from .data.feed import MarketSnapshot
from .data.history import DataPoint, HistoricalDataProvider
from .data.monitor import MarketMonitor, UpdateType
from .models import (
    BinaryOptionPricer,
    OptionDescriptor,
    PriceQuote,
    VolatilityEstimator,
    time_to_expiry,
)

logger = logging.getLogger(__name__)


class PricingEngine:
    """
    Produces quotes for option descriptors.

    Holds no state of its own beyond references to its collaborators.
    Volatility is refreshed when the monitor reports a significant move
    on the underlying market, and every monitor update is recorded in the
    history store that feeds the estimator.
    """

    def __init__(
        self,
        estimator: VolatilityEstimator,
        pricer: Optional[BinaryOptionPricer] = None,
        monitor: Optional[MarketMonitor] = None,
        amm: Optional[AutomatedMarketMaker] = None,
        history: Optional[HistoricalDataProvider] = None,
        risk_free_rate: float = RISK_FREE_RATE,
        liquidity_factor: float = DEFAULT_LIQUIDITY_FACTOR
    ):
        self.estimator = estimator
        self.pricer = pricer or BinaryOptionPricer()
        self.monitor = monitor
        self.amm = amm
        self.history = history if history is not None else estimator.history
        self.risk_free_rate = risk_free_rate
        self.liquidity_factor = liquidity_factor

        self._subscription: Optional[int] = None
        if monitor is not None:
            self._subscription = monitor.subscribe(self.handle_market_update)

    async def handle_market_update(
        self,
        instrument_id: str,
        snapshot: MarketSnapshot,
        update_type: UpdateType
    ) -> None:
        """Record the observation and refresh volatility on big moves."""
        await self.history.store_data_point(
            instrument_id,
            DataPoint(price=snapshot.price, volume=snapshot.volume, timestamp=snapshot.timestamp),
        )

        if update_type == UpdateType.SIGNIFICANT_CHANGE:
            logger.info(f"Significant move on {instrument_id} ({snapshot.price:.4f}), re-estimating volatility")
            self.estimator.refresh(instrument_id)

    def get_quote(
        self,
        descriptor: OptionDescriptor,
        pool_aware: bool = False,
        now: Optional[datetime] = None
    ) -> PriceQuote:
        """
        Price an option.

        Args:
            descriptor: Option to price
            pool_aware: Widen the quote through the instrument's AMM pool
                and record it as the pool's execution reference
            now: Valuation time (uses now if None)

        Returns:
            PriceQuote; never raises on degenerate time or volatility
        """
        T = time_to_expiry(descriptor.expiry, now)
        volatility = self.estimator.get_dynamic_volatility(descriptor.underlying_market, T)

        quote = self.pricer.price(
            descriptor,
            volatility=volatility,
            risk_free_rate=self.risk_free_rate,
            liquidity_factor=self.liquidity_factor,
            time_to_expiry=T,
            timestamp=now,
        )

        if pool_aware and self.amm is not None and self.amm.has_pool(descriptor.instrument_id):
            quote = self.amm.quote(descriptor.instrument_id, quote, now)
            self.amm.record_quote(descriptor.instrument_id, quote)

        logger.debug(
            f"Quote {descriptor.instrument_id}: bid={quote.bid_price:.4f} "
            f"mid={quote.mid_price:.4f} ask={quote.ask_price:.4f} "
            f"(vol={volatility:.4f}, T={T:.4f}y)"
        )
        return quote

    def close(self) -> None:
        """Detach from the monitor."""
        if self.monitor is not None and self._subscription is not None:
            self.monitor.unsubscribe(self._subscription)
            self._subscription = None
