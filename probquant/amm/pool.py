"""
Automated market maker with one liquidity pool per instrument.

Pool state is an immutable snapshot. Mutations for one instrument are
serialized by that pool's lock and publish a new snapshot with a single
reference swap, so readers always see a complete state.
"""
import logging
import math
import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from ..config import (
    DEFAULT_INITIAL_PRICE,
    MAX_EXECUTION_PRICE,
    MAX_ORDER_FRACTION,
    MAX_SLIPPAGE,
    MIN_EXECUTION_PRICE,
    RECENT_ACTIVITY_WINDOW_SECONDS,
    REFERENCE_LIQUIDITY,
)
from ..errors import InvalidInputError, OrderTooLargeError, PoolNotFoundError
from ..models.pricing import PriceQuote

logger = logging.getLogger(__name__)

_OPTION_ID = re.compile(r"^(?P<market>.+)-(?P<kind>CALL|PUT)-(?P<strike>\d*\.?\d+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradeDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class LastTrade:
    amount: float
    direction: TradeDirection
    timestamp: datetime


@dataclass(frozen=True)
class LiquidityPoolState:
    """Snapshot of a pool. Replaced wholesale on every mutation."""
    instrument_id: str
    liquidity: float
    max_order_size: float
    total_volume: float
    buy_volume: float
    sell_volume: float
    imbalance_ratio: float
    last_quote: PriceQuote
    last_trade: Optional[LastTrade] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TradeReceipt:
    instrument_id: str
    direction: TradeDirection
    amount: float
    execution_price: float
    slippage: float
    timestamp: datetime


@dataclass(frozen=True)
class LiquidityReceipt:
    instrument_id: str
    total_liquidity: float
    max_order_size: float
    amount_removed: float = 0.0


def imbalance_ratio(buy_volume: float, sell_volume: float) -> float:
    """|buy - sell| / total, or 0 when nothing has traded."""
    total = buy_volume + sell_volume
    if total <= 0:
        return 0.0
    return min(1.0, abs(buy_volume - sell_volume) / total)


def calculate_slippage(order_size: float, pool_liquidity: float) -> float:
    """Larger orders relative to liquidity create more slippage."""
    if pool_liquidity <= 0:
        return MAX_SLIPPAGE
    return min(MAX_SLIPPAGE, (order_size / pool_liquidity) ** 1.5 * 0.5)


def calculate_liquidity_factor(pool: LiquidityPoolState, now: Optional[datetime] = None) -> float:
    """
    Spread widening factor for a pool.

    Deep pools quote tighter, imbalanced pools wider, and recent trading
    activity grants up to a 20% discount.
    """
    liquidity_scale = min(1.0, max(0.1, pool.liquidity / REFERENCE_LIQUIDITY))
    imbalance_factor = min(2.0, 1 + pool.imbalance_ratio * 3)

    recent_activity_discount = 0.0
    if pool.last_trade is not None:
        now = now or _utcnow()
        elapsed = (now - pool.last_trade.timestamp).total_seconds()
        recent_activity_discount = max(0.5, 1 - elapsed / RECENT_ACTIVITY_WINDOW_SECONDS)

    return (1 / liquidity_scale) * imbalance_factor * (1 - recent_activity_discount * 0.2)


def _require_positive(name: str, amount: float) -> None:
    if not amount > 0 or math.isinf(amount):
        raise InvalidInputError(f"{name} must be a positive finite number, got {amount}")


def _parse_direction(direction) -> TradeDirection:
    if isinstance(direction, TradeDirection):
        return direction
    try:
        return TradeDirection(str(direction).upper())
    except ValueError:
        raise InvalidInputError(f"Unknown trade direction: {direction}") from None


def _require_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidInputError(f"{name} must be in [0, 1], got {value}")


class _Pool:
    """Holds the current snapshot and the lock serializing its writers."""

    __slots__ = ("lock", "state")

    def __init__(self, state: LiquidityPoolState):
        self.lock = threading.Lock()
        self.state = state


class AutomatedMarketMaker:
    """
    Liquidity pools keyed by instrument id.

    At most one mutation per instrument runs at a time; different
    instruments never contend with each other. The registry lock is only
    held while looking up or creating a pool.
    """

    def __init__(self):
        self._pools: Dict[str, _Pool] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _lookup(self, instrument_id: str) -> _Pool:
        pool = self._pools.get(instrument_id)
        if pool is None:
            raise PoolNotFoundError(instrument_id)
        return pool

    def _get_or_create(self, instrument_id: str, initial_price: float) -> _Pool:
        with self._registry_lock:
            pool = self._pools.get(instrument_id)
            if pool is None:
                pool = _Pool(self._new_state(instrument_id, initial_price))
                self._pools[instrument_id] = pool
                logger.info(f"Created liquidity pool {instrument_id} at {initial_price:.4f}")
            return pool

    @staticmethod
    def _new_state(instrument_id: str, initial_price: float) -> LiquidityPoolState:
        synthetic_quote = PriceQuote(
            mid_price=initial_price,
            bid_price=max(0.0, initial_price * 0.95),
            ask_price=min(1.0, initial_price * 1.05),
            delta=0.0,
            gamma=0.0,
            theta=0.0,
            vega=0.0,
        )
        return LiquidityPoolState(
            instrument_id=instrument_id,
            liquidity=0.0,
            max_order_size=0.0,
            total_volume=0.0,
            buy_volume=0.0,
            sell_volume=0.0,
            imbalance_ratio=0.0,
            last_quote=synthetic_quote,
        )

    def has_pool(self, instrument_id: str) -> bool:
        return instrument_id in self._pools

    def get_pool(self, instrument_id: str) -> LiquidityPoolState:
        return self._lookup(instrument_id).state

    def list_pools(self) -> List[LiquidityPoolState]:
        with self._registry_lock:
            pools = list(self._pools.values())
        return [p.state for p in pools]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def initialize_pool(self, instrument_id: str, initial_price: float = DEFAULT_INITIAL_PRICE) -> LiquidityPoolState:
        """Create an empty pool. Existing pools are left untouched."""
        _require_probability("initial_price", initial_price)
        return self._get_or_create(instrument_id, initial_price).state

    def add_liquidity(
        self,
        instrument_id: str,
        amount: float,
        initial_price: float = DEFAULT_INITIAL_PRICE
    ) -> LiquidityReceipt:
        """Add liquidity, creating the pool on first use."""
        _require_positive("amount", amount)
        _require_probability("initial_price", initial_price)

        pool = self._get_or_create(instrument_id, initial_price)
        with pool.lock:
            liquidity = pool.state.liquidity + amount
            pool.state = replace(
                pool.state,
                liquidity=liquidity,
                max_order_size=liquidity * MAX_ORDER_FRACTION,
            )
            state = pool.state

        logger.debug(f"Added {amount} liquidity to {instrument_id}, total {state.liquidity}")
        return LiquidityReceipt(
            instrument_id=instrument_id,
            total_liquidity=state.liquidity,
            max_order_size=state.max_order_size,
        )

    def remove_liquidity(self, instrument_id: str, amount: float) -> LiquidityReceipt:
        """Remove up to `amount`; liquidity never goes negative."""
        _require_positive("amount", amount)

        pool = self._lookup(instrument_id)
        with pool.lock:
            removed = min(amount, pool.state.liquidity)
            liquidity = pool.state.liquidity - removed
            pool.state = replace(
                pool.state,
                liquidity=liquidity,
                max_order_size=max(liquidity * MAX_ORDER_FRACTION, 0.0),
            )
            state = pool.state

        logger.debug(f"Removed {removed} liquidity from {instrument_id}, total {state.liquidity}")
        return LiquidityReceipt(
            instrument_id=instrument_id,
            total_liquidity=state.liquidity,
            max_order_size=state.max_order_size,
            amount_removed=removed,
        )

    def record_quote(self, instrument_id: str, quote: PriceQuote) -> None:
        """Store the latest quote as the pool's execution reference."""
        pool = self._lookup(instrument_id)
        with pool.lock:
            pool.state = replace(pool.state, last_quote=quote)

    def execute_trade(
        self,
        instrument_id: str,
        direction: TradeDirection,
        amount: float,
        now: Optional[datetime] = None
    ) -> TradeReceipt:
        """
        Fill a trade against the pool at its last quote plus slippage.

        Raises:
            PoolNotFoundError: no pool for the instrument
            OrderTooLargeError: amount exceeds max_order_size
        """
        direction = _parse_direction(direction)
        _require_positive("amount", amount)

        pool = self._lookup(instrument_id)
        with pool.lock:
            state = pool.state
            if amount > state.max_order_size:
                raise OrderTooLargeError(instrument_id, amount, state.max_order_size)

            slippage = calculate_slippage(amount, state.liquidity)

            if direction == TradeDirection.BUY:
                execution_price = min(state.last_quote.ask_price * (1 + slippage), MAX_EXECUTION_PRICE)
                buy_volume, sell_volume = state.buy_volume + amount, state.sell_volume
            else:
                execution_price = max(state.last_quote.bid_price * (1 - slippage), MIN_EXECUTION_PRICE)
                buy_volume, sell_volume = state.buy_volume, state.sell_volume + amount

            timestamp = now or _utcnow()
            pool.state = replace(
                state,
                total_volume=buy_volume + sell_volume,
                buy_volume=buy_volume,
                sell_volume=sell_volume,
                imbalance_ratio=imbalance_ratio(buy_volume, sell_volume),
                last_trade=LastTrade(amount, direction, timestamp),
            )

        logger.debug(
            f"{direction.value} {amount} {instrument_id} @ {execution_price:.4f} "
            f"(slippage {slippage:.5f})"
        )
        return TradeReceipt(
            instrument_id=instrument_id,
            direction=direction,
            amount=amount,
            execution_price=execution_price,
            slippage=slippage,
            timestamp=timestamp,
        )

    # ------------------------------------------------------------------
    # Quoting
    # ------------------------------------------------------------------

    def quote(
        self,
        instrument_id: str,
        base_quote: PriceQuote,
        now: Optional[datetime] = None
    ) -> PriceQuote:
        """
        Widen a model quote according to pool conditions.

        Without a pool the base quote is returned unchanged.
        """
        pool = self._pools.get(instrument_id)
        if pool is None:
            return base_quote

        state = pool.state
        factor = calculate_liquidity_factor(state, now)
        adjusted_half_spread = base_quote.half_spread * (1 + factor)
        mid = base_quote.mid_price

        return replace(
            base_quote,
            bid_price=max(0.0, mid - adjusted_half_spread),
            ask_price=min(1.0, mid + adjusted_half_spread),
        )

    # ------------------------------------------------------------------
    # Market views
    # ------------------------------------------------------------------

    def option_chain(self, market_id: str) -> List[dict]:
        """Pools named "{market}-{CALL|PUT}-{strike}", sorted by strike."""
        options = []
        for state in self.list_pools():
            match = _OPTION_ID.match(state.instrument_id)
            if not match or match.group("market") != market_id:
                continue
            options.append({
                'instrument_id': state.instrument_id,
                'market_id': market_id,
                'kind': match.group("kind"),
                'strike': float(match.group("strike")),
                'bid_price': state.last_quote.bid_price,
                'ask_price': state.last_quote.ask_price,
                'mid_price': state.last_quote.mid_price,
                'liquidity': state.liquidity,
                'total_volume': state.total_volume,
            })
        return sorted(options, key=lambda o: (o['strike'], o['kind']))

    def available_markets(self) -> List[dict]:
        """Per-market option counts and liquidity, deepest first."""
        markets: Dict[str, dict] = {}
        for state in self.list_pools():
            match = _OPTION_ID.match(state.instrument_id)
            if not match:
                continue
            summary = markets.setdefault(match.group("market"), {
                'market_id': match.group("market"),
                'call_options': 0,
                'put_options': 0,
                'total_liquidity': 0.0,
                'total_volume': 0.0,
            })
            if match.group("kind") == "CALL":
                summary['call_options'] += 1
            else:
                summary['put_options'] += 1
            summary['total_liquidity'] += state.liquidity
            summary['total_volume'] += state.total_volume
        return sorted(markets.values(), key=lambda m: m['total_liquidity'], reverse=True)


def option_instrument_id(market_id: str, kind: str, strike: float) -> str:
    """Build the pool id for an option on a market, e.g. "btc-usd-CALL-0.6"."""
    kind = getattr(kind, "value", kind)
    return f"{market_id}-{kind.upper()}-{strike:g}"
