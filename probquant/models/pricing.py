"""
Binary Options Pricing Model for probability-denominated markets.

Uses an adapted Black-Scholes model where the underlying is itself a
probability in [0, 1] (e.g. the YES price of a prediction market).
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from scipy.stats import norm

from ..config import SECONDS_PER_YEAR
from ..errors import InvalidInputError

# Abramowitz & Stegun 7.1.26 coefficients for erf
_AS_P = 0.3275911
_AS_A1 = 0.254829592
_AS_A2 = -0.284496736
_AS_A3 = 1.421413741
_AS_A4 = -1.453152027
_AS_A5 = 1.061405429


class OptionKind(str, Enum):
    CALL = "CALL"
    PUT = "PUT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OptionDescriptor:
    """Immutable description of the option being quoted."""
    instrument_id: str
    underlying_probability: float
    strike_probability: float
    expiry: datetime
    kind: OptionKind = OptionKind.CALL
    # Underlying market driving volatility; defaults to instrument_id
    market_id: Optional[str] = None

    def __post_init__(self):
        for name in ("underlying_probability", "strike_probability"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0 or math.isnan(value):
                raise InvalidInputError(f"{name} must be in [0, 1], got {value}")
        if not isinstance(self.kind, OptionKind):
            object.__setattr__(self, "kind", OptionKind(str(self.kind).upper()))

    @property
    def underlying_market(self) -> str:
        return self.market_id or self.instrument_id


@dataclass(frozen=True)
class PriceQuote:
    """Result of a pricing call. Replaced, never mutated."""
    mid_price: float
    bid_price: float
    ask_price: float
    delta: float
    gamma: float
    theta: float  # Per day
    vega: float   # Per 1% volatility move
    computed_at: datetime = field(default_factory=_utcnow)

    @property
    def spread(self) -> float:
        return self.ask_price - self.bid_price

    @property
    def half_spread(self) -> float:
        return (self.ask_price - self.bid_price) / 2


def normal_cdf(x: float) -> float:
    """
    Standard normal CDF via the Abramowitz-Stegun rational approximation.

    Max absolute error is about 1.5e-7. The closed form keeps quotes
    reproducible across platforms, so it is preferred over scipy here.
    """
    sign = -1.0 if x < 0 else 1.0
    x = abs(x) / math.sqrt(2.0)

    t = 1.0 / (1.0 + _AS_P * x)
    poly = ((((_AS_A5 * t + _AS_A4) * t + _AS_A3) * t + _AS_A2) * t + _AS_A1) * t
    erf = 1.0 - poly * math.exp(-x * x)

    return 0.5 * (1.0 + sign * erf)


def normal_pdf(x: float) -> float:
    """Standard normal PDF."""
    if math.isinf(x):
        return 0.0
    return float(norm.pdf(x))


def time_to_expiry(expiry: datetime, now: Optional[datetime] = None) -> float:
    """
    Years until expiry (365-day year), floored at 0.

    Naive datetimes are treated as UTC.
    """
    if now is None:
        now = _utcnow()
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = (expiry - now).total_seconds()
    return max(0.0, seconds / SECONDS_PER_YEAR)


class BinaryOptionPricer:
    """
    Binary options pricing using a Black-Scholes framework over probabilities.

    Formulas:
        d1 = (ln(P/K) + (r + 0.5*sigma^2)*T) / (sigma*sqrt(T))
        d2 = d1 - sigma*sqrt(T)

        Binary Call Price = e^(-rT) * N(d2)
        Binary Put Price  = e^(-rT) * (1 - N(d2))

    P is the underlying probability and K the strike probability, both
    already in the [0, 1] price domain. Stateless: safe to share across
    threads and instruments.
    """

    @staticmethod
    def _calculate_d1_d2(
        P: float,
        K: float,
        T: float,
        sigma: float,
        r: float
    ) -> Tuple[float, float]:
        """
        Calculate d1 and d2.

        Degenerate inputs (T <= 0 or sigma <= 0) fall back to d1 = d2 = 0.
        A zero underlying or strike maps to the limiting infinities.
        """
        if T <= 0 or sigma <= 0:
            return 0.0, 0.0
        if P <= 0:
            return -math.inf, -math.inf
        if K <= 0:
            return math.inf, math.inf

        sigma_sqrt_T = sigma * math.sqrt(T)
        d1 = (math.log(P / K) + (r + 0.5 * sigma ** 2) * T) / sigma_sqrt_T
        d2 = d1 - sigma_sqrt_T

        return d1, d2

    def mid_price(self, kind: OptionKind, d2: float, T: float, r: float) -> float:
        discount = math.exp(-r * T)
        if kind == OptionKind.CALL:
            price = discount * normal_cdf(d2)
        else:
            price = discount * (1.0 - normal_cdf(d2))
        return max(0.0, min(1.0, price))

    def calculate_greeks(
        self,
        kind: OptionKind,
        P: float,
        K: float,
        T: float,
        sigma: float,
        r: float
    ) -> dict:
        """
        Calculate Greeks for a binary option.

        Returns:
            Dict with delta, gamma, theta (per day), vega (per 1% vol)
        """
        d1, d2 = self._calculate_d1_d2(P, K, T, sigma, r)

        sqrt_T = math.sqrt(T) if T > 0 else 0.0
        if sigma * sqrt_T <= 0:
            return {'delta': 0.0, 'gamma': 0.0, 'theta': 0.0, 'vega': 0.0}

        n_d1 = normal_pdf(d1)

        if kind == OptionKind.CALL:
            delta = normal_cdf(d1)
        else:
            delta = normal_cdf(d1) - 1.0

        gamma_denominator = P * sigma * sqrt_T
        gamma = n_d1 / gamma_denominator if gamma_denominator > 0 else 0.0

        vega = P * n_d1 * sqrt_T / 100

        theta_decay = -P * n_d1 * sigma / (2 * sqrt_T)
        carry = r * K * math.exp(-r * T)
        if kind == OptionKind.CALL:
            theta_rate = -carry * normal_cdf(d2)
        else:
            theta_rate = carry * normal_cdf(-d2)
        theta = (theta_decay + theta_rate) / 365

        return {'delta': delta, 'gamma': gamma, 'theta': theta, 'vega': vega}

    def price(
        self,
        descriptor: OptionDescriptor,
        volatility: float,
        risk_free_rate: float,
        liquidity_factor: float,
        time_to_expiry: float,
        timestamp: Optional[datetime] = None
    ) -> PriceQuote:
        """
        Full pricing calculation with spread and Greeks.

        Args:
            descriptor: Option to price
            volatility: Annualized volatility
            risk_free_rate: Continuously compounded rate
            liquidity_factor: Spread multiplier
            time_to_expiry: Years to expiry (negative values are clamped to 0)
            timestamp: Timestamp for result (uses now if None)

        Returns:
            PriceQuote with bid <= mid <= ask, all within [0, 1]
        """
        P = descriptor.underlying_probability
        K = descriptor.strike_probability
        T = max(0.0, time_to_expiry)
        sigma = volatility
        r = risk_free_rate

        _, d2 = self._calculate_d1_d2(P, K, T, sigma, r)
        mid = self.mid_price(descriptor.kind, d2, T, r)

        spread = liquidity_factor * max(sigma, 0.0) * math.sqrt(T)
        half_spread = max(spread, 0.0) / 2
        bid = max(0.0, mid - half_spread)
        ask = min(1.0, mid + half_spread)

        greeks = self.calculate_greeks(descriptor.kind, P, K, T, sigma, r)

        return PriceQuote(
            mid_price=mid,
            bid_price=bid,
            ask_price=ask,
            delta=greeks['delta'],
            gamma=greeks['gamma'],
            theta=greeks['theta'],
            vega=greeks['vega'],
            computed_at=timestamp or _utcnow(),
        )
