"""
Binary Options Pricing Models for probability markets.

This module provides:
- Binary option pricing using a Black-Scholes framework over probabilities
- Greeks calculations (Delta, Gamma, Theta, Vega)
- Historical and EWMA volatility estimation with term structure
"""
from .pricing import (
    BinaryOptionPricer,
    OptionDescriptor,
    OptionKind,
    PriceQuote,
    normal_cdf,
    normal_pdf,
    time_to_expiry,
)
from .volatility import (
    VolatilityEstimate,
    VolatilityEstimator,
    VolatilityMethod,
    apply_term_structure,
    ewma_volatility,
    historical_volatility,
)

__all__ = [
    # Pricing
    "BinaryOptionPricer",
    "OptionDescriptor",
    "OptionKind",
    "PriceQuote",
    "normal_cdf",
    "normal_pdf",
    "time_to_expiry",
    # Volatility
    "VolatilityEstimate",
    "VolatilityEstimator",
    "VolatilityMethod",
    "apply_term_structure",
    "ewma_volatility",
    "historical_volatility",
]
