"""Automated market maker over per-instrument liquidity pools."""
from .pool import (
    AutomatedMarketMaker,
    LastTrade,
    LiquidityPoolState,
    LiquidityReceipt,
    TradeDirection,
    TradeReceipt,
    calculate_liquidity_factor,
    calculate_slippage,
    imbalance_ratio,
    option_instrument_id,
)

__all__ = [
    "AutomatedMarketMaker",
    "LastTrade",
    "LiquidityPoolState",
    "LiquidityReceipt",
    "TradeDirection",
    "TradeReceipt",
    "calculate_liquidity_factor",
    "calculate_slippage",
    "imbalance_ratio",
    "option_instrument_id",
]
