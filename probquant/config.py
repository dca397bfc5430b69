"""
Configuration settings for probquant pricing and market making.
"""
from pathlib import Path

# Pricing
RISK_FREE_RATE = 0.05
DEFAULT_LIQUIDITY_FACTOR = 0.10  # spread multiplier when not quoting through the AMM
DAYS_PER_YEAR = 365
SECONDS_PER_YEAR = DAYS_PER_YEAR * 24 * 60 * 60  # 31,536,000

# Volatility estimation
DEFAULT_VOLATILITY = 0.30  # used when history has fewer than two usable returns
MIN_VOLATILITY = 0.10
MAX_VOLATILITY = 1.00
EWMA_LAMBDA = 0.94
EWMA_SEED_RETURNS = 5
HISTORY_WINDOW_DAYS = 30
HISTORY_RETENTION_DAYS = 90

# Market monitoring
MONITOR_INTERVAL_MS = 30_000
SIGNIFICANT_CHANGE_THRESHOLD = 0.05

# AMM
MAX_ORDER_FRACTION = 0.10  # max order size as a fraction of pool liquidity
REFERENCE_LIQUIDITY = 10_000.0
MAX_SLIPPAGE = 0.20
MIN_EXECUTION_PRICE = 0.01
MAX_EXECUTION_PRICE = 0.99
RECENT_ACTIVITY_WINDOW_SECONDS = 60 * 60
DEFAULT_INITIAL_PRICE = 0.5

# Polymarket CLOB API
POLYMARKET_CLOB_URL = "https://clob.polymarket.com"
REQUEST_TIMEOUT = 10.0  # seconds

# Data storage
PROJECT_ROOT = Path(__file__).parent.parent
OUTPUT_DIR = PROJECT_ROOT / "output"
