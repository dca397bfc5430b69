"""Custom exceptions for probquant."""


class ProbQuantError(Exception):
    """Base exception for probquant errors."""
    pass


class InvalidInputError(ProbQuantError, ValueError):
    """Raised on negative amounts or probabilities outside [0, 1]."""
    pass


class PoolNotFoundError(ProbQuantError, KeyError):
    """Raised when an operation references an instrument with no pool."""

    def __init__(self, instrument_id: str):
        super().__init__(instrument_id)
        self.instrument_id = instrument_id

    def __str__(self) -> str:
        return f"No liquidity pool exists for {self.instrument_id}"


class OrderTooLargeError(ProbQuantError):
    """Raised when a trade exceeds the pool's maximum order size."""

    def __init__(self, instrument_id: str, amount: float, max_order_size: float):
        super().__init__(
            f"Order size {amount} exceeds maximum allowed ({max_order_size}) "
            f"for {instrument_id}"
        )
        self.instrument_id = instrument_id
        self.amount = amount
        self.max_order_size = max_order_size


class FeedFetchError(ProbQuantError):
    """Raised when the market feed cannot produce a snapshot."""
    pass
