"""Shared fixtures for probquant tests."""
from datetime import datetime, timedelta, timezone

import matplotlib
import pytest

matplotlib.use("Agg")

from probquant.data.history import DataPoint  # noqa: E402


NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def daily_series(prices, end=NOW):
    """DataPoints one day apart, the last one at `end`."""
    n = len(prices)
    return [
        DataPoint(price=p, volume=100.0, timestamp=end - timedelta(days=n - 1 - i))
        for i, p in enumerate(prices)
    ]


@pytest.fixture
def now():
    return NOW
