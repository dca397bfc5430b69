"""Tests for volatility estimation and caching."""
import asyncio
import math
import random
import statistics
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from probquant.config import DEFAULT_VOLATILITY
from probquant.data.history import InMemoryHistoryStore
from probquant.models.volatility import (
    VolatilityEstimator,
    VolatilityMethod,
    apply_term_structure,
    ewma_volatility,
    historical_volatility,
)
from tests.conftest import daily_series

MODERATE = [0.50, 0.51, 0.505, 0.52, 0.515, 0.53]


def log_returns(prices):
    return [math.log(b / a) for a, b in zip(prices, prices[1:])]


class TestHistoricalVolatility:

    def test_matches_sample_stdev(self):
        expected = statistics.stdev(log_returns(MODERATE)) * math.sqrt(365)
        assert 0.1 < expected < 1.0
        assert historical_volatility(daily_series(MODERATE)) == pytest.approx(expected)

    def test_unordered_input_is_sorted(self):
        points = daily_series(MODERATE)
        shuffled = points[:]
        random.Random(7).shuffle(shuffled)
        assert historical_volatility(shuffled) == pytest.approx(historical_volatility(points))

    def test_floor(self):
        flat = [0.5, 0.500001, 0.5, 0.500001, 0.5, 0.500001]
        assert historical_volatility(daily_series(flat)) == 0.10

    def test_ceiling(self):
        wild = [0.1, 0.9] * 10
        assert historical_volatility(daily_series(wild)) == 1.00

    def test_non_positive_prices_break_the_pair(self):
        with_gaps = [0.50, 0.0, 0.51, 0.505, -0.2, 0.52, 0.515, 0.53]
        returns = [
            math.log(0.505 / 0.51),
            math.log(0.515 / 0.52),
            math.log(0.53 / 0.515),
        ]
        expected = min(max(statistics.stdev(returns) * math.sqrt(365), 0.1), 1.0)

        assert historical_volatility(daily_series(with_gaps)) == pytest.approx(expected)

    def test_no_return_spans_a_bad_tick(self):
        # 0.50 -> 0.60 across the zero tick would otherwise pin vol at the ceiling
        prices = [0.50, 0.0, 0.60, 0.601, 0.602, 0.603]
        assert historical_volatility(daily_series(prices)) == pytest.approx(0.1)
        assert ewma_volatility(daily_series(prices)) == pytest.approx(0.1)

    def test_too_few_returns_uses_default(self):
        assert historical_volatility(daily_series([0.5, 0.6])) == DEFAULT_VOLATILITY
        assert historical_volatility([]) == DEFAULT_VOLATILITY


class TestEWMAVolatility:

    def test_matches_manual_fold(self):
        returns = log_returns(MODERATE)
        variance = sum(r * r for r in returns[:5]) / 5
        for r in returns:
            variance = 0.94 * variance + 0.06 * r * r
        expected = min(max(math.sqrt(variance * 365), 0.1), 1.0)

        assert ewma_volatility(daily_series(MODERATE)) == pytest.approx(expected)

    def test_seed_uses_available_returns_when_short(self):
        prices = [0.5, 0.52, 0.51]
        returns = log_returns(prices)
        variance = sum(r * r for r in returns) / 2
        for r in returns:
            variance = 0.94 * variance + 0.06 * r * r
        expected = min(max(math.sqrt(variance * 365), 0.1), 1.0)

        assert ewma_volatility(daily_series(prices)) == pytest.approx(expected)

    def test_bounds(self):
        assert ewma_volatility(daily_series([0.5, 0.500001] * 5)) == 0.10
        assert ewma_volatility(daily_series([0.1, 0.9] * 10)) == 1.00


class TestTermStructure:

    def test_short_dated_inflates(self):
        assert apply_term_structure(0.30, 0.05) == pytest.approx(0.345)
        assert apply_term_structure(0.30, 0.05) > 0.30

    def test_long_dated_deflates(self):
        assert apply_term_structure(0.30, 1.0) == pytest.approx(0.255)
        assert apply_term_structure(0.30, 1.0) < 0.30

    def test_long_dated_haircut_capped(self):
        assert apply_term_structure(0.30, 10.0) == pytest.approx(0.21)

    def test_mid_range_unchanged(self):
        assert apply_term_structure(0.30, 0.1) == 0.30
        assert apply_term_structure(0.30, 0.3) == 0.30
        assert apply_term_structure(0.30, 0.5) == 0.30

    def test_expired_unchanged(self):
        assert apply_term_structure(0.30, 0.0) == 0.30


class TestVolatilityEstimator:

    @pytest.mark.asyncio
    async def test_estimate_caches_result(self):
        history = InMemoryHistoryStore()
        for point in daily_series(MODERATE, end=datetime.now(timezone.utc)):
            await history.store_data_point("m1", point)

        estimator = VolatilityEstimator(history)
        assert estimator.get_volatility("m1") == DEFAULT_VOLATILITY

        vol = await estimator.estimate("m1")

        assert vol == pytest.approx(historical_volatility(daily_series(MODERATE)))
        assert estimator.get_volatility("m1") == vol
        assert estimator.get_estimate("m1").method == VolatilityMethod.HISTORICAL

    @pytest.mark.asyncio
    async def test_estimate_ewma_method(self):
        history = AsyncMock()
        history.get_historical_data.return_value = daily_series(MODERATE)

        estimator = VolatilityEstimator(history)
        vol = await estimator.estimate("m1", VolatilityMethod.EWMA)

        assert vol == pytest.approx(ewma_volatility(daily_series(MODERATE)))
        assert estimator.get_estimate("m1").method == VolatilityMethod.EWMA
        history.get_historical_data.assert_awaited_once_with("m1", 30)

    @pytest.mark.asyncio
    async def test_insufficient_history_falls_back(self):
        history = AsyncMock()
        history.get_historical_data.return_value = daily_series([0.5, 0.0, -1.0])

        estimator = VolatilityEstimator(history)

        assert await estimator.estimate("m1") == DEFAULT_VOLATILITY
        assert estimator.get_estimate("m1").annualized_vol == DEFAULT_VOLATILITY

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        history = AsyncMock()
        history.get_historical_data.side_effect = [
            daily_series(MODERATE),
            daily_series([0.1, 0.9] * 10),
        ]
        estimator = VolatilityEstimator(history)

        await estimator.estimate("m1")
        await estimator.estimate("m1")

        assert estimator.get_volatility("m1") == 1.0

    @pytest.mark.asyncio
    async def test_cache_miss_returns_default_and_refreshes(self):
        history = AsyncMock()
        history.get_historical_data.return_value = daily_series([0.1, 0.9] * 10)
        estimator = VolatilityEstimator(history)

        vol = estimator.get_dynamic_volatility("m1", 0.3)
        assert vol == DEFAULT_VOLATILITY

        task = estimator.refresh("m1")
        assert task is not None
        await task

        assert estimator.get_dynamic_volatility("m1", 0.3) == 1.0
        assert estimator.get_dynamic_volatility("m1", 1.0) == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_refresh_is_deduplicated(self):
        history = AsyncMock()
        history.get_historical_data.return_value = daily_series(MODERATE)
        estimator = VolatilityEstimator(history)

        first = estimator.refresh("m1")
        second = estimator.refresh("m1")
        assert first is second

        await first
        await asyncio.sleep(0)
        third = estimator.refresh("m1")
        assert third is not first
        await third

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_estimate(self):
        history = AsyncMock()
        history.get_historical_data.side_effect = [
            daily_series(MODERATE),
            RuntimeError("store unavailable"),
        ]
        estimator = VolatilityEstimator(history)
        previous = await estimator.estimate("m1")

        result = await estimator.refresh("m1")

        assert result is None
        assert estimator.get_volatility("m1") == previous

    def test_refresh_without_event_loop(self):
        estimator = VolatilityEstimator(AsyncMock())
        assert estimator.refresh("m1") is None
        assert estimator.get_dynamic_volatility("m1", 0.3) == DEFAULT_VOLATILITY
