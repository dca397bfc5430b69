"""Tests for the automated market maker."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from probquant.amm import (
    AutomatedMarketMaker,
    TradeDirection,
    calculate_liquidity_factor,
    calculate_slippage,
    imbalance_ratio,
    option_instrument_id,
)
from probquant.errors import InvalidInputError, OrderTooLargeError, PoolNotFoundError
from probquant.models.pricing import PriceQuote


def model_quote(bid=0.45, ask=0.55):
    return PriceQuote(
        mid_price=(bid + ask) / 2, bid_price=bid, ask_price=ask,
        delta=0.5, gamma=1.0, theta=-0.001, vega=0.002,
    )


@pytest.fixture
def amm():
    return AutomatedMarketMaker()


class TestPoolLifecycle:

    def test_trade_scenario(self, amm):
        amm.initialize_pool("m1", 0.5)
        receipt = amm.add_liquidity("m1", 10000)

        assert receipt.total_liquidity == 10000
        assert receipt.max_order_size == 1000

        trade = amm.execute_trade("m1", TradeDirection.BUY, 500)

        assert trade.slippage == pytest.approx(0.05 ** 1.5 * 0.5)
        assert trade.execution_price == pytest.approx(0.525 * (1 + trade.slippage))

        with pytest.raises(OrderTooLargeError):
            amm.execute_trade("m1", TradeDirection.BUY, 1500)

        state = amm.get_pool("m1")
        assert state.buy_volume == 500
        assert state.total_volume == 500

    def test_initialize_is_idempotent(self, amm):
        amm.initialize_pool("m1", 0.4)
        amm.add_liquidity("m1", 100)

        state = amm.initialize_pool("m1", 0.8)

        assert state.liquidity == 100
        assert state.last_quote.mid_price == 0.4

    def test_synthetic_quote(self, amm):
        state = amm.initialize_pool("m1", 0.98)
        assert state.last_quote.bid_price == pytest.approx(0.931)
        assert state.last_quote.ask_price == 1.0

    def test_add_creates_pool(self, amm):
        amm.add_liquidity("m1", 50, initial_price=0.3)
        assert amm.has_pool("m1")
        assert amm.get_pool("m1").last_quote.mid_price == 0.3

    def test_add_remove_round_trip(self, amm):
        amm.add_liquidity("m1", 1000)
        amm.add_liquidity("m1", 250)
        receipt = amm.remove_liquidity("m1", 250)

        assert receipt.total_liquidity == 1000
        assert receipt.max_order_size == 100
        assert receipt.amount_removed == 250

    def test_over_removal_drains_to_zero(self, amm):
        amm.add_liquidity("m1", 100)
        receipt = amm.remove_liquidity("m1", 500)

        assert receipt.amount_removed == 100
        assert receipt.total_liquidity == 0
        assert receipt.max_order_size == 0

    def test_missing_pool(self, amm):
        with pytest.raises(PoolNotFoundError, match="No liquidity pool exists for ghost"):
            amm.execute_trade("ghost", TradeDirection.BUY, 1)
        with pytest.raises(PoolNotFoundError):
            amm.remove_liquidity("ghost", 1)
        with pytest.raises(PoolNotFoundError):
            amm.get_pool("ghost")

    @pytest.mark.parametrize("amount", [0, -5, float("nan"), float("inf")])
    def test_rejects_bad_amounts(self, amm, amount):
        amm.add_liquidity("m1", 1000)
        with pytest.raises(InvalidInputError):
            amm.add_liquidity("m1", amount)
        with pytest.raises(InvalidInputError):
            amm.execute_trade("m1", TradeDirection.BUY, amount)

    def test_rejects_bad_initial_price(self, amm):
        with pytest.raises(InvalidInputError):
            amm.initialize_pool("m1", 1.5)

    def test_string_direction(self, amm):
        amm.add_liquidity("m1", 1000)
        assert amm.execute_trade("m1", "sell", 10).direction == TradeDirection.SELL
        with pytest.raises(InvalidInputError):
            amm.execute_trade("m1", "hold", 10)

    def test_drained_pool_keeps_history(self, amm):
        amm.add_liquidity("m1", 1000)
        amm.execute_trade("m1", TradeDirection.SELL, 50)
        amm.remove_liquidity("m1", 1000)

        state = amm.get_pool("m1")
        assert state.sell_volume == 50
        with pytest.raises(OrderTooLargeError):
            amm.execute_trade("m1", TradeDirection.SELL, 1)


class TestExecutionPrice:

    def test_sell_is_floored(self, amm):
        amm.add_liquidity("m1", 1000, initial_price=0.005)
        trade = amm.execute_trade("m1", TradeDirection.SELL, 10)
        assert trade.execution_price == 0.01

    def test_buy_is_capped(self, amm):
        amm.add_liquidity("m1", 1000, initial_price=0.99)
        trade = amm.execute_trade("m1", TradeDirection.BUY, 100)
        assert trade.execution_price == 0.99

    def test_recorded_quote_drives_execution(self, amm):
        amm.add_liquidity("m1", 10000)
        amm.record_quote("m1", model_quote(0.30, 0.40))

        trade = amm.execute_trade("m1", TradeDirection.SELL, 100)

        assert trade.execution_price == pytest.approx(0.30 * (1 - calculate_slippage(100, 10000)))


class TestImbalance:

    def test_ratio_helper(self):
        assert imbalance_ratio(0, 0) == 0.0
        assert imbalance_ratio(300, 100) == pytest.approx(0.5)
        assert imbalance_ratio(0, 50) == 1.0

    def test_trades_update_ratio(self, amm):
        amm.add_liquidity("m1", 10000)
        amm.execute_trade("m1", TradeDirection.BUY, 300)
        assert amm.get_pool("m1").imbalance_ratio == 1.0

        amm.execute_trade("m1", TradeDirection.SELL, 100)
        assert amm.get_pool("m1").imbalance_ratio == pytest.approx(0.5)

        amm.execute_trade("m1", TradeDirection.SELL, 200)
        assert amm.get_pool("m1").imbalance_ratio == 0.0


class TestQuote:

    def test_without_pool_returns_base(self, amm):
        base = model_quote()
        assert amm.quote("m1", base) is base

    def test_deep_idle_pool_doubles_spread(self, amm, now):
        amm.add_liquidity("m1", 10000)
        quoted = amm.quote("m1", model_quote(), now)

        assert quoted.bid_price == pytest.approx(0.40)
        assert quoted.ask_price == pytest.approx(0.60)
        assert quoted.mid_price == pytest.approx(0.50)
        assert quoted.delta == 0.5

    def test_factor_after_one_sided_trade(self, amm, now):
        amm.add_liquidity("m1", 10000)
        amm.execute_trade("m1", TradeDirection.BUY, 100, now=now)

        assert calculate_liquidity_factor(amm.get_pool("m1"), now) == pytest.approx(1.6)

    def test_activity_discount_decays(self, amm, now):
        amm.add_liquidity("m1", 10000)
        amm.execute_trade("m1", TradeDirection.BUY, 100, now=now)
        amm.execute_trade("m1", TradeDirection.SELL, 100, now=now)

        later = now + timedelta(hours=2)
        assert calculate_liquidity_factor(amm.get_pool("m1"), later) == pytest.approx(0.9)

    def test_shallow_pool_factor(self, amm, now):
        amm.add_liquidity("m1", 500)
        assert calculate_liquidity_factor(amm.get_pool("m1"), now) == pytest.approx(10.0)

    def test_quote_is_clamped(self, amm, now):
        amm.add_liquidity("m1", 10)
        quoted = amm.quote("m1", model_quote(0.85, 0.95), now)
        assert quoted.ask_price == 1.0
        assert quoted.bid_price >= 0.0


class TestMarketViews:

    def test_option_chain_and_markets(self, amm):
        amm.add_liquidity(option_instrument_id("btc", "CALL", 0.6), 500)
        amm.add_liquidity(option_instrument_id("btc", "put", 0.4), 300)
        amm.add_liquidity(option_instrument_id("btc", "CALL", 0.4), 200)
        amm.add_liquidity(option_instrument_id("eth", "PUT", 0.5), 2000)
        amm.add_liquidity("plain-market", 100)

        chain = amm.option_chain("btc")
        assert [(o['strike'], o['kind']) for o in chain] == [
            (0.4, "CALL"), (0.4, "PUT"), (0.6, "CALL"),
        ]
        assert chain[0]['instrument_id'] == "btc-CALL-0.4"

        markets = amm.available_markets()
        assert [m['market_id'] for m in markets] == ["eth", "btc"]
        assert markets[1]['call_options'] == 2
        assert markets[1]['put_options'] == 1
        assert markets[1]['total_liquidity'] == 1000

    def test_hyphenated_market_ids(self, amm):
        amm.add_liquidity("btc-usd-CALL-0.55", 100)
        assert amm.option_chain("btc-usd")[0]['strike'] == 0.55


class TestConcurrency:

    def test_concurrent_trades_are_serialized(self, amm):
        amm.add_liquidity("m1", 100000)
        stop = threading.Event()
        torn = []

        def reader():
            while not stop.is_set():
                state = amm.get_pool("m1")
                if state.buy_volume + state.sell_volume != state.total_volume:
                    torn.append(state)

        def trade(i):
            direction = TradeDirection.BUY if i % 2 else TradeDirection.SELL
            amm.execute_trade("m1", direction, 1)

        watcher = threading.Thread(target=reader)
        watcher.start()
        try:
            with ThreadPoolExecutor(max_workers=8) as pool:
                list(pool.map(trade, range(2000)))
        finally:
            stop.set()
            watcher.join()

        state = amm.get_pool("m1")
        assert state.total_volume == 2000
        assert state.buy_volume == state.sell_volume == 1000
        assert torn == []

    def test_busy_pool_does_not_block_other_pools(self, amm):
        amm.add_liquidity("a", 10000)
        amm.add_liquidity("b", 10000)

        def use_b():
            amm.add_liquidity("b", 100)
            return amm.execute_trade("b", TradeDirection.BUY, 10)

        busy = amm._pools["a"].lock
        with ThreadPoolExecutor(max_workers=2) as pool:
            busy.acquire()
            try:
                blocked = pool.submit(amm.execute_trade, "a", TradeDirection.BUY, 10)
                other = pool.submit(use_b)

                b_trade = other.result(timeout=2.0)
                a_was_waiting = not blocked.done()
            finally:
                busy.release()
            a_trade = blocked.result(timeout=2.0)

        assert b_trade.instrument_id == "b"
        assert a_was_waiting
        assert a_trade.instrument_id == "a"
        assert amm.get_pool("b").liquidity == 10100

    def test_concurrent_pool_creation(self, amm):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: amm.add_liquidity("m1", 10), range(200)))

        assert len(amm.list_pools()) == 1
        assert amm.get_pool("m1").liquidity == pytest.approx(2000)
