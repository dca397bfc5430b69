"""
probquant - Binary option pricing and market making for probability markets

Main entry point for quoting, market monitoring and surface generation.
"""
import argparse
import asyncio
import logging
import signal
from datetime import datetime, timedelta, timezone

from .amm import AutomatedMarketMaker, TradeDirection
from .config import MONITOR_INTERVAL_MS
from .data import InMemoryHistoryStore, MarketMonitor, PolymarketFeed, SimulatedFeed
from .engine import PricingEngine
from .models import OptionDescriptor, OptionKind, VolatilityEstimator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


class GracefulExit:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._exit_handler)
        signal.signal(signal.SIGTERM, self._exit_handler)

    def _exit_handler(self, signum, frame):
        logger.info("Shutdown signal received...")
        self.should_exit = True


def _print_quote(label: str, quote) -> None:
    print(f"{label}")
    print(f"  Bid:   {quote.bid_price:.4f}")
    print(f"  Mid:   {quote.mid_price:.4f}")
    print(f"  Ask:   {quote.ask_price:.4f}")
    print(f"  Delta: {quote.delta:+.4f}  Gamma: {quote.gamma:.4f}")
    print(f"  Theta: {quote.theta:+.6f}/day  Vega: {quote.vega:.6f}")
    print()


async def run_quote(args) -> None:
    """Price one option, optionally against a funded pool."""
    history = InMemoryHistoryStore()
    estimator = VolatilityEstimator(history)
    amm = AutomatedMarketMaker()
    engine = PricingEngine(estimator, amm=amm)

    descriptor = OptionDescriptor(
        instrument_id=args.instrument,
        underlying_probability=args.probability,
        strike_probability=args.strike,
        expiry=datetime.now(timezone.utc) + timedelta(days=args.days),
        kind=OptionKind(args.kind.upper()),
    )

    print()
    _print_quote(f"Model quote for {descriptor.instrument_id} ({descriptor.kind.value})",
                 engine.get_quote(descriptor))

    if args.liquidity > 0:
        amm.initialize_pool(descriptor.instrument_id, args.probability)
        receipt = amm.add_liquidity(descriptor.instrument_id, args.liquidity)
        print(f"Pool funded: liquidity={receipt.total_liquidity:.2f}, "
              f"max order={receipt.max_order_size:.2f}")
        print()
        _print_quote("Pool-adjusted quote", engine.get_quote(descriptor, pool_aware=True))

        if args.trade > 0:
            trade = amm.execute_trade(descriptor.instrument_id, TradeDirection.BUY, args.trade)
            print(f"BUY {trade.amount:.2f} filled at {trade.execution_price:.4f} "
                  f"(slippage {trade.slippage:.5f})")
            print()


async def run_monitor(args) -> None:
    """Monitor instruments and print updates until interrupted."""
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    graceful_exit = GracefulExit()

    feed = PolymarketFeed() if args.feed == "polymarket" else SimulatedFeed(seed=args.seed)
    history = InMemoryHistoryStore()
    estimator = VolatilityEstimator(history)
    monitor = MarketMonitor(feed)
    engine = PricingEngine(estimator, monitor=monitor)

    def print_update(instrument_id, snapshot, update_type):
        vol = estimator.get_volatility(instrument_id)
        print(f"{snapshot.timestamp:%H:%M:%S} {instrument_id}: "
              f"{snapshot.price:.4f} vol={vol:.2%} [{update_type.value}]")

    token = monitor.subscribe(print_update)

    print()
    print("=" * 60)
    print("  probquant - Market Monitor")
    print("=" * 60)
    print()
    print(f"Feed: {args.feed}")
    print(f"Instruments: {', '.join(args.instruments)}")
    print()
    print("Press Ctrl+C to stop...")
    print()

    try:
        for instrument_id in args.instruments:
            monitor.start_monitoring(instrument_id, args.interval)

        while not graceful_exit.should_exit:
            await asyncio.sleep(0.5)
    finally:
        monitor.unsubscribe(token)
        engine.close()
        await monitor.close()
        if isinstance(feed, PolymarketFeed):
            await feed.close()

    print()
    print("Monitoring stopped.")


def run_surfaces(args) -> None:
    """Render price and Greek surfaces."""
    from .visualization import generate_all_plots

    results = generate_all_plots(
        strike=args.strike,
        volatility=args.volatility,
        kind=OptionKind(args.kind.upper()),
    )
    for name, path in results.items():
        print(f"{name}: {path}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Binary option pricing and market making for probability markets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m probquant.main quote btc-usd-CALL-0.6 --probability 0.55 --strike 0.6
  python -m probquant.main quote m1 --liquidity 10000 --trade 500
  python -m probquant.main monitor m1 m2 --interval 2000
  python -m probquant.main monitor <token_id> --feed polymarket
  python -m probquant.main surfaces --strike 0.5 --volatility 0.3
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Quote command
    quote_parser = subparsers.add_parser("quote", help="Price a binary option")
    quote_parser.add_argument("instrument", help="Instrument id")
    quote_parser.add_argument("--probability", "-p", type=float, default=0.5,
                              help="Underlying probability (default: 0.5)")
    quote_parser.add_argument("--strike", "-k", type=float, default=0.5,
                              help="Strike probability (default: 0.5)")
    quote_parser.add_argument("--days", type=float, default=30,
                              help="Days to expiry (default: 30)")
    quote_parser.add_argument("--kind", choices=["call", "put"], default="call")
    quote_parser.add_argument("--liquidity", type=float, default=0,
                              help="Fund a pool with this liquidity and show the pool quote")
    quote_parser.add_argument("--trade", type=float, default=0,
                              help="Execute a BUY of this size against the pool")

    # Monitor command
    monitor_parser = subparsers.add_parser("monitor", help="Monitor market updates")
    monitor_parser.add_argument("instruments", nargs="+", help="Instrument ids to monitor")
    monitor_parser.add_argument("--feed", choices=["simulated", "polymarket"], default="simulated")
    monitor_parser.add_argument("--interval", type=int, default=MONITOR_INTERVAL_MS,
                                help=f"Polling interval in ms (default: {MONITOR_INTERVAL_MS})")
    monitor_parser.add_argument("--seed", type=int, default=None, help="Simulated feed seed")
    monitor_parser.add_argument(
        "--debug", "-d", action="store_true", help="Enable debug logging"
    )

    # Surfaces command
    surfaces_parser = subparsers.add_parser("surfaces", help="Generate price/Greek surfaces")
    surfaces_parser.add_argument("--strike", type=float, default=0.5)
    surfaces_parser.add_argument("--volatility", type=float, default=0.30)
    surfaces_parser.add_argument("--kind", choices=["call", "put"], default="call")

    args = parser.parse_args()

    if args.command == "quote":
        asyncio.run(run_quote(args))
    elif args.command == "monitor":
        asyncio.run(run_monitor(args))
    elif args.command == "surfaces":
        run_surfaces(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
