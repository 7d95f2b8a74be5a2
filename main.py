# main.py - Entry Point für Token Watch (Live-Preise + Paper Trading)
import argparse
import logging
import signal
import sys
import threading
import time

from dotenv import load_dotenv

load_dotenv()  # .env before config is read

import config  # noqa: E402
from core.exceptions import TradeRejected, TransientNetworkFailure  # noqa: E402
from core.logging import run_id, setup_from_config, shutdown_logging  # noqa: E402
from core.portfolio import PaperPortfolio  # noqa: E402
from services.market_data import MarketDataConfig, MarketDataService  # noqa: E402
from ui.console_ui import WatchView, banner, line, print_trade_summary  # noqa: E402

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="token-watch",
        description="Watch DexScreener token prices and paper-trade them."
    )
    parser.add_argument("tokens", nargs="+", metavar="TOKEN", help="Token contract addresses")
    parser.add_argument("--interval", type=float, default=None,
                        help=f"Refresh interval in seconds (default {config.REFRESH_INTERVAL_S})")
    parser.add_argument("--duration", type=float, default=None,
                        help="Stop after this many seconds (default: run until Ctrl+C)")
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--buy", type=float, default=None, metavar="USD",
                        help="Paper-buy this USD amount of every token after it is added")
    return parser.parse_args(argv)


def apply_overrides(args: argparse.Namespace) -> None:
    """CLI flags win over .env / config defaults."""
    if args.interval is not None:
        config.set_config_override("REFRESH_INTERVAL_S", args.interval)
    if args.log_level is not None:
        config.set_config_override("LOG_LEVEL", args.log_level)


def add_tokens(portfolio: PaperPortfolio, tokens, buy_usd=None) -> int:
    """
    Add every token, optionally place a paper buy.

    Returns:
        Number of tokens tracked
    """
    added = 0
    for token in tokens:
        try:
            position = portfolio.add_token(token)
        except (TradeRejected, TransientNetworkFailure, ValueError) as e:
            line("WATCH", f"[red]{token}: {e}[/red]")
            logger.warning(f"Could not add {token}: {e}", extra={'event_type': 'TOKEN_ADD_FAILED', 'token': token})
            continue

        added += 1
        line("WATCH", f"{position.symbol or position.token_id} @ ${position.current_price}")

        if buy_usd:
            try:
                trade = portfolio.record_trade(position.token_id, "buy", buy_usd)
            except TradeRejected as e:
                line("TRADE", f"[yellow]{position.symbol}: {e.reason}[/yellow]")
                continue
            print_trade_summary(trade.symbol, trade.side.value, trade.token_amount, trade.execution_price)
    return added


def run(args: argparse.Namespace) -> int:
    md_config = MarketDataConfig.from_config()
    banner("Token Watch", run_id, args.tokens, md_config.refresh_interval_s)

    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutdown signal received", extra={'event_type': 'SHUTDOWN_SIGNAL', 'signal': signum})
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    with MarketDataService(md_config) as market_data, PaperPortfolio.from_config(market_data) as portfolio:
        if add_tokens(portfolio, args.tokens, args.buy) == 0:
            line("WATCH", "[red]No token could be added[/red]")
            return 1

        view = WatchView(portfolio, market_data)
        deadline = time.monotonic() + args.duration if args.duration else None
        try:
            while not stop.is_set():
                view.update()
                if deadline is not None and time.monotonic() >= deadline:
                    break
                stop.wait(md_config.refresh_interval_s)
        finally:
            view.stop()

        logger.info("Session finished", extra={
            'event_type': 'SESSION_SUMMARY',
            'balance': portfolio.balance,
            'overall_pnl': portfolio.overall_pnl(),
            'trades': len(portfolio.trade_history()),
            'market_data': market_data.get_statistics(),
        })
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    apply_overrides(args)
    setup_from_config()
    try:
        return run(args)
    except KeyboardInterrupt:
        return 130
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
