"""Command-line interface for Coinfolio.

Each sub-command opens the persisted portfolio, performs one operation and
prints the result. Errors derived from CoinfolioError are printed to stderr
and turn into exit status 1.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from coinfolio.app import configure_logging, open_portfolio
from coinfolio.config.constants import DEFAULT_PERIOD, MOVERS_LIMIT, PERIODS
from coinfolio.config.settings import Settings
from coinfolio.errors import CoinfolioError, ExternalFetchError, ValidationError
from coinfolio.services import metrics
from coinfolio.services.portfolio import Portfolio
from coinfolio.utils.formatting import format_currency, format_signed_pct

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coinfolio", description="Simulated crypto portfolio tracker")
    parser.add_argument("--data-dir", help="Directory holding the portfolio files")
    parser.add_argument("--offline", action="store_true", help="Do not fetch live prices")
    parser.add_argument("--log-level", help="Logging level (default from COINFOLIO_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("balance", help="Show cash, holdings value and account total")

    p = sub.add_parser("deposit", help="Add virtual cash")
    p.add_argument("amount", type=float)

    sub.add_parser("withdraw-all", help="Reset the cash balance to zero")

    p = sub.add_parser("buy", help="Buy units of an asset from the cash balance")
    p.add_argument("asset_id", help="CoinGecko id, e.g. bitcoin")
    p.add_argument("amount", type=float)
    p.add_argument("--price", type=float, help="Unit price (default: live price)")
    p.add_argument("--symbol")
    p.add_argument("--name")
    p.add_argument("--note")

    p = sub.add_parser("sell", help="Sell units of an asset, oldest lots first")
    p.add_argument("asset_id")
    p.add_argument("amount", type=float)
    p.add_argument("--price", type=float, help="Unit price (default: live price, else average cost)")

    sub.add_parser("holdings", help="List positions with profit/loss")

    p = sub.add_parser("history", help="List purchases, newest first")
    p.add_argument("asset_id", nargs="?")

    p = sub.add_parser("allocation", help="Portfolio allocation by cost or value")
    p.add_argument("--by", choices=("cost", "value"), default="cost")

    p = sub.add_parser("movers", help="Top gainers and losers")
    p.add_argument("--period", choices=PERIODS, default=DEFAULT_PERIOD)
    p.add_argument("--limit", type=int, default=MOVERS_LIMIT)
    group = p.add_mutually_exclusive_group()
    group.add_argument("--held", action="store_true", help="Rank only held assets by period change")
    group.add_argument("--holdings", action="store_true", help="Rank held assets by profit/loss")

    p = sub.add_parser("watch", help="Manage the watchlist")
    watch = p.add_subparsers(dest="watch_command", required=True)
    w = watch.add_parser("add")
    w.add_argument("asset_id")
    w.add_argument("--symbol")
    w.add_argument("--name")
    w = watch.add_parser("remove")
    w.add_argument("asset_id")
    watch.add_parser("list")

    p = sub.add_parser("search", help="Search coins by name or symbol")
    p.add_argument("query")
    return parser


def _money(value: float) -> str:
    return format_currency(value, max_fraction_digits=2)


def cmd_balance(portfolio: Portfolio, args: argparse.Namespace) -> None:
    snap = portfolio.snapshot()
    print(f"Holdings value: {_money(snap.holdings_value)}")
    print(f"Cash balance:   {_money(snap.cash_balance)}")
    print(f"Total account:  {_money(snap.total_account)}")


def cmd_deposit(portfolio: Portfolio, args: argparse.Namespace) -> None:
    portfolio.balance.deposit(args.amount)
    print(f"Balance: {_money(portfolio.balance.balance)}")


def cmd_withdraw_all(portfolio: Portfolio, args: argparse.Namespace) -> None:
    portfolio.withdraw_all()
    print(f"Balance: {_money(portfolio.balance.balance)}")


def cmd_buy(portfolio: Portfolio, args: argparse.Namespace) -> None:
    snapshot = None
    if portfolio.prices is not None and (args.price is None or not (args.symbol and args.name)):
        try:
            snapshot = portfolio.prices.get_price(args.asset_id)
        except ExternalFetchError:
            if args.price is None:
                raise
            logger.warning("No market data for %s, using given price", args.asset_id)
    price = args.price
    if price is None:
        if snapshot is None or snapshot.current_price is None:
            raise ValidationError(f"no price available for {args.asset_id}; pass --price")
        price = snapshot.current_price
    symbol = args.symbol or (snapshot.symbol if snapshot else "") or args.asset_id
    name = args.name or (snapshot.name if snapshot else "") or args.asset_id
    lot = portfolio.buy(args.asset_id, symbol, name, args.amount, price, note=args.note)
    print(f"Bought {lot.amount:g} {symbol.upper()} at {_money(price)}")
    print(f"Balance: {_money(portfolio.balance.balance)}")


def cmd_sell(portfolio: Portfolio, args: argparse.Namespace) -> None:
    result = portfolio.sell(args.asset_id, args.amount, current_price=args.price)
    print(
        f"Sold {result.amount:g} {args.asset_id} at {_money(result.sell_price)} "
        f"for {_money(result.proceeds)}"
    )
    print(f"Balance: {_money(portfolio.balance.balance)}")


def cmd_holdings(portfolio: Portfolio, args: argparse.Namespace) -> None:
    valuations = portfolio.valuations()
    if not valuations:
        print("No holdings")
        return
    for v in valuations:
        p = v.position
        marker = "" if v.priced else " (no live price)"
        print(
            f"{p.symbol.upper():<8} {p.total_amount:>14g} avg {_money(p.weighted_avg_cost):>14} "
            f"value {_money(v.current_value):>14} P/L {_money(v.profit_loss)} "
            f"({format_signed_pct(v.profit_loss_pct)}){marker}"
        )
    totals = metrics.compute_totals(valuations)
    print(
        f"Total value {_money(totals.current_value)}, cost {_money(totals.cost_basis)}, "
        f"P/L {_money(totals.profit_loss)} ({format_signed_pct(totals.profit_loss_pct)})"
    )


def cmd_history(portfolio: Portfolio, args: argparse.Namespace) -> None:
    lots = metrics.purchase_history(portfolio.lots.list_lots(), args.asset_id)
    if not lots:
        print("No purchases")
        return
    for lot in lots:
        note = f"  {lot.note}" if lot.note else ""
        print(f"{lot.acquired_at}  {lot.symbol.upper():<8} {lot.amount:>14g} @ {_money(lot.unit_cost)}{note}")


def cmd_allocation(portfolio: Portfolio, args: argparse.Namespace) -> None:
    if args.by == "value":
        slices = metrics.allocation_by_value(portfolio.valuations())
    else:
        slices = metrics.allocation_by_cost(portfolio.lots.list_lots())
    if not slices:
        print("No holdings")
        return
    for s in slices:
        print(f"{s.label:<30} {_money(s.value):>16} {s.pct:6.2f}%")


def cmd_movers(portfolio: Portfolio, args: argparse.Namespace) -> None:
    if args.holdings:
        gainers, losers = portfolio.holding_movers(limit=args.limit)
        print("Top gainers:")
        for m in gainers:
            print(f"  {m.symbol.upper():<8} {_money(m.profit_loss)} ({format_signed_pct(m.profit_loss_pct)})")
        print("Top losers:")
        for m in losers:
            print(f"  {m.symbol.upper():<8} {_money(m.profit_loss)} ({format_signed_pct(m.profit_loss_pct)})")
        return
    if args.held:
        gainers, losers = portfolio.held_market_movers(args.period, args.limit)
    else:
        gainers, losers = portfolio.market_movers(args.period, args.limit)
    print(f"Top gainers ({args.period}):")
    for m in gainers:
        print(f"  {m.symbol.upper():<8} {format_signed_pct(m.change)}")
    print(f"Top losers ({args.period}):")
    for m in losers:
        print(f"  {m.symbol.upper():<8} {format_signed_pct(m.change)}")


def cmd_watch(portfolio: Portfolio, args: argparse.Namespace) -> None:
    if args.watch_command == "add":
        item = portfolio.watchlist.add(
            args.asset_id, args.symbol or args.asset_id, args.name or args.asset_id
        )
        print(f"Watching {args.asset_id}" if item else f"Already watching {args.asset_id}")
    elif args.watch_command == "remove":
        removed = portfolio.watchlist.remove_asset(args.asset_id)
        print(f"Removed {args.asset_id}" if removed else f"Not watching {args.asset_id}")
    else:
        items = portfolio.watchlist.list_items()
        if not items:
            print("Watchlist is empty")
            return
        prices = portfolio.live_prices([i.asset_id for i in items])
        for item in items:
            snap = prices.get(item.asset_id)
            price = _money(snap.current_price) if snap and snap.current_price is not None else "-"
            change = format_signed_pct(snap.pct_24h) if snap else "-"
            print(f"{item.symbol:<8} {item.name:<24} {price:>16} {change:>9}")


def cmd_search(portfolio: Portfolio, args: argparse.Namespace) -> None:
    if portfolio.prices is None:
        raise ExternalFetchError("search needs the price source; drop --offline")
    for coin in portfolio.prices.search_coins(args.query):
        print(f"{coin.id:<30} {coin.symbol.upper():<10} {coin.name}")


COMMANDS = {
    "balance": cmd_balance,
    "deposit": cmd_deposit,
    "withdraw-all": cmd_withdraw_all,
    "buy": cmd_buy,
    "sell": cmd_sell,
    "holdings": cmd_holdings,
    "history": cmd_history,
    "allocation": cmd_allocation,
    "movers": cmd_movers,
    "watch": cmd_watch,
    "search": cmd_search,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(args.log_level or settings.log_level)
    try:
        portfolio = open_portfolio(args.data_dir, offline=args.offline, settings=settings)
        COMMANDS[args.command](portfolio, args)
    except CoinfolioError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
