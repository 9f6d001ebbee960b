"""Movers ranking: top gainers and losers by period change or by holding profit."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from coinfolio.config.constants import MOVERS_LIMIT
from coinfolio.models.core import HoldingMover, Mover, PositionValuation, PriceSnapshot


class Period(str, Enum):
    ONE_DAY = "1d"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"


def sparkline_change(prices: Sequence[float]) -> float:
    """Percent change from the first to the last point; 0.0 if undefined."""
    if len(prices) < 2:
        return 0.0
    first, last = prices[0], prices[-1]
    if not first:
        return 0.0
    return (last - first) / first * 100.0


# A source reads one candidate change from a snapshot, or None when it has nothing.
ChangeSource = Callable[[PriceSnapshot], Optional[float]]


def _pct_24h(s: PriceSnapshot) -> Optional[float]:
    return s.pct_24h


def _pct_7d(s: PriceSnapshot) -> Optional[float]:
    return s.pct_7d


def _pct_30d(s: PriceSnapshot) -> Optional[float]:
    return s.pct_30d


def _sparkline(s: PriceSnapshot) -> Optional[float]:
    if len(s.sparkline_7d) < 2:
        return None
    return sparkline_change(s.sparkline_7d)


CHANGE_SOURCES: Dict[Period, Tuple[ChangeSource, ...]] = {
    Period.ONE_DAY: (_pct_24h,),
    Period.SEVEN_DAYS: (_pct_7d, _sparkline),
    Period.THIRTY_DAYS: (_pct_30d, _pct_7d, _sparkline, _pct_24h),
}


def period_change(snapshot: PriceSnapshot, period: Period | str) -> float:
    """Change over ``period``: the first available source in its chain, else 0.0."""
    for source in CHANGE_SOURCES[Period(period)]:
        value = source(snapshot)
        if value is not None:
            return value
    return 0.0


def rank_market_movers(
    snapshots: Iterable[PriceSnapshot],
    period: Period | str = Period.SEVEN_DAYS,
    limit: int = MOVERS_LIMIT,
) -> Tuple[List[Mover], List[Mover]]:
    """
    Return (gainers, losers): the ``limit`` largest and smallest period changes.

    Both sorts are stable, so equal changes keep input order.
    """
    items = [
        Mover(asset_id=s.asset_id, symbol=s.symbol, name=s.name, change=period_change(s, period))
        for s in snapshots
    ]
    gainers = sorted(items, key=lambda m: m.change, reverse=True)
    losers = sorted(items, key=lambda m: m.change)
    return gainers[:limit], losers[:limit]


def rank_holding_movers(
    valuations: Iterable[PositionValuation],
    limit: int = MOVERS_LIMIT,
) -> Tuple[List[HoldingMover], List[HoldingMover]]:
    """
    Rank the user's positions by absolute profit/loss.

    Gainers only hold positive profit (largest first), losers only negative
    (deepest first).
    """
    rows = [
        HoldingMover(
            asset_id=v.asset_id,
            symbol=v.position.symbol,
            name=v.position.name,
            profit_loss=v.profit_loss,
            profit_loss_pct=v.profit_loss_pct if v.cost_basis > 0 else None,
        )
        for v in valuations
    ]
    gainers = sorted((r for r in rows if r.profit_loss > 0), key=lambda r: r.profit_loss, reverse=True)
    losers = sorted((r for r in rows if r.profit_loss < 0), key=lambda r: r.profit_loss)
    return gainers[:limit], losers[:limit]
