"""Portfolio aggregation: positions, valuations, totals and allocations (pure functions)."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from coinfolio.config.constants import (
    ALLOCATION_MIN_PCT,
    EPSILON,
    OTHER_SLICE_ID,
    RECENT_PURCHASES_LIMIT,
)
from coinfolio.models.core import (
    AccountSnapshot,
    AggregatedPosition,
    AllocationSlice,
    Lot,
    PositionValuation,
    PriceSnapshot,
    TotalsSummary,
    parse_timestamp,
)


def pct_of(part: float, whole: float) -> float:
    """``part / whole * 100``, or 0.0 when whole is zero."""
    return part / whole * 100.0 if whole else 0.0


def aggregate_positions(lots: Iterable[Lot]) -> List[AggregatedPosition]:
    """
    Group lots by asset and compute total amount and weighted average cost.

    Positions come out in the order their asset first appears. A group whose
    total amount is not positive is omitted.
    """
    groups: Dict[str, List[Lot]] = {}
    for lot in lots:
        groups.setdefault(lot.asset_id, []).append(lot)

    positions: List[AggregatedPosition] = []
    for asset_id, group in groups.items():
        total_amount = sum(lot.amount for lot in group)
        if total_amount <= 0:
            continue
        total_cost = sum(lot.amount * lot.unit_cost for lot in group)
        first = group[0]
        positions.append(AggregatedPosition(
            asset_id=asset_id,
            symbol=first.symbol,
            name=first.name,
            total_amount=total_amount,
            weighted_avg_cost=total_cost / total_amount,
            lots=tuple(group),
        ))
    return positions


def value_position(
    position: AggregatedPosition,
    snapshot: Optional[PriceSnapshot] = None,
) -> PositionValuation:
    """
    Price a position. Without a live price the position is valued at its
    average cost, so profit/loss reads as zero.
    """
    cost_basis = position.cost_basis
    live = snapshot.current_price if snapshot is not None else None
    price = live if live is not None else position.weighted_avg_cost
    current_value = price * position.total_amount
    profit_loss = current_value - cost_basis
    return PositionValuation(
        position=position,
        current_price=price,
        current_value=current_value,
        cost_basis=cost_basis,
        profit_loss=profit_loss,
        profit_loss_pct=pct_of(profit_loss, cost_basis),
        price_change_24h=snapshot.pct_24h if snapshot is not None else None,
        priced=live is not None,
    )


def value_positions(
    lots: Iterable[Lot],
    prices: Optional[Mapping[str, PriceSnapshot]] = None,
) -> List[PositionValuation]:
    """Aggregate lots and value each position against ``prices`` (asset id -> snapshot)."""
    prices = prices or {}
    return [value_position(p, prices.get(p.asset_id)) for p in aggregate_positions(lots)]


def compute_totals(valuations: Iterable[PositionValuation]) -> TotalsSummary:
    """Sum amount, value, cost basis and profit/loss across all positions."""
    total_amount = current_value = cost_basis = profit_loss = 0.0
    for v in valuations:
        total_amount += v.position.total_amount
        current_value += v.current_value
        cost_basis += v.cost_basis
        profit_loss += v.profit_loss
    return TotalsSummary(
        total_amount=total_amount,
        current_value=current_value,
        cost_basis=cost_basis,
        profit_loss=profit_loss,
        profit_loss_pct=pct_of(profit_loss, cost_basis),
    )


def account_snapshot(valuations: Iterable[PositionValuation], cash_balance: float) -> AccountSnapshot:
    holdings_value = sum(v.current_value for v in valuations)
    return AccountSnapshot(
        holdings_value=holdings_value,
        cash_balance=cash_balance,
        total_account=holdings_value + cash_balance,
    )


def purchase_history(lots: Iterable[Lot], asset_id: Optional[str] = None) -> List[Lot]:
    """Lots newest first, optionally limited to one asset."""
    selected = [lot for lot in lots if asset_id is None or lot.asset_id == asset_id]
    return sorted(
        selected,
        key=lambda lot: parse_timestamp(lot.acquired_at or lot.created_at),
        reverse=True,
    )


def recent_purchases(lots: Iterable[Lot], limit: int = RECENT_PURCHASES_LIMIT) -> List[Lot]:
    return purchase_history(lots)[:limit]


def _fold_small_slices(
    values: List[AllocationSlice],
    min_pct: float,
) -> List[AllocationSlice]:
    total = sum(s.value for s in values)
    if total <= EPSILON:
        return []
    major: List[AllocationSlice] = []
    other = 0.0
    for s in values:
        pct = pct_of(s.value, total)
        if pct >= min_pct:
            major.append(AllocationSlice(s.asset_id, s.label, s.value, pct))
        else:
            other += s.value
    major.sort(key=lambda s: s.value, reverse=True)
    if other > 0:
        major.append(AllocationSlice(OTHER_SLICE_ID, "Other", other, pct_of(other, total)))
    return major


def allocation_by_cost(lots: Iterable[Lot], min_pct: float = ALLOCATION_MIN_PCT) -> List[AllocationSlice]:
    """
    Share of total cost basis per asset.

    Slices below ``min_pct`` percent are folded into one trailing "Other"
    slice; the rest are sorted by value, largest first.
    """
    slices = [
        AllocationSlice(p.asset_id, f"{p.symbol.upper()} {p.name}".strip(), p.cost_basis, 0.0)
        for p in aggregate_positions(lots)
    ]
    return _fold_small_slices(slices, min_pct)


def allocation_by_value(
    valuations: Iterable[PositionValuation],
    min_pct: float = ALLOCATION_MIN_PCT,
) -> List[AllocationSlice]:
    """Share of current market value per asset, folded like allocation_by_cost."""
    slices = [
        AllocationSlice(
            v.asset_id,
            f"{v.position.symbol.upper()} {v.position.name}".strip(),
            v.current_value,
            0.0,
        )
        for v in valuations
    ]
    return _fold_small_slices(slices, min_pct)
