"""FIFO liquidation: choose which lots a sale consumes, oldest first."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from coinfolio.config.constants import EPSILON
from coinfolio.errors import ValidationError
from coinfolio.models.core import (
    AggregatedPosition,
    Lot,
    PriceSnapshot,
    SalePlan,
    parse_timestamp,
    utc_now_iso,
)
from coinfolio.services.stores import LotStore


def plan_fifo_sale(lots: Iterable[Lot], asset_id: str, amount: float) -> SalePlan:
    """
    Plan the sale of ``amount`` units of ``asset_id`` against the oldest lots.

    Lots are ordered by ``acquired_at`` with a stable sort, so lots sharing a
    timestamp are consumed in insertion order. A lot whose amount is within
    EPSILON of what is left to sell is removed whole; the first lot larger
    than that is shrunk and the walk stops.

    Raises:
        ValidationError: amount is not positive, or exceeds the holdings.
    """
    try:
        amount = float(amount)
    except (TypeError, ValueError) as e:
        raise ValidationError("amount must be a number") from e
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError("amount must be positive")

    asset_lots = sorted(
        (lot for lot in lots if lot.asset_id == asset_id),
        key=lambda lot: parse_timestamp(lot.acquired_at),
    )
    total = sum(lot.amount for lot in asset_lots)
    if amount > total + EPSILON:
        raise ValidationError("amount exceeds holdings")

    removed: List[str] = []
    updated: Dict[str, float] = {}
    remaining = amount
    for lot in asset_lots:
        if remaining <= EPSILON:
            break
        if lot.amount <= remaining + EPSILON:
            removed.append(lot.id)
            remaining -= lot.amount
        else:
            updated[lot.id] = lot.amount - remaining
            remaining = 0.0
    return SalePlan(
        asset_id=asset_id,
        requested_amount=amount,
        removed_lot_ids=tuple(removed),
        updated_amounts=updated,
    )


def apply_plan(lots: Iterable[Lot], plan: SalePlan) -> List[Lot]:
    """Return a new lot list with the plan applied; the input is not touched."""
    removed = set(plan.removed_lot_ids)
    result: List[Lot] = []
    for lot in lots:
        if lot.id in removed:
            continue
        copy = Lot(**lot.to_dict())
        if lot.id in plan.updated_amounts:
            copy.amount = plan.updated_amounts[lot.id]
            copy.updated_at = utc_now_iso()
        result.append(copy)
    return result


def apply_sale_plan(store: LotStore, plan: SalePlan) -> None:
    """Apply a plan to the store in a single persisted write."""
    with store.lock:
        store.replace_lots(apply_plan(store.list_lots(), plan))


def sell_price_for(
    position: AggregatedPosition,
    snapshot: Optional[PriceSnapshot] = None,
) -> float:
    """Live price when known, otherwise the position's average cost."""
    if snapshot is not None and snapshot.current_price is not None:
        return snapshot.current_price
    return position.weighted_avg_cost
