"""Portfolio facade: buy and sell against the lot and balance stores."""

from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from coinfolio.config.constants import MOVERS_LIMIT
from coinfolio.errors import (
    ExternalFetchError,
    InsufficientFundsError,
    StorageError,
    ValidationError,
)
from coinfolio.models.core import (
    AccountSnapshot,
    AggregatedPosition,
    HoldingMover,
    Lot,
    Mover,
    PositionValuation,
    PriceSnapshot,
    SaleResult,
    TotalsSummary,
)
from coinfolio.services import metrics
from coinfolio.services.liquidation import apply_sale_plan, plan_fifo_sale, sell_price_for
from coinfolio.services.movers import Period, rank_holding_movers, rank_market_movers
from coinfolio.services.pricing import fetch_prices_safely
from coinfolio.services.stores import BalanceStore, KeyValueBackend, LotStore, WatchlistStore

logger = logging.getLogger(__name__)

Prices = Mapping[str, PriceSnapshot]


class Portfolio:
    """
    Simulated trading account over the three stores.

    ``prices`` is an optional price source (anything with ``get_prices``);
    without one, every figure falls back to cost basis.
    """

    def __init__(
        self,
        lots: LotStore,
        balance: BalanceStore,
        watchlist: WatchlistStore,
        prices: Optional[Any] = None,
    ) -> None:
        self.lots = lots
        self.balance = balance
        self.watchlist = watchlist
        self.prices = prices
        self._asset_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    @classmethod
    def open(cls, backend: KeyValueBackend, prices: Optional[Any] = None) -> "Portfolio":
        return cls(LotStore(backend), BalanceStore(backend), WatchlistStore(backend), prices)

    def _asset_lock(self, asset_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._asset_locks[asset_id]

    # --- trading ---

    def buy(
        self,
        asset_id: str,
        symbol: str,
        name: str,
        amount: float,
        unit_price: float,
        note: Optional[str] = None,
        acquired_at: Optional[str] = None,
    ) -> Lot:
        """
        Pay ``amount * unit_price`` from the balance and record a new lot.

        Raises:
            ValidationError: amount or price not positive.
            InsufficientFundsError: the balance does not cover the cost.
        """
        for value, what in ((amount, "amount"), (unit_price, "unit price")):
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ValidationError(f"{what} must be positive")
        cost = amount * unit_price
        with self._asset_lock(asset_id):
            if not self.balance.withdraw(cost):
                raise InsufficientFundsError(cost, self.balance.balance)
            try:
                lot = self.lots.add_lot(asset_id, symbol, name, amount, unit_price, acquired_at, note)
            except (ValidationError, StorageError):
                self.balance.deposit(cost)
                raise
        logger.info("Bought %s %s at %s (cost %.2f)", amount, asset_id, unit_price, cost)
        return lot

    def sell(
        self,
        asset_id: str,
        amount: float,
        current_price: Optional[float] = None,
    ) -> SaleResult:
        """
        Sell ``amount`` units of ``asset_id`` FIFO and credit the proceeds.

        The sell price is ``current_price`` when given, else the live price
        from the price source, else the position's average cost.

        Raises:
            ValidationError: amount or given price not positive, or amount
                larger than the holdings.
        """
        if current_price is not None and (
            not isinstance(current_price, (int, float))
            or not math.isfinite(current_price)
            or current_price <= 0
        ):
            raise ValidationError("price must be positive")
        with self._asset_lock(asset_id):
            snapshot = None
            if current_price is None:
                snapshot = fetch_prices_safely(self.prices, [asset_id]).get(asset_id)
            with self.lots.lock:
                lots = self.lots.list_lots()
                plan = plan_fifo_sale(lots, asset_id, amount)
                if current_price is not None:
                    price = float(current_price)
                else:
                    price = sell_price_for(self._position(lots, asset_id), snapshot)
                proceeds = price * plan.requested_amount

                apply_sale_plan(self.lots, plan)
                if proceeds > 0:
                    try:
                        self.balance.deposit(proceeds)
                    except (ValidationError, StorageError):
                        self.lots.replace_lots(lots)
                        raise
        logger.info("Sold %s %s at %s (proceeds %.2f)", plan.requested_amount, asset_id, price, proceeds)
        return SaleResult(
            asset_id=asset_id,
            amount=plan.requested_amount,
            sell_price=price,
            proceeds=proceeds,
            removed_lot_ids=plan.removed_lot_ids,
            updated_amounts=dict(plan.updated_amounts),
        )

    def withdraw_all(self) -> None:
        """Zero the cash balance."""
        self.balance.reset()

    @staticmethod
    def _position(lots: List[Lot], asset_id: str) -> AggregatedPosition:
        for position in metrics.aggregate_positions(lots):
            if position.asset_id == asset_id:
                return position
        raise ValidationError("amount exceeds holdings")

    # --- read-only views ---

    def held_asset_ids(self) -> List[str]:
        return [p.asset_id for p in self.positions()]

    def positions(self) -> List[AggregatedPosition]:
        return metrics.aggregate_positions(self.lots.list_lots())

    def live_prices(self, asset_ids: Optional[List[str]] = None) -> Dict[str, PriceSnapshot]:
        ids = asset_ids if asset_ids is not None else self.held_asset_ids()
        return fetch_prices_safely(self.prices, ids)

    def valuations(self, prices: Optional[Prices] = None) -> List[PositionValuation]:
        if prices is None:
            prices = self.live_prices()
        return metrics.value_positions(self.lots.list_lots(), prices)

    def totals(self, prices: Optional[Prices] = None) -> TotalsSummary:
        return metrics.compute_totals(self.valuations(prices))

    def snapshot(self, prices: Optional[Prices] = None) -> AccountSnapshot:
        return metrics.account_snapshot(self.valuations(prices), self.balance.balance)

    def market_movers(
        self,
        period: Period | str = Period.SEVEN_DAYS,
        limit: int = MOVERS_LIMIT,
        top: int = 100,
    ) -> Tuple[List[Mover], List[Mover]]:
        """Movers across the top ``top`` markets; empty lists when prices are unavailable."""
        if self.prices is None:
            return [], []
        try:
            snapshots = self.prices.get_top_markets(top)
        except ExternalFetchError as e:
            logger.warning("Market movers unavailable: %s", e)
            return [], []
        return rank_market_movers(snapshots, period, limit)

    def held_market_movers(
        self,
        period: Period | str = Period.SEVEN_DAYS,
        limit: int = MOVERS_LIMIT,
        prices: Optional[Prices] = None,
    ) -> Tuple[List[Mover], List[Mover]]:
        """Period movers limited to assets the user holds."""
        if prices is None:
            prices = self.live_prices()
        held = [prices[a] for a in self.held_asset_ids() if a in prices]
        return rank_market_movers(held, period, limit)

    def holding_movers(
        self,
        prices: Optional[Prices] = None,
        limit: int = MOVERS_LIMIT,
    ) -> Tuple[List[HoldingMover], List[HoldingMover]]:
        return rank_holding_movers(self.valuations(prices), limit)
