"""Shared test builders: lots, price snapshots and an in-memory price source."""

from __future__ import annotations

from typing import Optional

from coinfolio.models.core import Lot, PriceSnapshot


def make_lot(
    lot_id: str,
    amount: float,
    unit_cost: float = 100.0,
    acquired_at: str = "2024-01-01T00:00:00+00:00",
    asset_id: str = "bitcoin",
    symbol: str = "btc",
    name: str = "Bitcoin",
) -> Lot:
    return Lot(
        id=lot_id,
        asset_id=asset_id,
        symbol=symbol,
        name=name,
        amount=amount,
        unit_cost=unit_cost,
        acquired_at=acquired_at,
    )


def snapshot(asset_id: str, price: Optional[float] = None, **kwargs) -> PriceSnapshot:
    symbol = kwargs.pop("symbol", asset_id[:3])
    return PriceSnapshot(asset_id=asset_id, symbol=symbol, name=asset_id.title(), current_price=price, **kwargs)


class StubPriceSource:
    """Price source with the CoinGeckoClient read interface, backed by a dict."""

    def __init__(self, snapshots=(), fail: Optional[Exception] = None) -> None:
        self.snapshots = {s.asset_id: s for s in snapshots}
        self.fail = fail
        self.calls: list = []

    def get_prices(self, asset_ids):
        self.calls.append(list(asset_ids))
        if self.fail is not None:
            raise self.fail
        return [self.snapshots[a] for a in asset_ids if a in self.snapshots]

    def get_price(self, asset_id):
        found = self.get_prices([asset_id])
        return found[0] if found else None

    def get_top_markets(self, limit=100, page=1):
        if self.fail is not None:
            raise self.fail
        return list(self.snapshots.values())[:limit]

    def search_coins(self, query):
        return []
