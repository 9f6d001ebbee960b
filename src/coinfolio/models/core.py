"""Typed records for lots, price snapshots and derived portfolio figures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Unparseable or empty values sort first (datetime.min).
    """
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Lot:
    """One purchase of an asset. Only ``amount`` changes after creation."""

    id: str
    asset_id: str
    symbol: str
    name: str
    amount: float
    unit_cost: float
    acquired_at: str
    note: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @property
    def cost(self) -> float:
        return self.amount * self.unit_cost

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lot":
        return cls(
            id=str(data["id"]),
            asset_id=str(data["asset_id"]),
            symbol=str(data.get("symbol", "")),
            name=str(data.get("name", "")),
            amount=float(data["amount"]),
            unit_cost=float(data["unit_cost"]),
            acquired_at=str(data["acquired_at"]),
            note=data.get("note"),
            created_at=str(data.get("created_at") or data["acquired_at"]),
            updated_at=str(data.get("updated_at") or data["acquired_at"]),
        )


@dataclass
class WatchItem:
    """An asset the user follows without owning it."""

    id: str
    asset_id: str
    symbol: str
    name: str
    image: Optional[str] = None
    added_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchItem":
        return cls(
            id=str(data["id"]),
            asset_id=str(data["asset_id"]),
            symbol=str(data.get("symbol", "")),
            name=str(data.get("name", "")),
            image=data.get("image"),
            added_at=str(data.get("added_at") or utc_now_iso()),
        )


@dataclass(frozen=True)
class PriceSnapshot:
    """Latest market data for one asset. Missing fields are ``None``."""

    asset_id: str
    symbol: str = ""
    name: str = ""
    current_price: Optional[float] = None
    pct_24h: Optional[float] = None
    pct_7d: Optional[float] = None
    pct_30d: Optional[float] = None
    sparkline_7d: Tuple[float, ...] = ()
    image: Optional[str] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None

    @classmethod
    def from_market(cls, row: Dict[str, Any]) -> "PriceSnapshot":
        """Build a snapshot from a CoinGecko ``/coins/markets`` row."""
        sparkline = row.get("sparkline_in_7d") or {}
        points = tuple(
            float(p) for p in (sparkline.get("price") or []) if p is not None
        )
        return cls(
            asset_id=str(row["id"]),
            symbol=str(row.get("symbol") or ""),
            name=str(row.get("name") or ""),
            current_price=_optional_float(row.get("current_price")),
            pct_24h=_optional_float(
                row.get("price_change_percentage_24h")
                if row.get("price_change_percentage_24h") is not None
                else row.get("price_change_percentage_24h_in_currency")
            ),
            pct_7d=_optional_float(row.get("price_change_percentage_7d_in_currency")),
            pct_30d=_optional_float(row.get("price_change_percentage_30d_in_currency")),
            sparkline_7d=points,
            image=row.get("image"),
            market_cap=_optional_float(row.get("market_cap")),
            total_volume=_optional_float(row.get("total_volume")),
        )


@dataclass(frozen=True)
class CoinSearchResult:
    id: str
    symbol: str
    name: str
    thumb: Optional[str] = None
    large: Optional[str] = None


@dataclass(frozen=True)
class AggregatedPosition:
    """All lots of one asset folded into a single holding."""

    asset_id: str
    symbol: str
    name: str
    total_amount: float
    weighted_avg_cost: float
    lots: Tuple[Lot, ...] = ()

    @property
    def cost_basis(self) -> float:
        return sum(lot.amount * lot.unit_cost for lot in self.lots)


@dataclass(frozen=True)
class PositionValuation:
    """An aggregated position priced against a snapshot.

    ``priced`` is False when no live price was available and the value fell
    back to average cost.
    """

    position: AggregatedPosition
    current_price: float
    current_value: float
    cost_basis: float
    profit_loss: float
    profit_loss_pct: float
    price_change_24h: Optional[float] = None
    priced: bool = True

    @property
    def asset_id(self) -> str:
        return self.position.asset_id


@dataclass(frozen=True)
class TotalsSummary:
    total_amount: float = 0.0
    current_value: float = 0.0
    cost_basis: float = 0.0
    profit_loss: float = 0.0
    profit_loss_pct: float = 0.0


@dataclass(frozen=True)
class AccountSnapshot:
    holdings_value: float
    cash_balance: float
    total_account: float


@dataclass(frozen=True)
class Mover:
    asset_id: str
    symbol: str
    name: str
    change: float


@dataclass(frozen=True)
class HoldingMover:
    asset_id: str
    symbol: str
    name: str
    profit_loss: float
    profit_loss_pct: Optional[float]


@dataclass(frozen=True)
class AllocationSlice:
    asset_id: str
    label: str
    value: float
    pct: float


@dataclass(frozen=True)
class SalePlan:
    """Which lots a FIFO sale removes and which it shrinks (lot id -> new amount)."""

    asset_id: str
    requested_amount: float
    removed_lot_ids: Tuple[str, ...] = ()
    updated_amounts: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SaleResult:
    asset_id: str
    amount: float
    sell_price: float
    proceeds: float
    removed_lot_ids: Tuple[str, ...] = ()
    updated_amounts: Dict[str, float] = field(default_factory=dict)


