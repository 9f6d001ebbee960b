"""Persisted state containers: purchase lots, cash balance, watchlist.

Each store loads its entry from a key-value backend at construction and
writes the full collection back after every mutation, under its own lock.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from typing import Any, Callable, Iterable, List, Optional, Protocol, TypeVar

from coinfolio.config.constants import BALANCE_KEY, HOLDINGS_KEY, WATCHLIST_KEY
from coinfolio.errors import LotNotFoundError, StorageError, ValidationError
from coinfolio.models.core import Lot, WatchItem, utc_now_iso
from coinfolio.services.storage import unwrap, wrap

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...


def _require_finite(amount: float, what: str = "amount") -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{what} must be a number") from e
    if not math.isfinite(value):
        raise ValidationError(f"{what} must be finite")
    return value


def _require_positive(amount: float, what: str = "amount") -> float:
    value = _require_finite(amount, what)
    if value <= 0:
        raise ValidationError(f"{what} must be positive")
    return value


T = TypeVar("T")


def _load(backend: KeyValueBackend, key: str, decode: Callable[[Any], T], default: T) -> T:
    """Read and decode one store entry. Malformed data raises StorageError."""
    payload = backend.get(key)
    if payload is None:
        return default
    data = unwrap(key, payload)
    try:
        return decode(data)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise StorageError(f"{key}: malformed stored data ({e!r})") from e


def _decode_lots(records: Any) -> List[Lot]:
    if not isinstance(records, list):
        raise TypeError(f"expected a list of lots, got {type(records).__name__}")
    lots = [Lot.from_dict(r) for r in records]
    for lot in lots:
        if not math.isfinite(lot.amount) or lot.amount <= 0:
            raise ValueError(f"lot {lot.id} has invalid amount {lot.amount!r}")
    return lots


def _decode_balance(raw: Any) -> float:
    value = float(raw)
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"invalid balance {raw!r}")
    return value


def _decode_watchlist(records: Any) -> List[WatchItem]:
    if not isinstance(records, list):
        raise TypeError(f"expected a list of watch items, got {type(records).__name__}")
    return [WatchItem.from_dict(r) for r in records]


class LotStore:
    """Ordered collection of purchase lots (insertion order is kept)."""

    def __init__(self, backend: KeyValueBackend, key: str = HOLDINGS_KEY) -> None:
        self._backend = backend
        self._key = key
        self._lock = threading.RLock()
        self._lots: List[Lot] = _load(backend, key, _decode_lots, [])

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def _save(self, lots: List[Lot]) -> None:
        self._backend.set(self._key, wrap([lot.to_dict() for lot in lots]))
        self._lots = lots

    def add_lot(
        self,
        asset_id: str,
        symbol: str,
        name: str,
        amount: float,
        unit_cost: float,
        acquired_at: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Lot:
        """Append a new lot and persist. Raises ValidationError on bad input."""
        if not asset_id:
            raise ValidationError("asset id is required")
        amount = _require_positive(amount)
        try:
            unit_cost = float(unit_cost)
        except (TypeError, ValueError) as e:
            raise ValidationError("unit cost must be a number") from e
        if not math.isfinite(unit_cost) or unit_cost < 0:
            raise ValidationError("unit cost must not be negative")
        now = utc_now_iso()
        lot = Lot(
            id=str(uuid.uuid4()),
            asset_id=asset_id,
            symbol=symbol,
            name=name,
            amount=amount,
            unit_cost=unit_cost,
            acquired_at=acquired_at or now,
            note=note,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._save(self._lots + [lot])
        logger.debug("Added lot %s: %s x %s @ %s", lot.id, asset_id, amount, unit_cost)
        return Lot(**lot.to_dict())

    def mutate_lot_amount(self, lot_id: str, new_amount: float) -> None:
        """Set a lot's amount. A non-positive amount removes the lot.

        Raises ValidationError for a non-numeric or non-finite amount.
        """
        new_amount = _require_finite(new_amount)
        with self._lock:
            if new_amount <= 0:
                self.remove_lot(lot_id)
                return
            lots = self._copy()
            lot = self._find(lots, lot_id)
            lot.amount = new_amount
            lot.updated_at = utc_now_iso()
            self._save(lots)
        logger.debug("Lot %s amount set to %s", lot_id, new_amount)

    def remove_lot(self, lot_id: str) -> None:
        with self._lock:
            lots = self._copy()
            self._find(lots, lot_id)
            self._save([lot for lot in lots if lot.id != lot_id])
        logger.debug("Removed lot %s", lot_id)

    def replace_lots(self, lots: Iterable[Lot]) -> None:
        """Replace the whole collection in one write (used by FIFO sales)."""
        new_lots = [Lot(**lot.to_dict()) for lot in lots]
        with self._lock:
            self._save(new_lots)

    def list_lots(self) -> List[Lot]:
        """Return copies of all lots, so callers cannot mutate store state."""
        with self._lock:
            return self._copy()

    def lots_for_asset(self, asset_id: str) -> List[Lot]:
        return [lot for lot in self.list_lots() if lot.asset_id == asset_id]

    def get_lot(self, lot_id: str) -> Lot:
        with self._lock:
            return Lot(**self._find(self._lots, lot_id).to_dict())

    def _copy(self) -> List[Lot]:
        return [Lot(**lot.to_dict()) for lot in self._lots]

    @staticmethod
    def _find(lots: List[Lot], lot_id: str) -> Lot:
        for lot in lots:
            if lot.id == lot_id:
                return lot
        raise LotNotFoundError(lot_id)


class BalanceStore:
    """A single non-negative cash balance."""

    def __init__(self, backend: KeyValueBackend, key: str = BALANCE_KEY) -> None:
        self._backend = backend
        self._key = key
        self._lock = threading.RLock()
        self._balance = _load(backend, key, _decode_balance, 0.0)

    @property
    def balance(self) -> float:
        return self._balance

    def _save(self, value: float) -> None:
        self._backend.set(self._key, wrap(value))
        self._balance = value

    def deposit(self, amount: float) -> None:
        """Add cash. Raises ValidationError for non-positive amounts."""
        amount = _require_positive(amount)
        with self._lock:
            self._save(self._balance + amount)
        logger.debug("Deposited %s, balance %s", amount, self._balance)

    def withdraw(self, amount: float) -> bool:
        """Remove cash. Returns False and changes nothing when funds are short."""
        amount = _require_positive(amount)
        with self._lock:
            if amount > self._balance:
                logger.debug("Withdrawal of %s refused, balance %s", amount, self._balance)
                return False
            self._save(self._balance - amount)
        logger.debug("Withdrew %s, balance %s", amount, self._balance)
        return True

    def reset(self) -> None:
        with self._lock:
            self._save(0.0)


class WatchlistStore:
    """Assets the user follows, at most one entry per asset."""

    def __init__(self, backend: KeyValueBackend, key: str = WATCHLIST_KEY) -> None:
        self._backend = backend
        self._key = key
        self._lock = threading.RLock()
        self._items: List[WatchItem] = _load(backend, key, _decode_watchlist, [])

    def _save(self, items: List[WatchItem]) -> None:
        self._backend.set(self._key, wrap([item.to_dict() for item in items]))
        self._items = items

    def add(
        self,
        asset_id: str,
        symbol: str,
        name: str,
        image: Optional[str] = None,
    ) -> Optional[WatchItem]:
        """Watch an asset. Returns None if it is already watched."""
        if not asset_id:
            raise ValidationError("asset id is required")
        with self._lock:
            if self.contains(asset_id):
                return None
            item = WatchItem(
                id=str(uuid.uuid4()),
                asset_id=asset_id,
                symbol=symbol.upper(),
                name=name,
                image=image,
            )
            self._save(self._items + [item])
        return item

    def remove(self, item_id: str) -> bool:
        with self._lock:
            kept = [item for item in self._items if item.id != item_id]
            if len(kept) == len(self._items):
                return False
            self._save(kept)
        return True

    def remove_asset(self, asset_id: str) -> bool:
        with self._lock:
            kept = [item for item in self._items if item.asset_id != asset_id]
            if len(kept) == len(self._items):
                return False
            self._save(kept)
        return True

    def contains(self, asset_id: str) -> bool:
        return any(item.asset_id == asset_id for item in self._items)

    def list_items(self) -> List[WatchItem]:
        return [WatchItem(**item.to_dict()) for item in self._items]

    def asset_ids(self) -> List[str]:
        return [item.asset_id for item in self._items]

