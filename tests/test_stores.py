"""Tests for the lot, balance and watchlist stores."""

import pytest

from coinfolio.config.constants import BALANCE_KEY, HOLDINGS_KEY, SCHEMA_VERSION
from coinfolio.errors import LotNotFoundError, ValidationError
from coinfolio.services.stores import BalanceStore, LotStore, WatchlistStore


def test_add_lot_persists_and_reloads(backend) -> None:
    store = LotStore(backend)
    lot = store.add_lot("bitcoin", "btc", "Bitcoin", 0.5, 45000, note="first buy")
    assert lot.id
    assert lot.acquired_at

    payload = backend.get(HOLDINGS_KEY)
    assert payload["schema_version"] == SCHEMA_VERSION
    assert payload["data"][0]["asset_id"] == "bitcoin"

    reloaded = LotStore(backend).list_lots()
    assert [(l.id, l.amount, l.unit_cost, l.note) for l in reloaded] == [
        (lot.id, 0.5, 45000.0, "first buy")
    ]


@pytest.mark.parametrize("amount", [0, -2, float("nan")])
def test_add_lot_rejects_non_positive_amount(backend, amount) -> None:
    store = LotStore(backend)
    with pytest.raises(ValidationError):
        store.add_lot("bitcoin", "btc", "Bitcoin", amount, 100)
    assert store.list_lots() == []
    assert backend.get(HOLDINGS_KEY) is None


def test_add_lot_rejects_negative_cost(backend) -> None:
    with pytest.raises(ValidationError):
        LotStore(backend).add_lot("bitcoin", "btc", "Bitcoin", 1, -1)


def test_list_lots_returns_copies(backend) -> None:
    store = LotStore(backend)
    store.add_lot("bitcoin", "btc", "Bitcoin", 1, 100)
    store.list_lots()[0].amount = 999
    assert store.list_lots()[0].amount == 1


def test_mutate_and_remove_lot(backend) -> None:
    store = LotStore(backend)
    a = store.add_lot("bitcoin", "btc", "Bitcoin", 2, 100)
    b = store.add_lot("ethereum", "eth", "Ethereum", 3, 10)

    store.mutate_lot_amount(a.id, 1.25)
    assert store.get_lot(a.id).amount == 1.25

    for bad in (float("nan"), float("inf"), "lots", None):
        with pytest.raises(ValidationError):
            store.mutate_lot_amount(a.id, bad)
    assert LotStore(backend).get_lot(a.id).amount == 1.25

    store.mutate_lot_amount(a.id, 0)
    assert [l.id for l in store.list_lots()] == [b.id]

    store.remove_lot(b.id)
    assert LotStore(backend).list_lots() == []


def test_unknown_lot_raises(backend) -> None:
    store = LotStore(backend)
    with pytest.raises(LotNotFoundError):
        store.remove_lot("missing")
    with pytest.raises(LotNotFoundError):
        store.mutate_lot_amount("missing", 1)
    with pytest.raises(LotNotFoundError):
        store.get_lot("missing")


def test_lots_for_asset(backend) -> None:
    store = LotStore(backend)
    store.add_lot("bitcoin", "btc", "Bitcoin", 1, 100)
    store.add_lot("ethereum", "eth", "Ethereum", 1, 10)
    store.add_lot("bitcoin", "btc", "Bitcoin", 2, 110)
    assert [l.amount for l in store.lots_for_asset("bitcoin")] == [1, 2]


def test_balance_deposit_and_withdraw(backend) -> None:
    store = BalanceStore(backend)
    assert store.balance == 0.0
    store.deposit(1000)
    assert store.withdraw(250) is True
    assert store.balance == pytest.approx(750)
    assert BalanceStore(backend).balance == pytest.approx(750)
    assert backend.get(BALANCE_KEY) == {"schema_version": SCHEMA_VERSION, "data": 750.0}


def test_withdraw_more_than_balance_fails_without_change(backend) -> None:
    store = BalanceStore(backend)
    store.deposit(100)
    assert store.withdraw(100.01) is False
    assert store.balance == pytest.approx(100)


def test_balance_never_negative_over_sequence(backend) -> None:
    store = BalanceStore(backend)
    for op, amount in [("d", 50), ("w", 20), ("w", 40), ("d", 5), ("w", 35), ("w", 0.01)]:
        if op == "d":
            store.deposit(amount)
        else:
            store.withdraw(amount)
        assert store.balance >= 0
    assert store.balance == pytest.approx(0)


@pytest.mark.parametrize("amount", [0, -5, float("inf")])
def test_deposit_rejects_invalid_amount(backend, amount) -> None:
    store = BalanceStore(backend)
    with pytest.raises(ValidationError):
        store.deposit(amount)
    assert store.balance == 0.0


def test_balance_reset(backend) -> None:
    store = BalanceStore(backend)
    store.deposit(42)
    store.reset()
    assert store.balance == 0.0
    assert BalanceStore(backend).balance == 0.0


def test_watchlist_add_remove(backend) -> None:
    store = WatchlistStore(backend)
    item = store.add("bitcoin", "btc", "Bitcoin")
    assert item is not None
    assert item.symbol == "BTC"
    assert store.add("bitcoin", "btc", "Bitcoin") is None
    assert store.contains("bitcoin")

    store.add("ethereum", "eth", "Ethereum")
    assert WatchlistStore(backend).asset_ids() == ["bitcoin", "ethereum"]

    assert store.remove(item.id) is True
    assert store.remove(item.id) is False
    assert store.remove_asset("ethereum") is True
    assert store.remove_asset("ethereum") is False
    assert WatchlistStore(backend).list_items() == []
