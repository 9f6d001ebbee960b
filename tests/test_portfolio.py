"""End-to-end trading scenarios through the Portfolio facade."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from coinfolio.errors import ExternalFetchError, InsufficientFundsError, StorageError, ValidationError
from coinfolio.services.portfolio import Portfolio
from coinfolio.services.storage import MemoryBackend
from helpers import StubPriceSource, snapshot


def _buy_btc(portfolio, amount=2, price=100.0, **kwargs):
    return portfolio.buy("bitcoin", "btc", "Bitcoin", amount, price, **kwargs)


def test_buy_debits_balance_and_records_lot(portfolio) -> None:
    portfolio.balance.deposit(1000)
    lot = _buy_btc(portfolio)
    assert portfolio.balance.balance == pytest.approx(800)
    assert [(l.id, l.amount, l.unit_cost) for l in portfolio.lots.list_lots()] == [(lot.id, 2, 100.0)]


def test_sell_at_explicit_price(portfolio) -> None:
    portfolio.balance.deposit(1000)
    lot = _buy_btc(portfolio)
    result = portfolio.sell("bitcoin", 1, current_price=150.0)
    assert result.proceeds == pytest.approx(150)
    assert result.sell_price == 150.0
    assert result.updated_amounts == {lot.id: pytest.approx(1)}
    assert portfolio.lots.get_lot(lot.id).amount == pytest.approx(1)
    assert portfolio.balance.balance == pytest.approx(950)


def test_oversell_rejected_without_state_change(portfolio) -> None:
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio, amount=3)
    before_lots = portfolio.lots.list_lots()
    before_balance = portfolio.balance.balance
    with pytest.raises(ValidationError, match="exceeds holdings"):
        portfolio.sell("bitcoin", 5, current_price=100.0)
    assert portfolio.lots.list_lots() == before_lots
    assert portfolio.balance.balance == before_balance


def test_sell_unknown_asset_rejected(portfolio) -> None:
    with pytest.raises(ValidationError):
        portfolio.sell("dogecoin", 1, current_price=1.0)


def test_buy_with_insufficient_funds(portfolio) -> None:
    portfolio.balance.deposit(50)
    with pytest.raises(InsufficientFundsError) as info:
        _buy_btc(portfolio, amount=1, price=100.0)
    assert info.value.required == pytest.approx(100)
    assert info.value.available == pytest.approx(50)
    assert portfolio.lots.list_lots() == []
    assert portfolio.balance.balance == pytest.approx(50)


@pytest.mark.parametrize("amount, price", [(0, 100.0), (-1, 100.0), (1, 0), (1, float("nan"))])
def test_buy_rejects_invalid_inputs(portfolio, amount, price) -> None:
    portfolio.balance.deposit(1000)
    with pytest.raises(ValidationError):
        _buy_btc(portfolio, amount=amount, price=price)
    assert portfolio.balance.balance == pytest.approx(1000)


def test_buy_refunds_when_lot_write_fails(portfolio, monkeypatch) -> None:
    portfolio.balance.deposit(500)

    def failing_add(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(portfolio.lots, "add_lot", failing_add)
    with pytest.raises(StorageError):
        _buy_btc(portfolio)
    assert portfolio.balance.balance == pytest.approx(500)


def test_sell_uses_live_price() -> None:
    source = StubPriceSource([snapshot("bitcoin", 175.0)])
    portfolio = Portfolio.open(MemoryBackend(), prices=source)
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio)
    result = portfolio.sell("bitcoin", 2)
    assert result.sell_price == 175.0
    assert portfolio.balance.balance == pytest.approx(800 + 350)
    assert portfolio.lots.list_lots() == []


def test_sell_falls_back_to_average_cost_when_fetch_fails() -> None:
    source = StubPriceSource(fail=ExternalFetchError("down"))
    portfolio = Portfolio.open(MemoryBackend(), prices=source)
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio, amount=1, price=100.0)
    _buy_btc(portfolio, amount=1, price=200.0)
    result = portfolio.sell("bitcoin", 1)
    assert result.sell_price == pytest.approx(150)
    assert portfolio.balance.balance == pytest.approx(700 + 150)


def test_sell_restores_lots_when_deposit_fails(portfolio, monkeypatch) -> None:
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio)
    before = portfolio.lots.list_lots()

    def failing_deposit(amount):
        raise StorageError("disk full")

    monkeypatch.setattr(portfolio.balance, "deposit", failing_deposit)
    with pytest.raises(StorageError):
        portfolio.sell("bitcoin", 1, current_price=150.0)
    assert portfolio.lots.list_lots() == before


def test_fifo_across_buys(portfolio) -> None:
    portfolio.balance.deposit(10_000)
    first = _buy_btc(portfolio, amount=1, price=100.0, acquired_at="2024-01-01T00:00:00Z")
    second = _buy_btc(portfolio, amount=2, price=200.0, acquired_at="2024-02-01T00:00:00Z")
    result = portfolio.sell("bitcoin", 1.5, current_price=300.0)
    assert result.removed_lot_ids == (first.id,)
    assert [(l.id, l.amount) for l in portfolio.lots.list_lots()] == [(second.id, pytest.approx(1.5))]


def test_withdraw_all(portfolio) -> None:
    portfolio.balance.deposit(123)
    portfolio.withdraw_all()
    assert portfolio.balance.balance == 0.0


def test_valuations_and_snapshot() -> None:
    source = StubPriceSource([snapshot("bitcoin", 150.0, pct_24h=2.0)])
    portfolio = Portfolio.open(MemoryBackend(), prices=source)
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio)
    portfolio.buy("ethereum", "eth", "Ethereum", 1, 100.0)

    totals = portfolio.totals()
    assert totals.cost_basis == pytest.approx(300)
    assert totals.current_value == pytest.approx(400)
    assert totals.profit_loss == pytest.approx(100)

    account = portfolio.snapshot()
    assert account.cash_balance == pytest.approx(700)
    assert account.total_account == pytest.approx(1100)


def test_offline_figures_fall_back_to_cost(portfolio) -> None:
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio)
    (valuation,) = portfolio.valuations()
    assert valuation.priced is False
    assert valuation.current_value == pytest.approx(200)
    assert valuation.profit_loss == 0


def test_market_movers_through_facade() -> None:
    source = StubPriceSource([
        snapshot("a", 1.0, pct_7d=5.0),
        snapshot("b", 1.0, pct_7d=-2.0),
        snapshot("c", 1.0, sparkline_7d=(10.0, 10.3)),
    ])
    portfolio = Portfolio.open(MemoryBackend(), prices=source)
    gainers, losers = portfolio.market_movers("7d", limit=2)
    assert [m.asset_id for m in gainers] == ["a", "c"]
    assert [m.asset_id for m in losers] == ["b", "c"]


def test_market_movers_without_prices(portfolio) -> None:
    assert portfolio.market_movers() == ([], [])
    failing = Portfolio.open(MemoryBackend(), prices=StubPriceSource(fail=ExternalFetchError("x")))
    assert failing.market_movers() == ([], [])


def test_held_and_holding_movers() -> None:
    source = StubPriceSource([
        snapshot("bitcoin", 120.0, pct_24h=3.0),
        snapshot("ethereum", 80.0, pct_24h=-4.0),
        snapshot("solana", 10.0, pct_24h=50.0),
    ])
    portfolio = Portfolio.open(MemoryBackend(), prices=source)
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio, amount=1, price=100.0)
    portfolio.buy("ethereum", "eth", "Ethereum", 1, 100.0)

    gainers, losers = portfolio.held_market_movers("1d")
    assert [m.asset_id for m in gainers] == ["bitcoin", "ethereum"]
    assert [m.asset_id for m in losers] == ["ethereum", "bitcoin"]

    gainers, losers = portfolio.holding_movers()
    assert [(m.asset_id, m.profit_loss) for m in gainers] == [("bitcoin", pytest.approx(20))]
    assert [(m.asset_id, m.profit_loss) for m in losers] == [("ethereum", pytest.approx(-20))]


def test_state_survives_reopen() -> None:
    backend = MemoryBackend()
    portfolio = Portfolio.open(backend)
    portfolio.balance.deposit(500)
    _buy_btc(portfolio, amount=1, price=100.0)
    portfolio.watchlist.add("solana", "sol", "Solana")

    reopened = Portfolio.open(backend)
    assert reopened.balance.balance == pytest.approx(400)
    assert reopened.held_asset_ids() == ["bitcoin"]
    assert reopened.watchlist.asset_ids() == ["solana"]


@pytest.mark.parametrize("price", [0, -10.0, float("nan")])
def test_sell_rejects_invalid_explicit_price(portfolio, price) -> None:
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio)
    before = portfolio.lots.list_lots()
    with pytest.raises(ValidationError, match="price must be positive"):
        portfolio.sell("bitcoin", 1, current_price=price)
    assert portfolio.lots.list_lots() == before
    assert portfolio.balance.balance == pytest.approx(800)


def test_price_fetch_does_not_hold_lot_store_lock() -> None:
    """Other threads can read the lot store while a sale waits on prices."""
    seen = []

    class SlowSource(StubPriceSource):
        def get_prices(self, asset_ids):
            def try_lock():
                acquired = portfolio.lots.lock.acquire(timeout=1)
                if acquired:
                    portfolio.lots.lock.release()
                seen.append(acquired)

            reader = threading.Thread(target=try_lock)
            reader.start()
            reader.join()
            return super().get_prices(asset_ids)

    portfolio = Portfolio.open(MemoryBackend(), prices=SlowSource([snapshot("bitcoin", 120.0)]))
    portfolio.balance.deposit(1000)
    _buy_btc(portfolio, amount=1)
    assert portfolio.sell("bitcoin", 1).sell_price == 120.0
    assert seen == [True]


def test_concurrent_sells_never_spend_a_lot_twice(portfolio) -> None:
    portfolio.balance.deposit(1000)
    for _ in range(50):
        _buy_btc(portfolio, amount=1, price=10.0)
    assert portfolio.balance.balance == pytest.approx(500)

    def sell_one(_):
        try:
            return portfolio.sell("bitcoin", 1, current_price=20.0)
        except ValidationError as e:
            return e

    with ThreadPoolExecutor(max_workers=12) as pool:
        outcomes = list(pool.map(sell_one, range(60)))

    failures = [o for o in outcomes if isinstance(o, ValidationError)]
    sales = [o for o in outcomes if not isinstance(o, ValidationError)]
    assert len(failures) == 10
    assert len(sales) == 50
    assert portfolio.lots.list_lots() == []
    assert portfolio.balance.balance == pytest.approx(500 + sum(s.proceeds for s in sales))
    assert portfolio.balance.balance == pytest.approx(1500)
    sold_ids = [lot_id for s in sales for lot_id in s.removed_lot_ids]
    assert len(sold_ids) == len(set(sold_ids)) == 50
