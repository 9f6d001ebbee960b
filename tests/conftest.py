"""Pytest configuration: ensure src is on path when running tests from repo root."""

import sys
from pathlib import Path

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.is_dir() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from coinfolio.services.portfolio import Portfolio  # noqa: E402
from coinfolio.services.storage import MemoryBackend  # noqa: E402


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def portfolio(backend: MemoryBackend) -> Portfolio:
    return Portfolio.open(backend)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path) -> None:
    """Keep tests away from the user's real data dir and API keys."""
    for name in (
        "COINGECKO_BASE_URL",
        "COINGECKO_DEMO_API_KEY",
        "COINGECKO_PRO_API_KEY",
        "COINFOLIO_PRICE_MAX_AGE",
        "COINFOLIO_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("COINFOLIO_DATA_DIR", str(tmp_path / "data"))
