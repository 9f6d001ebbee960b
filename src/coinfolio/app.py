"""Application bootstrap and core API entrypoints for Coinfolio.

Provides a small core API (open_portfolio, list_lots, list_positions) for use
by the command line, scripts, or tests.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from coinfolio.config.constants import PRICE_CACHE_FILENAME
from coinfolio.config.settings import Settings
from coinfolio.models.core import AggregatedPosition, Lot
from coinfolio.services import storage
from coinfolio.services.portfolio import Portfolio
from coinfolio.services.pricing import CoinGeckoClient

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "WARNING") -> None:
    """Configure root logging once for command-line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
    )


def open_portfolio(
    data_dir: Optional[Path | str] = None,
    offline: bool = False,
    settings: Optional[Settings] = None,
) -> Portfolio:
    """Open the persisted portfolio.

    Uses JSON files under ``data_dir`` (default: settings.data_dir). Raises
    StorageError when a store file is corrupt.

    Args:
        data_dir: Directory holding the store files.
        offline: Skip the price source; all figures use cost basis.
        settings: Settings to use instead of the environment.

    Returns:
        A Portfolio wired to the file backend and, unless offline, CoinGecko.
    """
    settings = settings or Settings.from_env()
    directory = Path(data_dir) if data_dir is not None else settings.data_dir
    backend = storage.JsonFileBackend(directory)
    prices = None
    if not offline:
        cache_path = directory / PRICE_CACHE_FILENAME
        prices = CoinGeckoClient.from_settings(
            settings,
            cache=storage.load_price_cache(cache_path),
            save_cache=lambda cache: storage.save_price_cache(cache, cache_path),
        )
    return Portfolio.open(backend, prices)


def list_lots(portfolio: Portfolio) -> List[Lot]:
    """Return all lots in insertion order (copies; mutating them has no effect)."""
    return portfolio.lots.list_lots()


def list_positions(portfolio: Portfolio) -> List[AggregatedPosition]:
    """Return one aggregated position per held asset."""
    return portfolio.positions()


def main(argv: Optional[List[str]] = None) -> int:
    """Run the Coinfolio command line."""
    from coinfolio import cli

    return cli.main(argv)
