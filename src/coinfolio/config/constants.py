"""Global configuration constants for Coinfolio.

These values are free of any CLI concerns so they can be reused by
services, stores, and tests.
"""

from __future__ import annotations

from pathlib import Path

# Default directory for persisted stores and the price cache
DEFAULT_DATA_DIR = Path.home() / ".coinfolio"
PRICE_CACHE_FILENAME = "price_cache.json"

# --- Storage keys (one persisted entry per store) ---
HOLDINGS_KEY = "crypto-portfolio-holdings"
WATCHLIST_KEY = "crypto-portfolio-watchlist"
BALANCE_KEY = "crypto-portfolio-balance"

# Version tag written into every persisted payload
SCHEMA_VERSION = 1

# API endpoints
COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
COINGECKO_PRO_KEY_PARAM = "x_cg_pro_api_key"
COINGECKO_DEMO_KEY_PARAM = "x_cg_demo_api_key"
VS_CURRENCY = "usd"
PRICE_CHANGE_WINDOWS = "24h,7d,30d"

# Price responses younger than this are served from cache (seconds)
DEFAULT_PRICE_MAX_AGE = 30.0
REQUEST_TIMEOUT = 10.0
FETCH_ATTEMPTS = 2

# Float tolerance for lot amount comparisons
EPSILON = 1e-9

# Movers: lookback periods and list length
PERIODS = ("1d", "7d", "30d")
DEFAULT_PERIOD = "7d"
MOVERS_LIMIT = 5

# Allocation breakdown: slices below this share are folded into "Other"
ALLOCATION_MIN_PCT = 3.0
OTHER_SLICE_ID = "other"

RECENT_PURCHASES_LIMIT = 2
