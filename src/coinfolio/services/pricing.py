"""Price fetching and cache management (CoinGecko API)."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from coinfolio.config.constants import (
    COINGECKO_BASE_URL,
    COINGECKO_DEMO_KEY_PARAM,
    COINGECKO_PRO_KEY_PARAM,
    DEFAULT_PRICE_MAX_AGE,
    FETCH_ATTEMPTS,
    PRICE_CHANGE_WINDOWS,
    REQUEST_TIMEOUT,
    VS_CURRENCY,
)
from coinfolio.config.settings import Settings
from coinfolio.errors import ExternalFetchError
from coinfolio.models.core import CoinSearchResult, PriceSnapshot

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class CoinGeckoClient:
    """
    Thin CoinGecko client returning PriceSnapshot records.

    Responses are cached per request for ``max_age_seconds``; ``cache`` and
    ``save_cache`` let callers persist that cache between runs. Connection
    errors and timeouts are retried; HTTP errors raise ExternalFetchError.
    """

    def __init__(
        self,
        base_url: str = COINGECKO_BASE_URL,
        api_key: Optional[str] = None,
        pro: bool = False,
        timeout: float = REQUEST_TIMEOUT,
        max_age_seconds: float = DEFAULT_PRICE_MAX_AGE,
        session: Optional[requests.Session] = None,
        cache: Optional[Dict[str, Any]] = None,
        save_cache: Optional[Callable[[Dict[str, Any]], None]] = None,
        attempts: int = FETCH_ATTEMPTS,
        retry_wait: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.pro = pro
        self.timeout = timeout
        self.max_age_seconds = max_age_seconds
        self.session = session or requests.Session()
        self.cache: Dict[str, Any] = cache if cache is not None else {}
        self._save_cache = save_cache
        self._lock = threading.Lock()
        self._retrying = Retrying(
            stop=stop_after_attempt(max(attempts, 1)),
            wait=wait_exponential(multiplier=retry_wait, max=4),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
            reraise=True,
        )
        if api_key and pro:
            logger.info("CoinGecko: using Pro API")
        elif api_key:
            logger.info("CoinGecko: using Demo API")
        else:
            logger.info("CoinGecko: using free tier")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "CoinGeckoClient":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            pro=settings.pro,
            max_age_seconds=settings.price_max_age,
            **kwargs,
        )

    # --- transport ---

    def _send(self, url: str, params: Dict[str, Any]) -> requests.Response:
        return self.session.get(url, params=params, timeout=self.timeout)

    def get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET ``endpoint`` and return decoded JSON, served from cache while fresh.

        Raises:
            ExternalFetchError: network failure after retries, error status, or bad JSON.
        """
        params = dict(params or {})
        cache_key = endpoint + "?" + "&".join(f"{k}={params[k]}" for k in sorted(params))
        if self.api_key:
            params[COINGECKO_PRO_KEY_PARAM if self.pro else COINGECKO_DEMO_KEY_PARAM] = self.api_key

        with self._lock:
            cached = self._cached(cache_key)
            if cached is not None:
                return cached
            url = f"{self.base_url}{endpoint}"
            try:
                response = self._retrying(self._send, url, params)
            except requests.RequestException as e:
                logger.warning("CoinGecko request to %s failed: %s", endpoint, e)
                raise ExternalFetchError(
                    "Network error: Failed to fetch data from CoinGecko"
                ) from e
            if not response.ok:
                message = _error_message(response)
                logger.warning("CoinGecko %s answered %s: %s", endpoint, response.status_code, message)
                raise ExternalFetchError(
                    message, status_code=response.status_code, response_body=response.text
                )
            try:
                data = response.json()
            except ValueError as e:
                raise ExternalFetchError(f"CoinGecko API: invalid JSON from {endpoint}") from e
            self._store(cache_key, data)
            return data

    def _is_fresh(self, entry: Any, now: datetime) -> bool:
        try:
            cache_time = datetime.strptime(entry["timestamp"], TIMESTAMP_FORMAT)
        except (KeyError, TypeError, ValueError):
            return False
        return (now - cache_time).total_seconds() < self.max_age_seconds

    def _cached(self, cache_key: str) -> Optional[Any]:
        entry = self.cache.get(cache_key)
        if entry and self._is_fresh(entry, datetime.now()):
            return entry.get("payload")
        return None

    def _store(self, cache_key: str, data: Any) -> None:
        """Cache a response and drop every expired entry."""
        now = datetime.now()
        for key in [k for k, entry in self.cache.items() if not self._is_fresh(entry, now)]:
            del self.cache[key]
        self.cache[cache_key] = {"payload": data, "timestamp": now.strftime(TIMESTAMP_FORMAT)}
        if self._save_cache is not None:
            self._save_cache(self.cache)

    # --- endpoints ---

    def get_prices(self, asset_ids: Iterable[str]) -> List[PriceSnapshot]:
        """Market snapshots for the given assets. No request for an empty list."""
        ids = sorted(set(a for a in asset_ids if a))
        if not ids:
            return []
        rows = self.get_json("/coins/markets", {
            "vs_currency": VS_CURRENCY,
            "ids": ",".join(ids),
            "order": "market_cap_desc",
            "sparkline": "true",
            "price_change_percentage": PRICE_CHANGE_WINDOWS,
        })
        return [PriceSnapshot.from_market(row) for row in rows or []]

    def get_price(self, asset_id: str) -> Optional[PriceSnapshot]:
        snapshots = self.get_prices([asset_id])
        return snapshots[0] if snapshots else None

    def get_top_markets(self, limit: int = 100, page: int = 1) -> List[PriceSnapshot]:
        rows = self.get_json("/coins/markets", {
            "vs_currency": VS_CURRENCY,
            "order": "market_cap_desc",
            "per_page": limit,
            "page": page,
            "sparkline": "true",
            "price_change_percentage": PRICE_CHANGE_WINDOWS,
        })
        return [PriceSnapshot.from_market(row) for row in rows or []]

    def search_coins(self, query: str) -> List[CoinSearchResult]:
        query = (query or "").strip()
        if not query:
            return []
        data = self.get_json("/search", {"query": query})
        return [
            CoinSearchResult(
                id=c["id"],
                symbol=c.get("symbol", ""),
                name=c.get("name", ""),
                thumb=c.get("thumb"),
                large=c.get("large"),
            )
            for c in (data or {}).get("coins", [])
        ]

    def get_market_chart(self, asset_id: str, days: int = 7) -> List[Tuple[float, float]]:
        """(timestamp_ms, price) pairs for the last ``days`` days."""
        data = self.get_json(
            f"/coins/{quote(asset_id, safe='')}/market_chart",
            {"vs_currency": VS_CURRENCY, "days": days},
        )
        return [(float(ts), float(price)) for ts, price in (data or {}).get("prices", [])]


def _error_message(response: requests.Response) -> str:
    """Best error text from a CoinGecko error response."""
    message = f"CoinGecko API Error ({response.status_code})"
    try:
        body = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return f"CoinGecko API: {text}" if text else message
    if isinstance(body, dict):
        if body.get("error"):
            return f"CoinGecko API: {body['error']}"
        status = body.get("status")
        if isinstance(status, dict) and status.get("error_message"):
            return f"CoinGecko API: {status['error_message']}"
    return message


def price_map(snapshots: Iterable[PriceSnapshot]) -> Dict[str, PriceSnapshot]:
    return {s.asset_id: s for s in snapshots}


def fetch_prices_safely(source: Any, asset_ids: Iterable[str]) -> Dict[str, PriceSnapshot]:
    """
    Fetch snapshots keyed by asset id; on ExternalFetchError log and return {}.

    Callers then fall back to cost-basis figures instead of failing.
    """
    if source is None:
        return {}
    try:
        return price_map(source.get_prices(list(asset_ids)))
    except ExternalFetchError as e:
        logger.warning("Prices unavailable, using cost basis: %s", e)
        return {}

