"""Environment-driven settings for the price client and stores."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from coinfolio.config.constants import (
    COINGECKO_BASE_URL,
    DEFAULT_DATA_DIR,
    DEFAULT_PRICE_MAX_AGE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    """Runtime settings.

    Attributes:
        data_dir: Directory holding the persisted stores.
        base_url: CoinGecko API base URL.
        api_key: Demo or pro API key, if any.
        pro: True when api_key is a pro key.
        price_max_age: Seconds a cached price response stays fresh.
        log_level: Logging level name.
    """

    data_dir: Path = DEFAULT_DATA_DIR
    base_url: str = COINGECKO_BASE_URL
    api_key: Optional[str] = None
    pro: bool = False
    price_max_age: float = DEFAULT_PRICE_MAX_AGE
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        The pro key wins over the demo key when both are set.
        """
        raw_dir = os.getenv("COINFOLIO_DATA_DIR", "").strip()
        data_dir = Path(raw_dir).expanduser() if raw_dir else DEFAULT_DATA_DIR
        base_url = os.getenv("COINGECKO_BASE_URL", "").strip() or COINGECKO_BASE_URL
        pro_key = os.getenv("COINGECKO_PRO_API_KEY", "").strip()
        demo_key = os.getenv("COINGECKO_DEMO_API_KEY", "").strip()
        return cls(
            data_dir=data_dir,
            base_url=base_url.rstrip("/"),
            api_key=pro_key or demo_key or None,
            pro=bool(pro_key),
            price_max_age=cls._parse_max_age(os.getenv("COINFOLIO_PRICE_MAX_AGE")),
            log_level=os.getenv("COINFOLIO_LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
        )

    @staticmethod
    def _parse_max_age(raw: Optional[str]) -> float:
        if raw is None or not raw.strip():
            return DEFAULT_PRICE_MAX_AGE
        try:
            value = float(raw)
        except ValueError:
            logger.warning("Ignoring invalid COINFOLIO_PRICE_MAX_AGE=%r", raw)
            return DEFAULT_PRICE_MAX_AGE
        return max(value, 0.0)
