"""Data persistence: key-value backends, versioned payloads, migrations, price cache."""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from coinfolio.config.constants import (
    BALANCE_KEY,
    HOLDINGS_KEY,
    SCHEMA_VERSION,
    WATCHLIST_KEY,
)
from coinfolio.errors import StorageError
from coinfolio.models.core import utc_now_iso

logger = logging.getLogger(__name__)


class MemoryBackend:
    """Key-value backend kept in a dict. Values are JSON round-tripped."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._items.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._items[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


class JsonFileBackend:
    """Key-value backend storing each key as ``<directory>/<key>.json``."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None when the key was never written.

        Raises StorageError when the file exists but cannot be read or decoded.
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"cannot read {path}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        """Write the value atomically (temp file, then rename). Raises StorageError."""
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(value, f, indent=4)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.remove(tmp)
                raise
        except OSError as e:
            raise StorageError(f"cannot write {path}: {e}") from e

    def remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"cannot remove {path}: {e}") from e

    def clear(self) -> None:
        if not self.directory.is_dir():
            return
        for path in self.directory.glob("*.json"):
            self.remove(path.stem)


def wrap(data: Any) -> Dict[str, Any]:
    """Wrap store data in the current versioned envelope."""
    return {"schema_version": SCHEMA_VERSION, "data": data}


def unwrap(key: str, payload: Any) -> Any:
    """Return the data held in a persisted payload, migrating older layouts first.

    Raises StorageError when the payload does not have the expected shape.
    """
    try:
        return migrate_payload(key, payload)["data"]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise StorageError(f"{key}: malformed payload ({e!r})") from e


def payload_version(payload: Any) -> int:
    """Schema version of a payload; anything without our envelope is version 0."""
    if isinstance(payload, dict) and "schema_version" in payload:
        try:
            return int(payload["schema_version"])
        except (TypeError, ValueError) as e:
            raise StorageError(f"invalid schema_version: {payload['schema_version']!r}") from e
    return 0


def migrate_payload(key: str, payload: Any) -> Dict[str, Any]:
    """Upgrade a persisted payload to the current envelope.

    Version 0 is what the browser build persisted: either a bare list or a
    ``{"state": {...}, "version": n}`` wrapper, with camelCase records.
    """
    version = payload_version(payload)
    if version > SCHEMA_VERSION:
        raise StorageError(
            f"{key}: payload schema_version {version} is newer than supported {SCHEMA_VERSION}"
        )
    if version == SCHEMA_VERSION:
        return payload
    logger.info("Migrating %s from schema_version %d to %d", key, version, SCHEMA_VERSION)
    state = payload.get("state", payload) if isinstance(payload, dict) else payload
    if key == HOLDINGS_KEY:
        data: Any = migrate_legacy_holdings(_state_list(state, "holdings"))
    elif key == WATCHLIST_KEY:
        data = migrate_legacy_watchlist(_state_list(state, "watchlist"))
    elif key == BALANCE_KEY:
        raw = state.get("balance", 0.0) if isinstance(state, dict) else state
        try:
            data = max(float(raw or 0.0), 0.0)
        except (TypeError, ValueError) as e:
            raise StorageError(f"{key}: invalid legacy balance {raw!r}") from e
    else:
        data = state
    return wrap(data)


def _state_list(state: Any, field: str) -> List[Dict[str, Any]]:
    if isinstance(state, dict):
        state = state.get(field, [])
    if not isinstance(state, list):
        raise StorageError(f"expected a list of {field}, got {type(state).__name__}")
    return state


def migrate_legacy_holdings(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Map camelCase holding records (coinId, buyPrice, buyDate, notes) to lot records.

    Records without a positive amount are dropped.
    """
    migrated: List[Dict[str, Any]] = []
    for rec in records:
        if "asset_id" in rec:
            migrated.append(dict(rec))
            continue
        amount = float(rec.get("amount") or 0.0)
        if not math.isfinite(amount) or amount <= 0:
            logger.info("Dropping legacy holding %s with amount %r", rec.get("id"), rec.get("amount"))
            continue
        acquired = rec.get("buyDate") or rec.get("createdAt") or utc_now_iso()
        migrated.append({
            "id": rec.get("id") or str(uuid.uuid4()),
            "asset_id": rec["coinId"],
            "symbol": rec.get("symbol", ""),
            "name": rec.get("name", ""),
            "amount": amount,
            "unit_cost": float(rec.get("buyPrice") or 0.0),
            "acquired_at": acquired,
            "note": rec.get("notes"),
            "created_at": rec.get("createdAt") or acquired,
            "updated_at": rec.get("updatedAt") or acquired,
        })
    return migrated


def migrate_legacy_watchlist(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Map camelCase watchlist records (coinId, addedAt) to watch item records."""
    migrated: List[Dict[str, Any]] = []
    for rec in records:
        if "asset_id" in rec:
            migrated.append(dict(rec))
            continue
        migrated.append({
            "id": rec.get("id") or str(uuid.uuid4()),
            "asset_id": rec["coinId"],
            "symbol": rec.get("symbol", ""),
            "name": rec.get("name", ""),
            "image": rec.get("image"),
            "added_at": rec.get("addedAt") or utc_now_iso(),
        })
    return migrated


def load_price_cache(path: Path | str) -> Dict[str, Any]:
    """Load price cache from file. Returns empty dict on missing or invalid file."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cache = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable price cache %s: %s", path, e)
        return {}
    return cache if isinstance(cache, dict) else {}


def save_price_cache(cache: Dict[str, Any], path: Path | str) -> None:
    """Save price cache to file. Ignores I/O errors (non-fatal)."""
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(cache, f, indent=4)
    except OSError as e:
        logger.warning("Could not save price cache %s: %s", path, e)
