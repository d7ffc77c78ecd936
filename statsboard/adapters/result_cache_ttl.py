"""Time-bounded result cache held in memory with an optional disk mirror."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from statsboard.config.logging_config import get_logger
from statsboard.domain.job_constants import RESULT_CACHE_MIN_TTL_SECONDS
from statsboard.ports.result_cache import ResultCachePort

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


class TTLResultCache(ResultCachePort):
    """Cache of final computation results.

    Memory entries are authoritative for the process. When ``cache_dir`` is
    set, entries are also written as JSON files so a restarted process can
    reuse results that have not expired yet. Disk failures are treated as
    misses.
    """

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache_dir = Path(cache_dir) if cache_dir is not None else None
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if now <= entry.expires_at:
                    return entry.value
                del self._entries[key]

        disk_entry = self._read_disk(key, now)
        if disk_entry is None:
            return None
        with self._lock:
            self._entries[key] = disk_entry
        return disk_entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ttl = max(RESULT_CACHE_MIN_TTL_SECONDS, ttl_seconds)
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
        with self._lock:
            self._entries[key] = entry
        self._write_disk(key, entry)

    def get_or_load(
        self, key: str, ttl_seconds: int, loader: Callable[[], Any]
    ) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl_seconds)
        return value

    def _path_for_key(self, key: str) -> Path | None:
        if self._cache_dir is None:
            return None
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self._cache_dir / digest[:2] / f"{digest}.json"

    def _read_disk(self, key: str, now: float) -> CacheEntry | None:
        path = self._path_for_key(key)
        if path is None or not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            entry = CacheEntry(value=raw["value"], expires_at=float(raw["expires_at"]))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("result_cache_read_failed", path=str(path), error=str(exc))
            return None

        if now > entry.expires_at:
            path.unlink(missing_ok=True)
            return None
        return entry

    def _write_disk(self, key: str, entry: CacheEntry) -> None:
        path = self._path_for_key(key)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"value": entry.value, "expires_at": entry.expires_at}
            path.write_text(json.dumps(payload), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("result_cache_write_failed", path=str(path), error=str(exc))


__all__ = ["CacheEntry", "TTLResultCache"]
