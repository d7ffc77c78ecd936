"""Port definition for the computation result cache."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ResultCachePort(Protocol):
    """Time-bounded key/value store for final computation results."""

    def get(self, key: str) -> Any | None:
        """Return a fresh cached value or None."""

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

    def get_or_load(
        self, key: str, ttl_seconds: int, loader: Callable[[], Any]
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""


__all__ = ["ResultCachePort"]
