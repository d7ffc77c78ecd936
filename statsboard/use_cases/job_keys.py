"""Deterministic cache and job keys derived from computation parameters.

Every parameter that affects the output must be part of the key; request
control flags (``refresh``, ``mode``, ``format``, ``interval``) never are.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import quote
from uuid import uuid4

from statsboard.domain.job_constants import (
    CONTROL_PARAMS,
    JOB_KEY_SUFFIX,
    KEY_SEPARATOR,
    KEY_UNSET_VALUE,
)


def _escape(text: str) -> str:
    # ":", "=" and "," delimit key parts and must never appear unescaped
    return quote(text, safe="")


def _render_value(value: object) -> str:
    if value is None:
        return KEY_UNSET_VALUE
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, list | tuple | set | frozenset):
        return ",".join(sorted(_render_value(item) for item in value))
    return _escape(str(value))


def _render_params(params: Mapping[str, object]) -> list[str]:
    return [
        f"{_escape(str(name))}={_render_value(params[name])}"
        for name in sorted(params)
        if name not in CONTROL_PARAMS
    ]


def build_cache_key(namespace: str, params: Mapping[str, object]) -> str:
    """Key under which the final result of a computation is cached.

    Example:
        >>> build_cache_key("nfl:tournament-summary", {"season": 2024, "top": None})
        'nfl:tournament-summary:season=2024:top=all'
    """
    if not namespace:
        raise ValueError("namespace must not be empty")
    return KEY_SEPARATOR.join([namespace, *_render_params(params)])


def build_job_key(
    namespace: str, params: Mapping[str, object], *, refresh: bool = False
) -> str:
    """Idempotency key for the background job computing ``params``.

    A forced refresh appends a unique suffix so it never reuses an existing job.

    Example:
        >>> build_job_key("nfl:tournament-summary", {"season": 2024})
        'nfl:tournament-summary-job:season=2024'
    """
    if not namespace:
        raise ValueError("namespace must not be empty")
    parts = [f"{namespace}{JOB_KEY_SUFFIX}", *_render_params(params)]
    if refresh:
        parts.append(uuid4().hex)
    return KEY_SEPARATOR.join(parts)


__all__ = ["build_cache_key", "build_job_key"]
