"""Constants shared by the job store, runner and progress stream."""

from typing import Final

# Ephemeral store retention
JOB_TTL_SECONDS_DEFAULT: Final[int] = 60 * 60

# Progress stream polling (milliseconds)
STREAM_INTERVAL_DEFAULT_MS: Final[int] = 5_000
STREAM_INTERVAL_MIN_MS: Final[int] = 1_000
STREAM_INTERVAL_MAX_MS: Final[int] = 30_000
STREAM_RETRY_HINT_MS: Final[int] = 5_000

# Result cache
RESULT_CACHE_TTL_SECONDS_DEFAULT: Final[int] = 60 * 60
RESULT_CACHE_MIN_TTL_SECONDS: Final[int] = 1

# Key derivation
JOB_KEY_SUFFIX: Final[str] = "-job"
KEY_SEPARATOR: Final[str] = ":"
KEY_UNSET_VALUE: Final[str] = "all"
CONTROL_PARAMS: Final[frozenset[str]] = frozenset(
    {"refresh", "mode", "format", "interval"}
)
