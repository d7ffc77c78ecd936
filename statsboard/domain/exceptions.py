"""Custom exception hierarchy for statsboard.

Following error taxonomy: retryable, non-retryable, validation.
"""


class StatsboardError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(StatsboardError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(StatsboardError):
    """Errors that should not be retried (validation, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass


class UnknownComputationError(NonRetryableError):
    """No computation is registered under the requested name."""

    def __init__(self, name: str) -> None:
        """Initialize with the unknown computation name."""
        self.name = name
        super().__init__(f"Unknown computation: {name}")
