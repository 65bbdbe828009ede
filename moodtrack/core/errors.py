"""
Error taxonomy for the classification and aggregation engine.

- InsufficientDataError: surfaced to callers (never silently defaulted)
- InvalidInputWarning: recovered locally by clamping, only logged
- ExternalUnavailableError: catalog / AI failures, turned into defaults at the adapter boundary
- StoreOperationError / PersistenceConflictError: store failures, retried then counted by batch jobs
"""


class InsufficientDataError(Exception):
    """Raised when a statistic cannot be derived from the available population."""

    def __init__(self, message: str = "Insufficient data", population_size: int = 0):
        super().__init__(message)
        self.population_size = population_size


class InvalidInputWarning(UserWarning):
    """Describes an out-of-range descriptor value that was clamped."""
    pass


class ExternalUnavailableError(Exception):
    """Raised when the catalog or the AI provider times out or fails."""
    pass


class StoreOperationError(Exception):
    """Raised when a store read or write fails."""
    pass


class PersistenceConflictError(StoreOperationError):
    """Raised when a concurrent write collides on the same key."""
    pass
