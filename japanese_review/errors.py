class ReviewEngineError(Exception):
    """Base exception for the review engine."""
    pass


class ValidationError(ReviewEngineError, ValueError):
    """Raised when a request is rejected before anything is read or written."""
    pass


class NotFoundError(ReviewEngineError, LookupError):
    """Raised when a direct lookup by id finds nothing."""
    pass


class StorageError(ReviewEngineError):
    """Raised when the store is unavailable or a write fails.

    The transaction has already been rolled back when this is raised.
    """
    pass
