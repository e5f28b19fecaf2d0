"""Lease coordination exceptions."""


class CoordinationError(Exception):
    """Base exception for lease coordination errors."""
    pass


class LeaseStoreError(CoordinationError):
    """Raised when the shared lease store cannot be read or written."""
    
    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path
