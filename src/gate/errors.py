"""Push gate error taxonomy."""

from src.coordination.models import LeaseScope


class GateError(Exception):
    """Base exception for push gate errors."""
    pass


class PolicyViolation(GateError):
    """A reference update breaks history policy. User-correctable."""
    
    def __init__(self, message: str, reason: str, reference: str):
        super().__init__(message)
        self.reason = reason
        self.reference = reference


class ResourceBusy(GateError):
    """A lease is held by someone else. Retry later."""
    
    def __init__(self, message: str, scope: LeaseScope, retry_after: int):
        super().__init__(message)
        self.scope = scope
        self.retry_after = retry_after


class InfrastructureError(GateError):
    """Repository state or filesystem could not be read."""
    pass


class MalformedInput(GateError):
    """An update line could not be parsed."""
    
    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line
