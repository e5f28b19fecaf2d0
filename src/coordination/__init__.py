"""Coordination layer - leases over a shared filesystem."""

from .exceptions import CoordinationError, LeaseStoreError
from .lease_store import FilesystemLeaseStore, LeaseStore
from .leases import LeaseInfo, LeaseManager, LeaseResult, backoff_delay
from .models import LeaseOwner, LeaseScope, ScopeKind

__all__ = [
    "CoordinationError",
    "FilesystemLeaseStore",
    "LeaseInfo",
    "LeaseManager",
    "LeaseOwner",
    "LeaseResult",
    "LeaseScope",
    "LeaseStore",
    "LeaseStoreError",
    "ScopeKind",
    "backoff_delay",
]
