"""Lease data models."""

import getpass
import os
import socket
import time
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel


class ScopeKind(str, Enum):
    """Unit of exclusion."""
    GLOBAL = "global"
    REFERENCE = "reference"


@dataclass(frozen=True)
class LeaseScope:
    """A lease target: the whole repository or a single reference."""
    kind: ScopeKind
    name: str = "global"
    
    @classmethod
    def for_global(cls) -> "LeaseScope":
        return cls(ScopeKind.GLOBAL)
    
    @classmethod
    def for_reference(cls, name: str) -> "LeaseScope":
        if not name:
            raise ValueError("Reference scope needs a reference name")
        return cls(ScopeKind.REFERENCE, name)
    
    @property
    def is_global(self) -> bool:
        return self.kind == ScopeKind.GLOBAL
    
    @property
    def sort_key(self) -> tuple[int, str]:
        """Global first, then references in lexical order."""
        return (0, "") if self.is_global else (1, self.name)
    
    def __str__(self) -> str:
        return "global" if self.is_global else f"ref:{self.name}"


def resolve_user_id() -> str:
    """Best guess at the pushing user's identity."""
    for var in ("USER", "USERNAME", "LOGNAME"):
        value = os.environ.get(var, "").strip()
        if value:
            return value
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class LeaseOwner(BaseModel):
    """Diagnostic owner record written beside a lease."""
    user: str
    host: str
    pid: int
    created_at: float  # epoch seconds
    
    @classmethod
    def current(cls, user_id: str | None = None) -> "LeaseOwner":
        """Owner record for this process."""
        return cls(
            user=user_id or resolve_user_id(),
            host=socket.gethostname(),
            pid=os.getpid(),
            created_at=time.time(),
        )
