"""Repository state access through git."""

from .client import GitRepository

__all__ = [
    "GitRepository",
]
