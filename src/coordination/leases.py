"""Lease management - TTL leases with backoff over a shared lease store."""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import structlog

from .exceptions import LeaseStoreError
from .lease_store import LeaseStore
from .models import LeaseOwner, LeaseScope

logger = structlog.get_logger()

DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_BACKOFF_CAP = 30.0


def backoff_delay(
    attempt: int,
    base: float = DEFAULT_BACKOFF_BASE,
    cap: float = DEFAULT_BACKOFF_CAP,
) -> float:
    """Delay after the given zero-based failed attempt."""
    return min(base * 2 ** attempt, cap)


@dataclass
class LeaseResult:
    """Result of acquiring a set of leases."""
    acquired: bool
    held: list[LeaseScope] = field(default_factory=list)
    conflicting_scope: LeaseScope | None = None


@dataclass
class LeaseInfo:
    """Diagnostic view of one lease artifact."""
    scope: LeaseScope
    age_seconds: float
    live: bool
    owner: LeaseOwner | None = None


class LeaseManager:
    """Advisory mutual exclusion per scope.

    Liveness is decided by artifact age alone: a lease whose age reaches
    the TTL is dead and any acquirer may remove it. Ownership is not
    re-checked on release.
    """

    def __init__(
        self,
        store: LeaseStore,
        owner: LeaseOwner | None = None,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_cap: float = DEFAULT_BACKOFF_CAP,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.owner = owner or LeaseOwner.current()
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.clock = clock
        self.sleep = sleep

    def try_acquire(self, scope: LeaseScope, ttl: float) -> bool:
        """Single acquisition attempt, reclaiming a stale lease if found."""
        age = self.store.age(scope)

        if age is not None:
            if age < ttl:
                logger.debug("Lease busy", scope=str(scope), age=round(age, 1), ttl=ttl)
                return False

            logger.info("Reclaiming stale lease", scope=str(scope), age=round(age, 1), ttl=ttl)
            try:
                reclaimed = self.store.reclaim(scope, ttl)
            except LeaseStoreError as e:
                # Creation below still decides who wins
                logger.warning("Stale lease removal failed", scope=str(scope), error=str(e))
                reclaimed = True
            if not reclaimed:
                logger.debug("Lease renewed before reclaim", scope=str(scope))
                return False

        if not self.store.try_create(scope):
            logger.debug("Lost lease creation race", scope=str(scope))
            return False

        owner = self.owner.model_copy(update={"created_at": self.clock()})
        try:
            self.store.write_owner(scope, owner)
        except LeaseStoreError as e:
            logger.warning("Could not write lease owner record", scope=str(scope), error=str(e))

        logger.info("Acquired lease", scope=str(scope), user=owner.user, pid=owner.pid)
        return True

    def acquire_with_retry(self, scope: LeaseScope, ttl: float, max_attempts: int) -> bool:
        """Retry ``try_acquire`` with capped exponential backoff."""
        for attempt in range(max_attempts):
            if self.try_acquire(scope, ttl):
                return True

            if attempt < max_attempts - 1:
                delay = backoff_delay(attempt, self.backoff_base, self.backoff_cap)
                logger.info(
                    "Lease busy, backing off",
                    scope=str(scope),
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=delay,
                )
                self.sleep(delay)

        logger.warning("Lease attempts exhausted", scope=str(scope), attempts=max_attempts)
        return False

    def release(self, scope: LeaseScope) -> bool:
        """Best-effort release. Returns False if removal failed."""
        try:
            self.store.remove(scope)
        except LeaseStoreError as e:
            logger.warning("Lease release failed, will expire by TTL", scope=str(scope), error=str(e))
            return False

        logger.info("Released lease", scope=str(scope))
        return True

    def acquire_all(
        self,
        scopes: Iterable[LeaseScope],
        ttl: float,
        max_attempts: int,
    ) -> LeaseResult:
        """Acquire every scope in fixed order, or none of them."""
        ordered = sorted(set(scopes), key=lambda s: s.sort_key)
        held: list[LeaseScope] = []

        try:
            for scope in ordered:
                if not self.acquire_with_retry(scope, ttl, max_attempts):
                    self.release_all(held)
                    return LeaseResult(acquired=False, conflicting_scope=scope)
                held.append(scope)
        except LeaseStoreError:
            self.release_all(held)
            raise

        return LeaseResult(acquired=True, held=held)

    def release_all(self, scopes: Iterable[LeaseScope]) -> int:
        """Release in reverse acquisition order. Returns how many were removed."""
        released = 0
        for scope in reversed(list(scopes)):
            if self.release(scope):
                released += 1
        return released

    def owned_scopes(self) -> list[LeaseScope]:
        """Scopes whose owner record names this user on this host."""
        owned = []
        for scope in self.store.scopes():
            owner = self.store.read_owner(scope)
            if owner is not None and (owner.user, owner.host) == (self.owner.user, self.owner.host):
                owned.append(scope)
        return owned

    def describe_leases(self, ttl: float) -> list[LeaseInfo]:
        """List lease artifacts currently in the store."""
        leases = []
        for scope in self.store.scopes():
            age = self.store.age(scope)
            if age is None:
                continue
            leases.append(
                LeaseInfo(
                    scope=scope,
                    age_seconds=age,
                    live=age < ttl,
                    owner=self.store.read_owner(scope),
                )
            )
        return leases
