"""Push gate - validates updates, then takes leases, then lets the push through."""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from src.coordination.exceptions import LeaseStoreError
from src.coordination.lease_store import FilesystemLeaseStore
from src.coordination.leases import LeaseManager
from src.coordination.models import LeaseOwner, LeaseScope

from .config import Settings
from .errors import InfrastructureError, PolicyViolation, ResourceBusy
from .policy import DenyReason, first_denial, is_tag_reference, validate_updates
from .updates import UpdateTuple

logger = structlog.get_logger()

EXIT_PROCEED = 0
EXIT_POLICY_VIOLATION = 1
EXIT_INFRASTRUCTURE_ERROR = 74
EXIT_RESOURCE_BUSY = 75
EXIT_CONFIG_ERROR = 78


class RejectReason(str, Enum):
    """Why the gate rejected a push."""
    NON_FAST_FORWARD = "non_fast_forward"
    IMMUTABLE_TAG = "immutable_tag_violation"
    BUSY = "resource_busy"
    INFRASTRUCTURE = "infrastructure_error"


POLICY_REJECTIONS = {
    DenyReason.NON_FAST_FORWARD: RejectReason.NON_FAST_FORWARD,
    DenyReason.IMMUTABLE_TAG: RejectReason.IMMUTABLE_TAG,
}

EXIT_CODES = {
    RejectReason.NON_FAST_FORWARD: EXIT_POLICY_VIOLATION,
    RejectReason.IMMUTABLE_TAG: EXIT_POLICY_VIOLATION,
    RejectReason.BUSY: EXIT_RESOURCE_BUSY,
    RejectReason.INFRASTRUCTURE: EXIT_INFRASTRUCTURE_ERROR,
}


class RepositoryState(Protocol):
    """Read access to the repository the push targets."""

    def refresh(self, remote: str) -> None: ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool: ...

    def resolve_reference(self, name: str) -> str | None: ...


@dataclass
class GateResult:
    """Proceed, or reject with a categorized reason."""
    proceed: bool
    reason: RejectReason | None = None
    message: str = ""
    reference: str | None = None
    scope: LeaseScope | None = None
    retry_after: int | None = None
    leases: list[LeaseScope] = field(default_factory=list)

    @classmethod
    def reject(cls, reason: RejectReason, message: str, **kwargs) -> "GateResult":
        return cls(proceed=False, reason=reason, message=message, **kwargs)

    @property
    def exit_code(self) -> int:
        if self.proceed:
            return EXIT_PROCEED
        return EXIT_CODES[self.reason]

    def raise_for_rejection(self) -> None:
        """Raise the matching gate error if the push was rejected."""
        if self.proceed:
            return
        if self.reason == RejectReason.BUSY:
            raise ResourceBusy(self.message, self.scope, self.retry_after)
        if self.reason == RejectReason.INFRASTRUCTURE:
            raise InfrastructureError(self.message)
        raise PolicyViolation(self.message, self.reason.value, self.reference)

    def describe(self) -> str:
        """One-line summary for the error stream."""
        if self.proceed:
            held = ", ".join(str(s) for s in self.leases) or "none"
            return f"PROCEED (leases: {held})"

        line = f"REJECT [{self.reason.value}] {self.message}"
        if self.reference:
            line += f" (ref: {self.reference})"
        if self.scope is not None:
            line += f" (scope: {self.scope})"
        if self.retry_after is not None:
            line += f"; retry in about {self.retry_after}s"
        return line


def build_lease_manager(settings: Settings) -> LeaseManager:
    """Lease manager over the filesystem store named in settings."""
    return LeaseManager(
        FilesystemLeaseStore(settings.lock_store_root),
        owner=LeaseOwner.current(settings.user_id),
        backoff_base=settings.backoff_base_seconds,
        backoff_cap=settings.backoff_cap_seconds,
    )


class PushGate:
    """Single pass/fail decision for a set of reference updates.

    Validation happens before leasing and is not repeated once the
    leases are held, so a second gated pusher can land between the two.
    """

    def __init__(
        self,
        settings: Settings,
        repository: RepositoryState,
        lease_manager: LeaseManager | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.leases = lease_manager or build_lease_manager(settings)

    def scopes_for(self, updates: Sequence[UpdateTuple]) -> list[LeaseScope]:
        """Scopes to lock for these updates, in acquisition order."""
        scopes = []
        if self.settings.enable_global_lease:
            scopes.append(LeaseScope.for_global())
        if self.settings.enable_per_reference_lease:
            refs = sorted({u.remote_ref for u in updates})
            scopes.extend(LeaseScope.for_reference(ref) for ref in refs)
        return scopes

    def _ensure_known(self, updates: Sequence[UpdateTuple]) -> None:
        """Every remote commit we must compare against has to exist locally."""
        for update in updates:
            if update.is_new or update.is_delete or is_tag_reference(update.remote_ref):
                continue
            if self.repository.resolve_reference(update.remote_commit) is None:
                raise InfrastructureError(
                    f"Remote commit {update.remote_commit} for {update.remote_ref} "
                    f"is not available locally"
                )

    def evaluate(self, updates: Sequence[UpdateTuple], remote: str | None = None) -> GateResult:
        """Validate, then lease. The first failing step decides."""
        if not updates:
            logger.info("No reference updates to gate")
            return GateResult(proceed=True)

        # 1. Integrity policy against freshly read remote state
        try:
            if remote and self.settings.refresh_remote:
                self.repository.refresh(remote)
            self._ensure_known(updates)
            decisions = validate_updates(updates, self.repository.is_ancestor)
        except InfrastructureError as e:
            logger.error("Remote state unavailable", remote=remote, error=str(e))
            return GateResult.reject(RejectReason.INFRASTRUCTURE, str(e))

        denial = first_denial(decisions)
        if denial is not None:
            result = GateResult.reject(
                POLICY_REJECTIONS[denial.reason],
                _policy_message(denial.reason),
                reference=denial.update.remote_ref,
            )
            logger.info("Push rejected", reason=result.reason.value, ref=result.reference)
            return result

        if self.settings.dry_run:
            logger.info("Dry run, skipping leases", updates=len(updates))
            return GateResult(proceed=True)

        # 2./3. Global lease, then one per reference, all or nothing
        scopes = self.scopes_for(updates)
        ttl = self.settings.lock_ttl_seconds
        try:
            lease_result = self.leases.acquire_all(scopes, ttl, self.settings.max_retry_attempts)
        except LeaseStoreError as e:
            logger.error("Lease store unavailable", error=str(e), path=e.path)
            return GateResult.reject(RejectReason.INFRASTRUCTURE, str(e))

        if not lease_result.acquired:
            result = GateResult.reject(
                RejectReason.BUSY,
                "Another push holds the lease",
                scope=lease_result.conflicting_scope,
                retry_after=ttl,
            )
            logger.info("Push rejected", reason=result.reason.value, scope=str(result.scope))
            return result

        logger.info("Push may proceed", leases=[str(s) for s in lease_result.held])
        return GateResult(proceed=True, leases=lease_result.held)

    def release(self, result: GateResult) -> int:
        """Release whatever leases a proceed result holds."""
        released = self.leases.release_all(result.leases)
        result.leases = []
        return released

    @contextmanager
    def hold(self, updates: Sequence[UpdateTuple], remote: str | None = None) -> Iterator[GateResult]:
        """Evaluate and keep the leases for the duration of the block."""
        result = self.evaluate(updates, remote)
        try:
            yield result
        finally:
            if result.leases:
                self.release(result)


def _policy_message(reason: DenyReason) -> str:
    if reason == DenyReason.IMMUTABLE_TAG:
        return "Tag already exists on the remote and cannot be moved or deleted"
    return "Update is not a fast-forward of the remote reference"
