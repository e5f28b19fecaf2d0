"""Lease store - lease artifacts on a shared filesystem."""

import shutil
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from urllib.parse import quote, unquote

import structlog
from pydantic import ValidationError

from .exceptions import LeaseStoreError
from .models import LeaseOwner, LeaseScope

logger = structlog.get_logger()


class LeaseStore(ABC):
    """Storage primitives the lease manager coordinates through.

    Implementations hold no locking logic of their own. The only
    requirement is that ``try_create`` is an atomic create-if-absent:
    when several callers race on the same scope, exactly one succeeds.
    """

    @abstractmethod
    def try_create(self, scope: LeaseScope) -> bool:
        """Create the lease artifact; False if it already exists."""
        ...

    @abstractmethod
    def age(self, scope: LeaseScope) -> float | None:
        """Seconds since the artifact was last modified, None if absent."""
        ...

    @abstractmethod
    def remove(self, scope: LeaseScope) -> None:
        """Remove the artifact and its owner record. Absent is not an error."""
        ...

    @abstractmethod
    def reclaim(self, scope: LeaseScope, ttl: float) -> bool:
        """Atomically remove the artifact if it is still at least ``ttl`` old.

        Returns False when the artifact turned out to be live, True when
        it was removed or was already gone. Of several callers racing to
        reclaim the same stale artifact, at most one removes it.
        """
        ...

    @abstractmethod
    def write_owner(self, scope: LeaseScope, owner: LeaseOwner) -> None:
        ...

    @abstractmethod
    def read_owner(self, scope: LeaseScope) -> LeaseOwner | None:
        ...

    @abstractmethod
    def scopes(self) -> list[LeaseScope]:
        """All scopes that currently have an artifact, live or stale."""
        ...


def escape_reference(name: str) -> str:
    """Flatten a reference name into a single path component."""
    return quote(name, safe="")


class FilesystemLeaseStore(LeaseStore):
    """Lease artifacts as directories under ``<root>/locks``.

    ``mkdir`` is the create-if-absent primitive. Whether it is atomic
    across hosts depends on the network filesystem and its mount options.
    """

    OWNER_FILE = "owner.json"
    # Escaped reference names never contain "+"
    TOMBSTONE_MARKER = "+reclaimed-"

    def __init__(self, root: Path, clock: Callable[[], float] = time.time):
        self.root = Path(root)
        self.clock = clock
        self.locks_dir = self.root / "locks"
        self.refs_dir = self.locks_dir / "refs"

    def path_for(self, scope: LeaseScope) -> Path:
        if scope.is_global:
            return self.locks_dir / "global"
        return self.refs_dir / escape_reference(scope.name)

    def try_create(self, scope: LeaseScope) -> bool:
        path = self.path_for(scope)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LeaseStoreError(f"Cannot prepare lease directory: {e}", str(path.parent)) from e

        try:
            path.mkdir()
        except FileExistsError:
            return False
        except OSError as e:
            raise LeaseStoreError(f"Cannot create lease: {e}", str(path)) from e
        return True

    def age(self, scope: LeaseScope) -> float | None:
        path = self.path_for(scope)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LeaseStoreError(f"Cannot stat lease: {e}", str(path)) from e
        return max(0.0, self.clock() - mtime)

    def remove(self, scope: LeaseScope) -> None:
        self._delete(self.path_for(scope))

    def _delete(self, path: Path) -> None:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise LeaseStoreError(f"Cannot remove lease: {e}", str(path)) from e

    def reclaim(self, scope: LeaseScope, ttl: float) -> bool:
        """Rename the artifact to a unique tombstone, then judge the tombstone.

        Only one racer can rename a given artifact. The tombstone stays in
        the same directory so the rename keeps its mtime.
        """
        path = self.path_for(scope)
        tombstone = path.with_name(f"{path.name}{self.TOMBSTONE_MARKER}{uuid.uuid4().hex}")
        try:
            path.rename(tombstone)
        except FileNotFoundError:
            return True
        except OSError as e:
            raise LeaseStoreError(f"Cannot move stale lease aside: {e}", str(path)) from e

        try:
            age = max(0.0, self.clock() - tombstone.stat().st_mtime)
        except OSError as e:
            raise LeaseStoreError(f"Cannot stat reclaimed lease: {e}", str(tombstone)) from e

        if age < ttl:
            # Renewed by another acquirer after the caller's age check
            logger.info("Reclaim found a live lease, restoring", scope=str(scope), age=round(age, 1))
            try:
                tombstone.rename(path)
            except OSError as e:
                self._delete(tombstone)
                raise LeaseStoreError(f"Cannot restore live lease: {e}", str(path)) from e
            return False

        try:
            self._delete(tombstone)
        except LeaseStoreError as e:
            logger.warning("Stale lease tombstone left behind", path=str(tombstone), error=str(e))
        return True

    def write_owner(self, scope: LeaseScope, owner: LeaseOwner) -> None:
        path = self.path_for(scope) / self.OWNER_FILE
        try:
            path.write_text(owner.model_dump_json(), encoding="utf-8")
        except OSError as e:
            raise LeaseStoreError(f"Cannot write owner record: {e}", str(path)) from e

    def read_owner(self, scope: LeaseScope) -> LeaseOwner | None:
        path = self.path_for(scope) / self.OWNER_FILE
        try:
            return LeaseOwner.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            # Sidecar is diagnostic only
            logger.debug("Unreadable lease owner record", path=str(path), error=str(e))
            return None

    def scopes(self) -> list[LeaseScope]:
        found = []
        try:
            if (self.locks_dir / "global").exists():
                found.append(LeaseScope.for_global())

            if self.refs_dir.is_dir():
                for entry in sorted(self.refs_dir.iterdir()):
                    if self.TOMBSTONE_MARKER in entry.name:
                        continue
                    found.append(LeaseScope.for_reference(unquote(entry.name)))
        except OSError as e:
            raise LeaseStoreError(f"Cannot list leases: {e}", str(self.locks_dir)) from e

        return found
