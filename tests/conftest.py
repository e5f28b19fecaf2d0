"""Shared fixtures: simulated clock, in-memory lease store, fake repository."""

import logging
import shutil
import subprocess
import threading

import pytest
import structlog

from src.coordination.lease_store import LeaseStore
from src.coordination.leases import LeaseManager
from src.coordination.models import LeaseOwner, LeaseScope
from src.gate.config import Settings
from src.gate.errors import InfrastructureError
from src.gate.log_setup import LOGGER_NAME

ZERO = "0" * 40


class FakeClock:
    """Manually advanced clock."""
    
    def __init__(self, now: float = 1_000_000.0):
        self.now = now
    
    def __call__(self) -> float:
        return self.now
    
    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryLeaseStore(LeaseStore):
    """Lease store whose create-if-absent is atomic under a mutex."""
    
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.created: dict[LeaseScope, float] = {}
        self.owners: dict[LeaseScope, LeaseOwner] = {}
        self._mutex = threading.Lock()
    
    def try_create(self, scope):
        with self._mutex:
            if scope in self.created:
                return False
            self.created[scope] = self.clock()
            return True
    
    def age(self, scope):
        with self._mutex:
            created = self.created.get(scope)
        if created is None:
            return None
        return max(0.0, self.clock() - created)
    
    def remove(self, scope):
        with self._mutex:
            self.created.pop(scope, None)
            self.owners.pop(scope, None)
    
    def reclaim(self, scope, ttl):
        with self._mutex:
            created = self.created.get(scope)
            if created is None:
                return True
            if self.clock() - created < ttl:
                return False
            del self.created[scope]
            self.owners.pop(scope, None)
            return True

    def write_owner(self, scope, owner):
        self.owners[scope] = owner
    
    def read_owner(self, scope):
        return self.owners.get(scope)
    
    def scopes(self):
        return sorted(self.created, key=lambda s: s.sort_key)
    
    def is_live(self, scope, ttl):
        age = self.age(scope)
        return age is not None and age < ttl


class FakeRepository:
    """Repository state with an explicit ancestry relation."""
    
    def __init__(self, ancestry: dict[str, set[str]] | None = None, known: set[str] | None = None):
        # commit -> set of its ancestors (excluding itself)
        self.ancestry = ancestry or {}
        self.known = known
        self.refreshed: list[str] = []
        self.fail_refresh = False
    
    def refresh(self, remote):
        if self.fail_refresh:
            raise InfrastructureError(f"git fetch {remote} failed: unreachable")
        self.refreshed.append(remote)
    
    def is_ancestor(self, ancestor, descendant):
        return ancestor == descendant or ancestor in self.ancestry.get(descendant, set())
    
    def resolve_reference(self, name):
        if self.known is not None and name not in self.known:
            return None
        return name


def make_owner(user: str = "alice", pid: int = 4242) -> LeaseOwner:
    return LeaseOwner(user=user, host="host-a", pid=pid, created_at=0.0)


@pytest.fixture(autouse=True)
def reset_structlog():
    """CLI tests reconfigure structlog onto streams that get closed."""
    yield
    structlog.reset_defaults()
    output = logging.getLogger(LOGGER_NAME)
    for handler in list(output.handlers):
        output.removeHandler(handler)
        handler.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryLeaseStore(clock)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def lease_manager(memory_store, clock, sleeps):
    return LeaseManager(
        memory_store,
        owner=make_owner(),
        clock=clock,
        sleep=sleeps.append,
    )


@pytest.fixture
def make_settings(tmp_path):
    """Settings bound to a temporary lease store root."""
    def _make(**overrides):
        values = {
            "lock_store_root": tmp_path / "store",
            "user_id": "alice",
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


def git(cwd, *args) -> str:
    """Run git with a throwaway identity."""
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com",
         "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def commit(cwd, message: str) -> str:
    git(cwd, "commit", "--allow-empty", "-q", "-m", message)
    return git(cwd, "rev-parse", "HEAD")


@pytest.fixture
def history(tmp_path):
    """Repo with main: c1 <- c2, side: c1 <- c3, and tag v1 at c1."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    c1 = commit(repo, "one")
    c2 = commit(repo, "two")
    git(repo, "checkout", "-q", "-b", "side", c1)
    c3 = commit(repo, "three")
    git(repo, "checkout", "-q", "main")
    git(repo, "tag", "v1", c1)
    return {"repo": repo, "c1": c1, "c2": c2, "c3": c3}
