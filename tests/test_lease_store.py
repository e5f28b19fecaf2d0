"""Tests for the filesystem lease store."""

import os

import pytest

from src.coordination.exceptions import LeaseStoreError
from src.coordination.lease_store import FilesystemLeaseStore, escape_reference
from src.coordination.models import LeaseOwner, LeaseScope

from .conftest import FakeClock, make_owner

GLOBAL = LeaseScope.for_global()
MAIN = LeaseScope.for_reference("refs/heads/main")


@pytest.fixture
def store(tmp_path):
    return FilesystemLeaseStore(tmp_path, clock=FakeClock(2_000_000_000.0))


class TestLayout:
    """Test lease artifact paths."""

    def test_global_path(self, store, tmp_path):
        """Global lease lives at locks/global."""
        assert store.path_for(GLOBAL) == tmp_path / "locks" / "global"

    def test_reference_path(self, store, tmp_path):
        """Reference leases are flattened under locks/refs."""
        path = store.path_for(MAIN)
        assert path.parent == tmp_path / "locks" / "refs"
        assert path.name == "refs%2Fheads%2Fmain"

    def test_escaping_is_collision_free(self):
        """Distinct reference strings never share an artifact."""
        names = ["refs/heads/a/b", "refs/heads/a%2Fb", "refs/heads/a\\b", "refs/heads/a_b"]
        escaped = {escape_reference(n) for n in names}
        assert len(escaped) == len(names)
        assert all("/" not in e and "\\" not in e for e in escaped)


class TestCreateAndRemove:
    """Test the create-if-absent primitive."""

    def test_create_once(self, store):
        """Second create on the same scope fails."""
        assert store.try_create(MAIN)
        assert not store.try_create(MAIN)
        assert store.path_for(MAIN).is_dir()

    def test_age_absent(self, store):
        """No artifact means no age."""
        assert store.age(GLOBAL) is None

    def test_age_from_mtime(self, store):
        """Age is clock minus modification time."""
        store.try_create(GLOBAL)
        now = store.clock()
        os.utime(store.path_for(GLOBAL), (now - 301, now - 301))
        assert store.age(GLOBAL) == pytest.approx(301)

    def test_age_never_negative(self, store):
        """A timestamp from a clock running ahead reads as age zero."""
        store.try_create(GLOBAL)
        now = store.clock()
        os.utime(store.path_for(GLOBAL), (now + 60, now + 60))
        assert store.age(GLOBAL) == 0.0

    def test_remove_with_owner_record(self, store):
        """Remove deletes the directory and its sidecar."""
        store.try_create(MAIN)
        store.write_owner(MAIN, make_owner())
        store.remove(MAIN)
        assert not store.path_for(MAIN).exists()
        assert store.try_create(MAIN)

    def test_remove_absent_is_noop(self, store):
        """Removing a missing lease is not an error."""
        store.remove(GLOBAL)

    def test_remove_plain_file_artifact(self, store):
        """A stray file at the lease path is removed as well."""
        path = store.path_for(GLOBAL)
        path.parent.mkdir(parents=True)
        path.write_text("locked")
        store.remove(GLOBAL)
        assert not path.exists()

    def test_unusable_root_raises(self, tmp_path):
        """A root that is a regular file surfaces as a store error."""
        root = tmp_path / "not-a-dir"
        root.write_text("")
        store = FilesystemLeaseStore(root)
        with pytest.raises(LeaseStoreError):
            store.try_create(GLOBAL)


class TestReclaim:
    """Test moving stale artifacts aside."""

    def age_lease(self, store, scope, seconds):
        now = store.clock()
        os.utime(store.path_for(scope), (now - seconds, now - seconds))

    def test_stale_is_removed(self, store):
        store.try_create(MAIN)
        store.write_owner(MAIN, make_owner())
        self.age_lease(store, MAIN, 301)

        assert store.reclaim(MAIN, ttl=300)
        assert store.age(MAIN) is None
        assert list(store.refs_dir.iterdir()) == []

    def test_live_is_restored(self, store):
        """A lease younger than the TTL is put back with its owner record."""
        store.try_create(GLOBAL)
        store.write_owner(GLOBAL, make_owner("bob"))
        self.age_lease(store, GLOBAL, 10)

        assert not store.reclaim(GLOBAL, ttl=300)
        assert store.age(GLOBAL) == pytest.approx(10)
        assert store.read_owner(GLOBAL).user == "bob"
        assert sorted(p.name for p in store.locks_dir.iterdir()) == ["global"]

    def test_absent_counts_as_reclaimed(self, store):
        assert store.reclaim(MAIN, ttl=300)

    def test_tombstones_are_not_listed(self, store):
        """Leftover tombstones never show up as scopes."""
        store.try_create(MAIN)
        store.refs_dir.joinpath(escape_reference("refs/heads/x") + store.TOMBSTONE_MARKER + "abc").mkdir()

        assert store.scopes() == [MAIN]


class TestOwnerRecord:
    """Test the diagnostic sidecar."""

    def test_round_trip(self, store):
        """Owner record is written as JSON beside the lease."""
        store.try_create(GLOBAL)
        owner = LeaseOwner(user="carol", host="build-7", pid=31337, created_at=1700000000.5)
        store.write_owner(GLOBAL, owner)

        assert (store.path_for(GLOBAL) / "owner.json").is_file()
        assert store.read_owner(GLOBAL) == owner

    def test_missing_or_corrupt_reads_none(self, store):
        """Unreadable sidecars are ignored."""
        assert store.read_owner(GLOBAL) is None

        store.try_create(GLOBAL)
        (store.path_for(GLOBAL) / "owner.json").write_text("{not json")
        assert store.read_owner(GLOBAL) is None

    def test_write_without_lease_raises(self, store):
        """Writing an owner for a missing lease is a store error."""
        with pytest.raises(LeaseStoreError):
            store.write_owner(MAIN, make_owner())


class TestScopes:
    """Test lease enumeration."""

    def test_lists_global_and_refs(self, store):
        """All artifacts are listed with original reference names."""
        assert store.scopes() == []

        store.try_create(LeaseScope.for_reference("refs/tags/v1"))
        store.try_create(MAIN)
        store.try_create(GLOBAL)

        assert store.scopes() == [
            GLOBAL,
            MAIN,
            LeaseScope.for_reference("refs/tags/v1"),
        ]
