"""
Tests for the block store: presence, coverage, supersession,
reactivation and ordering.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ipmanage.blocklist.errors import InvalidAddress, UnknownPortGroup, UnknownReason
from ipmanage.blocklist.expiry import ExpiryEngine
from ipmanage.blocklist.models import BlockMetadata, InsertOutcome, RecordStatus
from ipmanage.blocklist.store import BlockStore, scope_compatible, scope_covers
from ipmanage.policy.catalog import PolicyCatalog, PortGroup

ADDED = datetime(2021, 2, 21, 10, 27, 53, 441000, tzinfo=timezone.utc)


class MemoryStorage:
    """Records saves instead of writing files."""

    def __init__(self):
        self.saved = []

    def load(self):
        return list(self.saved[-1]) if self.saved else []

    def save(self, records):
        self.saved.append([r.address for r in records])
        return True


@pytest.fixture
def catalog():
    return PolicyCatalog(
        reasons=["General", "SSH brute force", "Web scanner"],
        ports={
            "ssh": PortGroup(name="ssh", ports=[22], days=5, reason=1),
            "web": PortGroup(name="web", ports=[80, 443]),
            "broken": PortGroup(name="broken", ports=[25], reason=9),
        },
    )


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(catalog, storage):
    return BlockStore(catalog, storage=storage, name="Test")


def addresses(records):
    return [(r.address, r.port_scope) for r in records]


# ── Scope helpers ────────────────────────────────────────


def test_scope_compatible():
    assert scope_compatible(None, None)
    assert scope_compatible("ssh", "ssh")
    assert scope_compatible("ssh", None)
    assert not scope_compatible(None, "ssh")
    assert not scope_compatible("ssh", "web")


def test_scope_covers():
    assert scope_covers(None, "ssh")
    assert scope_covers("ssh", "ssh")
    assert not scope_covers("ssh", None)
    assert not scope_covers("web", "ssh")


# ── Insert ───────────────────────────────────────────────


def test_insert_new_record(store, storage):
    result = store.insert("138.128.84.172")
    assert result.outcome is InsertOutcome.INSERTED
    assert result.changed
    assert addresses(store.active()) == [("138.128.84.172", None)]
    assert storage.saved == [["138.128.84.172"]]


def test_insert_twice_is_already_present(store):
    store.insert("138.128.84.172")
    result = store.insert("138.128.84.172")
    assert result.outcome is InsertOutcome.ALREADY_PRESENT
    assert not result.changed
    assert len(store.active()) == 1


def test_scoped_insert_over_unscoped_is_already_present(store):
    store.insert("94.181.47.232")
    result = store.insert("94.181.47.232", "ssh")
    assert result.outcome is InsertOutcome.ALREADY_PRESENT
    assert addresses(store.active()) == [("94.181.47.232", None)]


def test_same_scope_twice_is_already_present(store):
    store.insert("94.181.47.232", "ssh")
    result = store.insert("94.181.47.232", "ssh")
    assert result.outcome is InsertOutcome.ALREADY_PRESENT
    assert len(store) == 1


def test_different_scopes_same_address_both_kept(store):
    store.insert("94.181.47.232", "ssh")
    result = store.insert("94.181.47.232", "web")
    assert result.outcome is InsertOutcome.INSERTED
    assert sorted(addresses(store.active())) == [
        ("94.181.47.232", "ssh"), ("94.181.47.232", "web"),
    ]


def test_unscoped_over_scoped_same_address_keeps_both(store):
    """A broader-scope insert does not remove the same-address scoped record."""
    store.insert("94.181.47.232", "ssh")
    result = store.insert("94.181.47.232")
    assert result.outcome is InsertOutcome.INSERTED
    assert result.superseded == []
    assert set(addresses(store.active())) == {
        ("94.181.47.232", None), ("94.181.47.232", "ssh"),
    }


def test_address_inside_cidr_is_already_covered(store):
    store.insert("10.0.0.0/24")
    result = store.insert("10.0.0.5")
    assert result.outcome is InsertOutcome.ALREADY_COVERED
    assert result.record.address == "10.0.0.0/24"
    assert addresses(store.active()) == [("10.0.0.0/24", None)]


def test_scoped_address_inside_unscoped_cidr_is_covered(store):
    store.insert("10.0.0.0/24")
    result = store.insert("10.0.0.5", "ssh")
    assert result.outcome is InsertOutcome.ALREADY_COVERED


def test_unscoped_address_inside_scoped_cidr_is_inserted(store):
    store.insert("10.0.0.0/24", "ssh")
    result = store.insert("10.0.0.5")
    assert result.outcome is InsertOutcome.INSERTED
    assert len(store.active()) == 2


def test_equal_range_different_spelling_is_covered(store):
    store.insert("10.0.0.5/32")
    assert store.insert("10.0.0.5").outcome is InsertOutcome.ALREADY_COVERED


def test_broader_cidr_supersedes_narrower(store):
    store.insert("10.0.0.0/24")
    result = store.insert("10.0.0.0/16")
    assert result.outcome is InsertOutcome.INSERTED
    assert [r.address for r in result.superseded] == ["10.0.0.0/24"]
    assert addresses(store.active()) == [("10.0.0.0/16", None)]


def test_broader_cidr_supersedes_many(store):
    store.insert("188.166.215.0/24")
    store.insert("188.166.1.7")
    store.insert("188.167.0.1")
    store.insert("188.166.0.0/16")
    assert addresses(store.active()) == [
        ("188.166.0.0/16", None), ("188.167.0.1", None),
    ]


def test_scoped_cidr_does_not_supersede_other_scope(store):
    store.insert("10.0.0.5", "web")
    result = store.insert("10.0.0.0/24", "ssh")
    assert result.superseded == []
    assert len(store.active()) == 2


def test_scoped_cidr_does_not_supersede_unscoped(store):
    store.insert("10.0.0.5")
    store.insert("10.0.0.0/24", "ssh")
    assert set(addresses(store.active())) == {
        ("10.0.0.0/24", "ssh"), ("10.0.0.5", None),
    }


def test_unscoped_cidr_supersedes_scoped(store):
    store.insert("10.0.0.5", "ssh")
    result = store.insert("10.0.0.0/24")
    assert [r.address for r in result.superseded] == ["10.0.0.5"]


def test_supersession_leaves_expired_records(store):
    store.insert("10.0.0.5", metadata=BlockMetadata(days=1, dt_added=ADDED))
    ExpiryEngine(store.catalog).sweep(store, now=ADDED + timedelta(days=2))
    store.insert("10.0.0.0/24")
    assert [r.address for r in store.expired()] == ["10.0.0.5"]
    assert [r.address for r in store.active()] == ["10.0.0.0/24"]


def test_insert_keeps_address_order(store):
    for ip in ["10.0.0.5", "9.255.255.255", "10.0.0.255"]:
        store.insert(ip)
    assert [r.address for r in store.records] == ["9.255.255.255", "10.0.0.5", "10.0.0.255"]


def test_bulk_insert_defers_sort_and_save(store, storage):
    store.insert("10.0.0.5", bulk=True)
    store.insert("9.0.0.1", bulk=True)
    assert storage.saved == []
    assert [r.address for r in store.records] == ["10.0.0.5", "9.0.0.1"]
    store.sort()
    assert [r.address for r in store.records] == ["9.0.0.1", "10.0.0.5"]


# ── Validation ───────────────────────────────────────────


def test_unknown_port_group(store):
    with pytest.raises(UnknownPortGroup):
        store.insert("1.2.3.4", "smtp")
    assert len(store) == 0


def test_invalid_address_leaves_store_untouched(store):
    store.insert("1.2.3.4")
    with pytest.raises(InvalidAddress):
        store.insert("1.2.3.400")
    assert [r.address for r in store.records] == ["1.2.3.4"]


def test_reason_index(store):
    result = store.insert("1.2.3.4", metadata=BlockMetadata(reason=2))
    assert result.record.reason == "Web scanner"


def test_reason_index_out_of_range(store):
    with pytest.raises(UnknownReason):
        store.insert("1.2.3.4", metadata=BlockMetadata(reason=7))
    assert len(store) == 0


def test_reason_from_port_group(store):
    result = store.insert("1.2.3.4", "ssh")
    assert result.record.reason == "SSH brute force"


def test_explicit_reason_beats_port_group(store):
    result = store.insert("1.2.3.4", "ssh", BlockMetadata(reason="Manual"))
    assert result.record.reason == "Manual"


def test_reason_extra_is_appended(store):
    result = store.insert("1.2.3.4", metadata=BlockMetadata(reason=1, reason_extra="from logs"))
    assert result.record.reason == "SSH brute force - from logs"


def test_reason_extra_alone(store):
    result = store.insert("1.2.3.4", "ssh", BlockMetadata(reason_extra="from logs"))
    assert result.record.reason == "from logs"


def test_port_group_reason_out_of_range(store):
    with pytest.raises(UnknownReason):
        store.insert("1.2.3.4", "broken")


# ── Reactivation ─────────────────────────────────────────


def test_reinsert_reactivates_expired_record(store):
    store.insert(
        "3.0.115.255",
        metadata=BlockMetadata(days=3, dt_added=ADDED, country="SG", reason="Old"),
    )
    engine = ExpiryEngine(store.catalog)
    assert engine.sweep(store, now=ADDED + timedelta(days=3)) == 1

    record = store.records[0]
    assert record.status is RecordStatus.EXPIRED
    assert record.dt_expired == ADDED + timedelta(days=3)

    result = store.insert("3.0.115.255", metadata=BlockMetadata(reason="New"))
    assert result.outcome is InsertOutcome.REACTIVATED
    assert result.record is record
    assert len(store) == 1
    assert record.is_active
    assert record.dt_expired is None
    assert record.days is None
    assert record.dt_added > ADDED
    assert record.reason == "New"
    assert record.country == "SG"


def test_reactivation_requires_same_scope(store):
    store.insert("3.0.115.255", "ssh", BlockMetadata(days=3, dt_added=ADDED))
    ExpiryEngine(store.catalog).sweep(store, now=ADDED + timedelta(days=4))

    result = store.insert("3.0.115.255")
    assert result.outcome is InsertOutcome.INSERTED
    assert len(store.expired()) == 1
    assert len(store.active()) == 1


def test_expired_record_does_not_block_insert(store):
    store.insert("10.0.0.0/24", metadata=BlockMetadata(days=1, dt_added=ADDED))
    ExpiryEngine(store.catalog).sweep(store, now=ADDED + timedelta(days=1))
    result = store.insert("10.0.0.5")
    assert result.outcome is InsertOutcome.INSERTED


# ── Remove / find ────────────────────────────────────────


def test_remove_matching_scope_only(store, storage):
    store.insert("94.181.47.232", "ssh")
    store.insert("94.181.47.232", "web")
    storage.saved.clear()

    assert store.remove("94.181.47.232", "ssh")
    assert addresses(store.active()) == [("94.181.47.232", "web")]
    assert storage.saved == [["94.181.47.232"]]


def test_remove_unscoped_leaves_scoped(store):
    store.insert("94.181.47.232", "ssh")
    assert not store.remove("94.181.47.232")
    assert len(store) == 1


def test_remove_missing_does_not_save(store, storage):
    store.insert("1.2.3.4")
    storage.saved.clear()
    assert not store.remove("4.3.2.1")
    assert storage.saved == []


def test_remove_never_touches_expired(store):
    store.insert("1.2.3.4", metadata=BlockMetadata(days=1, dt_added=ADDED))
    ExpiryEngine(store.catalog).sweep(store, now=ADDED + timedelta(days=2))
    assert not store.remove("1.2.3.4")
    assert len(store.expired()) == 1


def test_remove_unknown_scope(store):
    with pytest.raises(UnknownPortGroup):
        store.remove("1.2.3.4", "nope")


def test_find_by_prefix_includes_expired(store):
    store.insert("10.0.0.5", metadata=BlockMetadata(days=1, dt_added=ADDED))
    store.insert("10.1.0.0/16")
    store.insert("110.0.0.1")
    ExpiryEngine(store.catalog).sweep(store, now=ADDED + timedelta(days=2))
    assert [r.address for r in store.find_by_prefix("10.")] == ["10.0.0.5", "10.1.0.0/16"]


def test_find_by_country(store):
    store.insert("1.2.3.4", metadata=BlockMetadata(country="CN"))
    store.insert("5.6.7.8", metadata=BlockMetadata(country="RU"))
    assert [r.address for r in store.find_by_country("RU")] == ["5.6.7.8"]


def test_load_replaces_records(catalog, storage):
    storage.saved.append([])
    store = BlockStore(catalog, storage=storage)
    assert store.load() == 0
