"""Tests for the in-memory entity store and clock/identity ports."""

from datetime import timedelta
from uuid import uuid4

import pytest

from edubill.errors import ConcurrentModificationError, NotFoundError
from edubill.ports import (
    Clock,
    EntityStore,
    FixedClock,
    IdentityProvider,
    StaticIdentityProvider,
    SystemClock,
    TransactionalStore,
    Write,
)
from edubill.store import InMemoryEntityStore


class TestInMemoryEntityStore:
    """Tests for revisions and compare-and-swap."""

    def test_insert_then_read(self):
        store = InMemoryEntityStore()
        entity_id = uuid4()

        revision = store.insert("thing", entity_id, {"name": "a"})

        assert revision == 1
        assert store.read("thing", entity_id) == ({"name": "a"}, 1)

    def test_read_missing(self):
        with pytest.raises(NotFoundError):
            InMemoryEntityStore().read("thing", uuid4())

    def test_double_insert_conflicts(self):
        store = InMemoryEntityStore()
        entity_id = uuid4()
        store.insert("thing", entity_id, "a")

        with pytest.raises(ConcurrentModificationError):
            store.insert("thing", entity_id, "b")

    def test_compare_and_swap_bumps_revision(self):
        store = InMemoryEntityStore()
        entity_id = uuid4()
        store.insert("thing", entity_id, "a")

        assert store.compare_and_swap("thing", entity_id, 1, "b") == 2
        assert store.read("thing", entity_id) == ("b", 2)

    def test_stale_revision_conflicts(self):
        store = InMemoryEntityStore()
        entity_id = uuid4()
        store.insert("thing", entity_id, "a")
        store.compare_and_swap("thing", entity_id, 1, "b")

        with pytest.raises(ConcurrentModificationError) as exc_info:
            store.compare_and_swap("thing", entity_id, 1, "c")

        assert exc_info.value.details == {"expected": 1, "actual": 2}
        assert store.read("thing", entity_id) == ("b", 2)

    def test_commit_is_all_or_nothing(self):
        store = InMemoryEntityStore()
        first, second = uuid4(), uuid4()
        store.insert("thing", first, "a")
        store.insert("thing", second, "x")

        with pytest.raises(ConcurrentModificationError):
            store.commit(
                [
                    Write("thing", first, "b", expected_revision=1),
                    Write("thing", second, "y", expected_revision=7),
                ]
            )

        assert store.read("thing", first) == ("a", 1)
        assert store.read("thing", second) == ("x", 1)

    def test_commit_update_and_insert(self):
        store = InMemoryEntityStore()
        existing, new = uuid4(), uuid4()
        store.insert("thing", existing, "a")

        revisions = store.commit(
            [Write("thing", existing, "b", expected_revision=1), Write("thing", new, "n")]
        )

        assert revisions == [2, 1]

    def test_list_entities_by_type(self):
        store = InMemoryEntityStore()
        store.insert("thing", uuid4(), "a")
        store.insert("other", uuid4(), "b")

        assert store.list_entities("thing") == ["a"]

    def test_reserve_period_once(self):
        store = InMemoryEntityStore()
        template_id = uuid4()

        assert store.reserve_period(template_id, 0, uuid4())
        assert not store.reserve_period(template_id, 0, uuid4())
        assert store.reserve_period(template_id, 1, uuid4())
        assert store.reserved_periods(template_id) == {0, 1}
        assert store.reserved_periods(uuid4()) == set()

    def test_satisfies_store_protocols(self):
        store = InMemoryEntityStore()

        assert isinstance(store, EntityStore)
        assert isinstance(store, TransactionalStore)


class TestPorts:
    """Tests for the clock and identity adapters."""

    def test_fixed_clock_moves_only_when_told(self, now):
        clock = FixedClock(now)

        assert clock.now() == now
        assert clock.advance(days=2) == now + timedelta(days=2)
        clock.set(now)
        assert clock.now() == now

    def test_system_clock_is_utc(self):
        assert SystemClock().now().utcoffset() == timedelta(0)

    def test_adapters_satisfy_protocols(self, account_admin, now):
        assert isinstance(FixedClock(now), Clock)
        assert isinstance(SystemClock(), Clock)
        assert isinstance(StaticIdentityProvider(account_admin), IdentityProvider)

    def test_static_identity_provider(self, account_admin, platform_admin):
        provider = StaticIdentityProvider(account_admin)

        assert provider.current_caller() is account_admin
        provider.identity = platform_admin
        assert provider.current_caller() is platform_admin
