"""
Tests for the Conflict Resolver.
"""

from wikigrab.models.records import PageRecord
from wikigrab.sync.conflicts import ConflictResolver


def add_page(store, page_id, title, namespace=0):
    store.insert_page(PageRecord(page_id=page_id, namespace=namespace, title=title))


class TestReserveSlot:
    """Tests for freeing a title for an incoming page."""

    def test_free_slot_is_untouched(self, store, conflicts):
        assert conflicts.reserve_slot(0, "Foo", 2) is None
        assert conflicts.resolved == 0

    def test_slot_held_by_incoming_page_itself(self, store, conflicts):
        add_page(store, 2, "Foo")
        assert conflicts.reserve_slot(0, "Foo", 2) is None

    def test_occupant_is_moved_to_placeholder(self, store, conflicts):
        add_page(store, 1, "Foo")

        finding = conflicts.reserve_slot(0, "Foo", 2)

        assert finding is not None
        assert finding.occupant_page_id == 1
        assert finding.incoming_page_id == 2
        assert finding.relocated_to == "Foo/moved-1"
        assert store.get_page_by_title(0, "Foo") is None
        assert store.get_page(1).title == "Foo/moved-1"
        assert conflicts.resolved == 1

    def test_incoming_page_can_be_inserted_afterwards(self, store, conflicts):
        add_page(store, 1, "Foo")
        conflicts.reserve_slot(0, "Foo", 2)
        add_page(store, 2, "Foo")

        assert store.get_page_by_title(0, "Foo").page_id == 2
        assert store.get_page_by_title(0, "Foo/moved-1").page_id == 1

    def test_placeholder_collision_gets_numbered(self, store, conflicts):
        add_page(store, 1, "Foo")
        add_page(store, 3, "Foo/moved-1")

        finding = conflicts.reserve_slot(0, "Foo", 2)

        assert finding.relocated_to == "Foo/moved-1-2"

    def test_namespaces_are_separate_slots(self, store):
        add_page(store, 1, "Foo", namespace=10)
        resolver = ConflictResolver(store)

        assert resolver.reserve_slot(0, "Foo", 2) is None
        assert store.get_page(1).title == "Foo"
