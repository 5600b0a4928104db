"""
Tests for the Identity Reconciler.
"""

import pytest

from wikigrab.sync.identity import (
    IMPORTED_PREFIX,
    IdentityReconciler,
    ReconciliationContext,
    is_ip,
    is_valid_username,
)


class TestNameRules:
    """Tests for IP and username validation helpers."""

    @pytest.mark.parametrize("name", ["127.0.0.1", "2001:db8::1", "10.0.0.0/8"])
    def test_ip_addresses(self, name):
        assert is_ip(name) is True
        assert is_valid_username(name) is False

    @pytest.mark.parametrize("name", ["Alice", "Some user", "Élodie"])
    def test_valid_usernames(self, name):
        assert is_valid_username(name) is True

    @pytest.mark.parametrize("name", ["", "a|b", "x>y", "Foo:Bar", " padded", "a" * 256])
    def test_invalid_usernames(self, name):
        assert is_valid_username(name) is False


class TestAnonymousAuthors:
    """Tests for authors without a remote user id."""

    def test_empty_name_is_unknown_actor(self, reconciler, store):
        actor = reconciler.resolve(0, "")
        assert actor.name == "Unknown user"
        assert actor == store.unknown_actor()

    def test_ip_keeps_literal_name(self, reconciler):
        actor = reconciler.resolve(0, "192.0.2.7")
        assert actor.name == "192.0.2.7"
        assert actor.user_id == 0

    def test_username_like_author_gets_imported_prefix(self, reconciler, store):
        store.acquire_actor(5, "Bob")
        actor = reconciler.resolve(0, "Bob")

        assert actor.name == IMPORTED_PREFIX + "Bob"
        assert actor.actor_id != store.get_actor_by_user_id(5).actor_id

    def test_same_anonymous_name_resolves_once(self, reconciler):
        first = reconciler.resolve(0, "192.0.2.7")
        second = reconciler.resolve(0, "192.0.2.7")
        assert first.actor_id == second.actor_id


class TestRegisteredAuthors:
    """Tests for authors with a remote user id."""

    def test_new_user_is_created(self, reconciler, store, remote):
        actor = reconciler.resolve(42, "Carol")

        assert actor.user_id == 42
        assert actor.name == "Carol"
        assert store.find_user_id_by_name("Carol") == 42
        assert remote.user_lookups == []

    def test_name_held_by_other_account_gets_suffix(self, reconciler, store):
        store.acquire_actor(7, "Dave")
        actor = reconciler.resolve(8, "Dave")

        assert actor.name == "Dave@imported"
        assert store.find_user_id_by_name("Dave") == 7

    def test_suffix_increments_until_free(self, reconciler, store):
        store.acquire_actor(7, "Dave")
        store.acquire_actor(9, "Dave@imported")
        actor = reconciler.resolve(8, "Dave")
        assert actor.name == "Dave@imported2"

    def test_suffixed_local_name_is_still_the_same_account(self, reconciler, store, remote):
        store.acquire_actor(7, "Dave")
        store.acquire_actor(8, "Dave@imported")

        actor = reconciler.resolve(8, "Dave")

        assert actor.name == "Dave@imported"
        assert remote.user_lookups == []

    def test_rename_happens_once_with_one_lookup(self, reconciler, store, remote):
        """A renamed account costs one lookup and one rename per run."""
        store.acquire_actor(42, "OldName")
        remote.users[42] = "NewName"

        actors = [reconciler.resolve(42, "NewName") for _ in range(5)]

        assert {a.name for a in actors} == {"NewName"}
        assert {a.actor_id for a in actors} == {actors[0].actor_id}
        assert remote.user_lookups == [42]
        assert reconciler.context.renames == 1
        assert store.get_actor_by_user_id(42).name == "NewName"
        assert store.get_actor_by_name("OldName") is None

    def test_old_name_in_history_does_not_rename_back(self, reconciler, store, remote):
        """Older revisions still carry the old name; the remote's current name wins."""
        store.acquire_actor(42, "OldName")
        remote.users[42] = "NewName"

        reconciler.resolve(42, "NewName")
        actor = reconciler.resolve(42, "OldName")

        assert actor.name == "NewName"
        assert reconciler.context.renames == 1

    def test_rename_target_taken_gets_suffix(self, reconciler, store, remote):
        store.acquire_actor(42, "OldName")
        store.acquire_actor(50, "NewName")
        remote.users[42] = "NewName"

        actor = reconciler.resolve(42, "NewName")

        assert actor.name == "NewName@imported"
        assert store.get_actor_by_user_id(50).name == "NewName"

    def test_migrated_user_keeps_local_name(self, reconciler, store, remote):
        store.create_user("LocalOwner", user_id=42, password="hash")

        actor = reconciler.resolve(42, "RemoteName")

        assert actor.name == "LocalOwner"
        assert actor.actor_id != 0
        assert remote.user_lookups == []
        assert reconciler.context.renames == 0

    def test_missing_remote_user_keeps_local_name(self, reconciler, store, remote):
        store.acquire_actor(42, "OldName")

        actor = reconciler.resolve(42, "Whatever")

        assert actor.name == "OldName"
        assert remote.user_lookups == [42]
        assert reconciler.context.renames == 0

    def test_contexts_are_per_run(self, store, remote):
        store.acquire_actor(42, "OldName")
        remote.users[42] = "NewName"

        IdentityReconciler(store, remote, context=ReconciliationContext()).resolve(42, "NewName")
        second = IdentityReconciler(store, remote, context=ReconciliationContext())
        second.resolve(42, "NewName")

        # Second run sees the already renamed row and needs no lookup
        assert remote.user_lookups == [42]
        assert second.context.renames == 0
