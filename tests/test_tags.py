"""
Tests for the Tag Applier.
"""

import pytest


class TestTagApplier:
    """Tests for tag association and usage counters."""

    def test_apply_to_revision(self, store, tags):
        added = tags.apply(["mobile edit", "visualeditor"], rev_id=100)

        assert added == 2
        assert store.tags_for_revision(100) == ["mobile edit", "visualeditor"]
        assert store.get_tag("mobile edit").count == 1

    def test_reapplying_is_idempotent(self, store, tags):
        """Tag counts only move for new associations."""
        tags.apply(["mobile edit"], rev_id=100)
        added = tags.apply(["mobile edit"], rev_id=100)

        assert added == 0
        assert store.get_tag("mobile edit").count == 1

    def test_counts_accumulate_across_revisions(self, store, tags):
        tags.apply(["mobile edit"], rev_id=100)
        tags.apply(["mobile edit"], rev_id=101)
        assert store.get_tag("mobile edit").count == 2

    def test_duplicate_names_in_one_call(self, store, tags):
        assert tags.apply(["a", "a", "", "b"], rev_id=1) == 2
        assert store.get_tag("a").count == 1

    def test_log_entries_are_separate_targets(self, store, tags):
        tags.apply(["a"], rev_id=5)
        assert tags.apply(["a"], log_id=5) == 1
        assert store.get_tag("a").count == 2

    def test_exactly_one_target_required(self, tags):
        with pytest.raises(ValueError):
            tags.apply(["a"])
        with pytest.raises(ValueError):
            tags.apply(["a"], rev_id=1, log_id=2)

    def test_no_tags(self, store, tags):
        assert tags.apply([], rev_id=1) == 0
        assert store.get_tag("a") is None
