"""
Tests for the Pagination Cursor Manager.
"""

import pytest

from conftest import query_payload
from wikigrab.errors import MalformedResponseError, TransientIOError
from wikigrab.models.cursor import SyncCursor
from wikigrab.models.outcome import ItemOutcome
from wikigrab.sync.pagination import CursorManager, continuation_of


def extract_items(payload):
    return (payload.get("query") or {}).get("items")


class TestContinuationOf:
    """Tests for continuation map extraction."""

    def test_modern_continue_map(self):
        payload = {"continue": {"arvcontinue": "20200101|5", "continue": "-||"}}
        assert continuation_of(payload) == {"arvcontinue": "20200101|5", "continue": "-||"}

    def test_legacy_query_continue_is_flattened(self):
        payload = {
            "query-continue": {
                "allrevisions": {"arvcontinue": "abc"},
                "imageinfo": {"iistart": "2020"},
            }
        }
        assert continuation_of(payload) == {"arvcontinue": "abc", "iistart": "2020"}

    def test_modern_map_wins_over_legacy(self):
        payload = {"continue": {"gapcontinue": "B"}, "query-continue": {"allpages": {"gapcontinue": "A"}}}
        assert continuation_of(payload) == {"gapcontinue": "B"}

    def test_no_continuation(self):
        assert continuation_of({"query": {}}) is None
        assert continuation_of({"query-continue": {}}) is None


class TestCursorManager:
    """Tests for the generic query loop."""

    def test_every_third_page_empty_still_reaches_the_end(self, remote):
        """Empty pages with a token keep the loop going; the tokenless page ends it."""
        seen = []
        for n in range(1, 10):
            items = [] if n % 3 == 0 else [{"id": n, "timestamp": f"2020-01-0{n}T00:00:00Z"}]
            cont = {"c": str(n)} if n < 9 else None
            remote.responses.append(query_payload("items", items, cont))

        manager = CursorManager(remote, job="test")
        result = manager.run({"list": "x"}, extract=extract_items, process=lambda i: seen.append(i["id"]))

        assert seen == [1, 2, 4, 5, 7, 8]
        assert result.pages == 9
        assert result.stalled_pages == 2  # page 9 carries no token, so it ends the loop
        assert result.items_processed == 6
        assert remote.responses == []

    def test_continuation_is_merged_into_next_request(self, remote):
        remote.responses = [
            query_payload("items", [{"id": 1}], {"arvcontinue": "A", "continue": "-||"}),
            query_payload("items", [{"id": 2}]),
        ]
        CursorManager(remote, job="test").run({"list": "x", "arvlimit": "max"}, extract_items, lambda i: None)

        assert remote.requests[0] == {"list": "x", "arvlimit": "max"}
        assert remote.requests[1] == {"list": "x", "arvlimit": "max", "arvcontinue": "A", "continue": "-||"}

    def test_stall_report_cadence(self, remote):
        """on_stall fires every Nth consecutive empty page."""
        for n in range(7):
            remote.responses.append(query_payload("items", [], {"c": str(n)}))
        remote.responses.append(query_payload("items", [{"id": 1}]))

        stalls = []
        manager = CursorManager(remote, job="test", stall_report_every=3, on_stall=stalls.append)
        result = manager.run({}, extract_items, lambda i: None)

        assert result.stalled_pages == 7
        assert len(stalls) == 2
        assert stalls[0].params == {"c": "2"}
        assert stalls[1].params == {"c": "5"}

    def test_checkpoint_after_every_page(self, remote):
        remote.responses = [
            query_payload("items", [{"id": 1, "timestamp": "2020-01-01T00:00:00Z"}], {"c": "1"}),
            query_payload("items", [{"id": 2, "timestamp": "2020-01-02T00:00:00Z"}]),
        ]
        saved = []
        CursorManager(remote, job="test", checkpoint=saved.append).run({}, extract_items, lambda i: None)

        assert len(saved) == 2
        assert saved[0].params == {"c": "1"}
        assert saved[0].items_processed == 1
        assert saved[0].last_timestamp == "2020-01-01T00:00:00Z"
        assert saved[1].exhausted
        assert saved[1].items_processed == 2

    def test_resume_from_saved_cursor(self, remote):
        remote.responses = [query_payload("items", [{"id": 3}])]
        cursor = SyncCursor(job="test", params={"c": "2"}, items_processed=40)
        saved = []

        result = CursorManager(remote, job="test", checkpoint=saved.append).run(
            {"list": "x"}, extract_items, lambda i: None, cursor=cursor
        )

        assert remote.requests == [{"list": "x", "c": "2"}]
        assert result.items_processed == 1
        assert saved[-1].items_processed == 41

    def test_first_page_without_structure_is_fatal(self, remote):
        remote.responses = [{"batchcomplete": True}]
        with pytest.raises(MalformedResponseError):
            CursorManager(remote, job="test").run({}, extract_items, lambda i: None)

    def test_later_page_without_structure_counts_as_stalled(self, remote):
        remote.responses = [
            query_payload("items", [{"id": 1}], {"c": "1"}),
            {"continue": {"c": "2"}},
            query_payload("items", [{"id": 3}]),
        ]
        result = CursorManager(remote, job="test").run({}, extract_items, lambda i: None)

        assert result.items_processed == 2
        assert result.stalled_pages == 1

    def test_later_page_without_structure_or_token_retries_same_position(self, remote):
        """A broken page without a token neither ends the stream nor finishes the cursor."""
        remote.responses = [
            query_payload("items", [{"id": 1}], {"c": "1"}),
            {"batchcomplete": True},
            query_payload("items", [{"id": 2}], {"c": "2"}),
            query_payload("items", [{"id": 3}]),
        ]
        seen, saved = [], []

        result = CursorManager(remote, job="test", checkpoint=saved.append).run(
            {}, extract_items, lambda i: seen.append(i["id"])
        )

        assert seen == [1, 2, 3]
        assert result.stalled_pages == 1
        assert remote.requests[1] == {"c": "1"}
        assert remote.requests[2] == {"c": "1"}
        assert saved[1].params == {"c": "1"}
        assert not saved[1].exhausted
        assert remote.responses == []

    def test_unreadable_later_page_counts_as_stalled(self, remote):
        pages = [
            query_payload("items", [{"id": 1}], {"c": "1"}),
            MalformedResponseError("Response body is not JSON"),
            query_payload("items", [{"id": 2}]),
        ]

        def query(params):
            remote.requests.append(dict(params))
            page = pages.pop(0)
            if isinstance(page, Exception):
                raise page
            return page

        remote.query = query
        seen = []
        result = CursorManager(remote, job="test").run({}, extract_items, lambda i: seen.append(i["id"]))

        assert seen == [1, 2]
        assert result.stalled_pages == 1
        assert remote.requests[2] == {"c": "1"}

    def test_unreadable_first_page_is_fatal(self, remote):
        def query(params):
            raise MalformedResponseError("Response body is not JSON")

        remote.query = query
        with pytest.raises(MalformedResponseError):
            CursorManager(remote, job="test").run({}, extract_items, lambda i: None)

    def test_repeated_malformed_pages_abort(self, remote):
        remote.responses = [query_payload("items", [{"id": 1}], {"c": "1"})] + [{"batchcomplete": True}] * 3
        saved = []
        manager = CursorManager(remote, job="test", checkpoint=saved.append, max_malformed=3)

        with pytest.raises(MalformedResponseError):
            manager.run({}, extract_items, lambda i: None)

        assert saved[-1].params == {"c": "1"}

    def test_item_failures_do_not_halt(self, remote):
        remote.responses = [query_payload("items", [{"id": 1}, {"id": 2}, {"id": 3}])]

        def process(item):
            if item["id"] == 1:
                raise ValueError("broken row")
            if item["id"] == 2:
                return ItemOutcome.failed("rev:2", "bad", "nope")
            return ItemOutcome.ok("rev:3")

        result = CursorManager(remote, job="test").run({}, extract_items, process)

        assert result.items_processed == 3
        assert result.failures == 2

    def test_failures_reach_on_failure_with_item_key(self, remote):
        remote.responses = [query_payload("items", [{"revid": 7, "timestamp": "2020-01-01T00:00:00Z"}, {"revid": 8}])]
        failed = []

        def process(item):
            if item["revid"] == 7:
                raise KeyError("slots")
            return ItemOutcome.failed("rev:8", "bad", "nope")

        CursorManager(remote, job="test", on_failure=failed.append).run({}, extract_items, process)

        assert [o.key for o in failed] == ["rev:7", "rev:8"]
        assert failed[0].error.code == "exception"
        assert failed[0].details == {"timestamp": "2020-01-01T00:00:00Z"}

    def test_grabber_errors_propagate(self, remote):
        remote.responses = [query_payload("items", [{"id": 1}])]

        def process(item):
            raise TransientIOError("database is locked")

        with pytest.raises(TransientIOError):
            CursorManager(remote, job="test").run({}, extract_items, process)

    def test_page_chunk_timestamp_comes_from_last_revision(self, remote):
        chunk = {"pageid": 1, "revisions": [{"timestamp": "2020-01-01T00:00:00Z"}, {"timestamp": "2020-02-01T00:00:00Z"}]}
        remote.responses = [query_payload("items", [chunk])]
        result = CursorManager(remote, job="test").run({}, extract_items, lambda i: None)

        assert result.last_timestamp == "2020-02-01T00:00:00Z"
