"""
Shared fixtures for grabber tests.

Provides a temporary SQLite store, a scripted remote source and builders
for API-shaped revision payloads, so processors can run end to end
without a network.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from wikigrab.models.records import LocalRevision, PageRecord, RemoteRevision, content_sha1
from wikigrab.remote.base import RemoteSource
from wikigrab.store.sqlite import SQLiteStore
from wikigrab.sync.conflicts import ConflictResolver
from wikigrab.sync.identity import IdentityReconciler
from wikigrab.sync.tags import TagApplier


def api_revision(
    rev_id: int,
    timestamp: str,
    content: str = "text",
    parent_id: int = 0,
    user: str = "Alice",
    user_id: int = 1,
    tags: Optional[List[str]] = None,
    comment: str = "",
    **extra: Any,
) -> Dict[str, Any]:
    """A revision entry as ``allrevisions`` returns it (formatversion=2)."""
    rev: Dict[str, Any] = {
        "revid": rev_id,
        "parentid": parent_id,
        "timestamp": timestamp,
        "user": user,
        "userid": user_id,
        "comment": comment,
        "tags": list(tags or []),
        "slots": {
            "main": {
                "content": content,
                "contentmodel": "wikitext",
                "sha1": content_sha1(content),
                "size": len(content.encode("utf-8")),
            }
        },
    }
    rev.update(extra)
    return rev


def page_chunk(page_id: int, title: str, revisions: List[Dict[str, Any]], ns: int = 0) -> Dict[str, Any]:
    return {"pageid": page_id, "ns": ns, "title": title, "revisions": revisions}


def query_payload(module: str, items: List[Any], cont: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"query": {module: items}}
    if cont:
        payload["continue"] = cont
    return payload


class FakeRemote(RemoteSource):
    """Remote that replays scripted responses and counts lookups."""

    def __init__(self) -> None:
        self.responses: List[Dict[str, Any]] = []
        self.requests: List[Dict[str, Any]] = []
        self.revisions: Dict[int, RemoteRevision] = {}
        self.users: Dict[int, Optional[str]] = {}
        self.user_lookups: List[int] = []
        self.revision_fetches: List[int] = []
        self.closed = False

    def add_revision(self, rev: Dict[str, Any], chunk: Dict[str, Any]) -> None:
        self.revisions[rev["revid"]] = RemoteRevision.from_api(rev, chunk)

    def query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(dict(params))
        if not self.responses:
            raise AssertionError(f"Unexpected query: {params}")
        return self.responses.pop(0)

    def fetch_revision(self, rev_id: int) -> Optional[RemoteRevision]:
        self.revision_fetches.append(rev_id)
        return self.revisions.get(rev_id)

    def fetch_user_name(self, user_id: int) -> Optional[str]:
        self.user_lookups.append(user_id)
        return self.users.get(user_id)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def store(tmp_path: Path):
    """Empty SQLite mirror in a temp directory."""
    store = SQLiteStore(tmp_path / "mirror.sqlite")
    yield store
    store.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def reconciler(store, remote) -> IdentityReconciler:
    return IdentityReconciler(store, remote)


@pytest.fixture
def conflicts(store) -> ConflictResolver:
    return ConflictResolver(store)


@pytest.fixture
def tags(store) -> TagApplier:
    return TagApplier(store)


@pytest.fixture
def seed_revision(store, reconciler):
    """Insert a page (if needed) and one local revision directly."""

    def seed(
        rev_id: int,
        page_id: int = 10,
        title: str = "Main_Page",
        content: str = "text",
        timestamp: str = "2020-01-01T00:00:00Z",
        parent_id: int = 0,
        sha1: Optional[str] = None,
        comment: str = "local comment",
        visibility: int = 0,
        namespace: int = 0,
    ) -> LocalRevision:
        actor = reconciler.resolve(1, "Alice")
        revision = LocalRevision(
            rev_id=rev_id,
            page_id=page_id,
            parent_id=parent_id,
            timestamp=timestamp,
            actor_id=actor.actor_id,
            comment=comment,
            content=content,
            sha1=sha1 or content_sha1(content),
            length=LocalRevision.length_of(content),
            visibility=visibility,
        )
        with store.transaction():
            if store.get_page(page_id) is None:
                store.insert_page(PageRecord(page_id=page_id, namespace=namespace, title=title))
            store.insert_revision(revision)
            page = store.get_page(page_id)
            if page.latest < rev_id:
                store.update_page(page.model_copy(update={"latest": rev_id, "length": revision.length}))
        return revision

    return seed
