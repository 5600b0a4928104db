"""
Revision Processors — Live revisions, deleted revisions and revision tags.

Each processor handles one *page chunk* as returned by ``allrevisions`` /
``alldeletedrevisions``: a page header (``pageid``, ``ns``, ``title``)
with a list of ``revisions``. The ``CursorManager`` feeds the chunks in
the order the remote yields them.

## Units of Work

- Live revisions: one page chunk (its new revisions, their tags and the
  page row) commits as one transaction.
- Deleted revisions: one archived revision per transaction.
- Tags: one revision's tags per transaction.

## Usage

    importer = RevisionImporter(store, reconciler, conflicts, tags)
    manager.run(
        importer.params(namespaces=[0, 10], start="2020-01-01T00:00:00Z"),
        extract=importer.extract,
        process=importer.process_page,
    )
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import AuthorizationError
from ..models.cursor import SyncCursor
from ..models.outcome import ItemOutcome
from ..models.records import (
    ActorIdentity,
    ArchivedRevision,
    LocalRevision,
    PageRecord,
    RemoteRevision,
    default_content_model,
    sanitise_title,
)
from ..persistence.audit import FindingsLedger
from ..store.base import LocalStore
from .conflicts import ConflictResolver
from .identity import IdentityReconciler
from .pagination import CursorManager, PaginationResult
from .tags import TagApplier

logger = logging.getLogger(__name__)

REVISION_PROPS = "ids|flags|timestamp|user|userid|comment|content|tags|contentmodel|size|sha1"
DELETED_REVISION_PROPS = "ids|user|userid|comment|flags|content|tags|timestamp|contentmodel|sha1"


def chunks_of(module: str):
    """Extractor returning ``payload["query"][module]``, or None if absent."""

    def extract(payload: Mapping[str, Any]) -> Optional[List[Any]]:
        result = payload.get("query")
        if not isinstance(result, Mapping) or module not in result:
            return None
        return list(result[module] or [])

    return extract


def _is_redirect(content: Optional[str]) -> bool:
    return bool(content) and content.lstrip()[:9].lower() == "#redirect"


class RevisionImporter:
    """Mirrors live revisions and keeps page rows current."""

    job = "revisions"
    extract = staticmethod(chunks_of("allrevisions"))

    def __init__(
        self,
        store: LocalStore,
        reconciler: IdentityReconciler,
        conflicts: ConflictResolver,
        tags: TagApplier,
        ledger: Optional[FindingsLedger] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.conflicts = conflicts
        self.tags = tags
        self.ledger = ledger
        self.inserted = 0
        self.skipped = 0
        self.pages_inserted = 0
        self.pages_updated = 0

    @staticmethod
    def params(
        namespaces: Optional[List[int]] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "list": "allrevisions",
            "arvlimit": "max",
            "arvdir": "newer",
            "arvprop": REVISION_PROPS,
            "arvslots": "main",
        }
        if namespaces:
            params["arvnamespace"] = namespaces
        if start:
            params["arvstart"] = start
        if end:
            params["arvend"] = end
        return params

    def process_page(self, chunk: Mapping[str, Any]) -> ItemOutcome:
        page_id = int(chunk.get("pageid") or 0)
        namespace = int(chunk.get("ns") or 0)
        title = sanitise_title(namespace, chunk.get("title") or "")
        key = f"page:{page_id}"
        revisions = chunk.get("revisions") or []

        if not page_id or not title:
            return ItemOutcome.failed(key, "bad_page_chunk", "page chunk without id or title")
        if not revisions:
            return ItemOutcome.skipped(key, "no revisions")

        # Actors resolve outside the page transaction; a rollback must not
        # strand identities in the per-run cache.
        pending: List[Tuple[RemoteRevision, ActorIdentity]] = []
        for rev in revisions:
            remote = RemoteRevision.from_api(rev, chunk)
            if self.store.get_revision(remote.rev_id) is not None:
                self.skipped += 1
                continue
            pending.append((remote, self.reconciler.resolve(remote.user_id, remote.user_name)))

        with self.store.transaction():
            for remote, actor in pending:
                self._insert(remote, actor, page_id)
            self._insert_or_update_page(page_id, namespace, title, chunk, revisions[-1])

        self.inserted += len(pending)
        logger.debug(f"Title: {title} in namespace {namespace}, {len(pending)} new revisions")
        return ItemOutcome.ok(key, {"inserted": len(pending)})

    def _insert(self, remote: RemoteRevision, actor: ActorIdentity, page_id: int) -> None:
        content = remote.content or ""
        self.store.insert_revision(
            LocalRevision(
                rev_id=remote.rev_id,
                page_id=page_id,
                parent_id=remote.parent_id,
                timestamp=remote.timestamp,
                actor_id=actor.actor_id,
                comment=remote.comment,
                content=content,
                content_model=remote.content_model,
                sha1=remote.checksum,
                length=LocalRevision.length_of(content),
                minor=remote.minor,
                visibility=remote.visibility,
            )
        )
        self.tags.apply(remote.tags, rev_id=remote.rev_id)

    def _insert_or_update_page(
        self,
        page_id: int,
        namespace: int,
        title: str,
        chunk: Mapping[str, Any],
        last: Mapping[str, Any],
    ) -> None:
        latest = RemoteRevision.from_api(last, chunk)
        existing = self.store.get_page(page_id)

        if existing is None or (existing.namespace, existing.title) != (namespace, title):
            finding = self.conflicts.reserve_slot(namespace, title, page_id)
            if finding is not None and self.ledger is not None:
                self.ledger.record_conflict(finding)

        record = PageRecord(
            page_id=page_id,
            namespace=namespace,
            title=title,
            latest=latest.rev_id,
            length=latest.size if latest.size is not None else LocalRevision.length_of(latest.content or ""),
            content_model=latest.content_model or chunk.get("contentmodel"),
            is_redirect=_is_redirect(latest.content),
        )

        if existing is None:
            logger.debug(f"Inserting page entry {page_id}", extra={"page_id": page_id})
            self.store.insert_page(record)
            self.pages_inserted += 1
        elif existing.latest < record.latest:
            logger.debug(f"Updating page entry {page_id}", extra={"page_id": page_id})
            self.store.update_page(record)
            self.pages_updated += 1
        elif (existing.namespace, existing.title) != (namespace, title):
            self.store.move_page(page_id, namespace, title)


class DeletedRevisionImporter:
    """Mirrors deleted revisions into the archive, one namespace at a time."""

    job = "deleted-revisions"

    def __init__(
        self,
        store: LocalStore,
        reconciler: IdentityReconciler,
        tags: TagApplier,
        end: Optional[str] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.tags = tags
        self.end = end
        self.inserted = 0
        self.skipped = 0

    @staticmethod
    def params(namespace: int) -> Dict[str, Any]:
        return {
            "list": "alldeletedrevisions",
            "adrnamespace": namespace,
            "adrlimit": "max",
            "adrdir": "newer",
            "adrprop": DELETED_REVISION_PROPS,
            "adrslots": "main",
        }

    @staticmethod
    def extract(payload: Mapping[str, Any]) -> Optional[List[Any]]:
        if payload.get("error"):
            raise AuthorizationError("Missing rights to fetch deleted revisions")
        return chunks_of("alldeletedrevisions")(payload)

    @staticmethod
    def start_namespace(adrcontinue: Optional[str]) -> int:
        """Namespace encoded at the front of an ``adrcontinue`` value."""
        if not adrcontinue or "|" not in adrcontinue:
            return 0
        head = adrcontinue.split("|", 1)[0]
        return int(head) if head.lstrip("-").isdigit() else 0

    def run(
        self,
        manager: CursorManager,
        namespaces: List[int],
        adrcontinue: Optional[str] = None,
    ) -> PaginationResult:
        """
        Walk every namespace in ascending order.

        With ``adrcontinue``, namespaces before the one it encodes are
        skipped and the continuation only applies to its own namespace.
        """
        totals = PaginationResult()
        ns_start = self.start_namespace(adrcontinue)

        for namespace in sorted(namespaces):
            if adrcontinue and namespace < ns_start:
                logger.info(f"Skipping namespace {namespace}")
                continue

            resume: Dict[str, Any] = {}
            if adrcontinue and namespace == ns_start:
                resume = {"adrcontinue": adrcontinue}

            before = self.inserted
            result = manager.run(
                self.params(namespace),
                extract=self.extract,
                process=self.process_chunk,
                cursor=SyncCursor(job=manager.job, params=resume, namespaces=[namespace], end=self.end),
            )
            logger.info(f"{self.inserted - before} deleted revisions saved in namespace {namespace}")

            totals.items_processed += result.items_processed
            totals.pages += result.pages
            totals.stalled_pages += result.stalled_pages
            totals.failures += result.failures
            totals.last_continuation = result.last_continuation or totals.last_continuation
            totals.last_timestamp = result.last_timestamp or totals.last_timestamp
        return totals

    def process_chunk(self, chunk: Mapping[str, Any]) -> ItemOutcome:
        namespace = int(chunk.get("ns") or 0)
        title = sanitise_title(namespace, chunk.get("title") or "")
        key = f"deleted:{namespace}:{title}"
        model = default_content_model(namespace, title)
        page = self.store.get_page_by_title(namespace, title)

        inserted = 0
        for rev in chunk.get("revisions") or []:
            if self.end and rev.get("timestamp", "") > self.end:
                self.skipped += 1
                continue
            if not rev.get("revid"):
                logger.warning(
                    f"Got revision without revision id, with timestamp {rev.get('timestamp')}. Skipping!"
                )
                self.skipped += 1
                continue

            remote = RemoteRevision.from_api(rev, chunk)
            if self.store.get_archived_revision(remote.rev_id) is not None:
                self.skipped += 1
                continue

            actor = self.reconciler.resolve(remote.user_id, remote.user_name)
            content = remote.content or ""
            with self.store.transaction():
                self.store.insert_archived_revision(
                    ArchivedRevision(
                        rev_id=remote.rev_id,
                        page_id=page.page_id if page is not None else 0,
                        parent_id=remote.parent_id,
                        namespace=namespace,
                        title=title,
                        timestamp=remote.timestamp,
                        actor_id=actor.actor_id,
                        comment=remote.comment,
                        content=content,
                        content_model=remote.content_model or model,
                        sha1=remote.checksum,
                        length=LocalRevision.length_of(content),
                        minor=remote.minor,
                        visibility=remote.visibility,
                    )
                )
                self.tags.apply(remote.tags, rev_id=remote.rev_id)
            inserted += 1

        self.inserted += inserted
        return ItemOutcome.ok(key, {"inserted": inserted})


class RevisionTagImporter:
    """Applies remote change tags to already mirrored revisions."""

    job = "tags"
    extract = staticmethod(chunks_of("allrevisions"))

    def __init__(self, store: LocalStore, tags: TagApplier, end: Optional[str] = None):
        self.store = store
        self.tags = tags
        self.end = end
        self.tagged = 0
        self.skipped = 0

    def params(self, start: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "list": "allrevisions",
            "arvlimit": "max",
            "arvdir": "newer",
            "arvprop": "ids|tags|timestamp",
        }
        if start:
            params["arvstart"] = start
        if self.end:
            params["arvend"] = self.end
        return params

    def process_page(self, chunk: Mapping[str, Any]) -> ItemOutcome:
        key = f"page:{chunk.get('pageid', '?')}"
        added = 0
        for rev in chunk.get("revisions") or []:
            rev_id = int(rev.get("revid") or 0)
            if self.end and rev.get("timestamp", "") > self.end:
                self.skipped += 1
                continue
            if not rev_id:
                logger.warning(
                    f"Got revision without revision id, with timestamp {rev.get('timestamp')}. Skipping!"
                )
                self.skipped += 1
                continue
            if not rev.get("tags"):
                continue
            if self.store.get_revision(rev_id) is None:
                logger.debug(f"Revision {rev_id} not mirrored, tags skipped", extra={"rev_id": rev_id})
                self.skipped += 1
                continue
            added += self.tags.apply(rev["tags"], rev_id=rev_id)
            self.tagged += 1
        return ItemOutcome.ok(key, {"associations_added": added})

