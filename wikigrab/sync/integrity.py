"""
Integrity Verifier — Compare local revisions against remote digests and self-heal.

Walks ``(rev_id, parent_id, timestamp, sha1)`` digests of every remote
revision and checks the local mirror for each one.

## Per-digest Decision

1. **Missing locally**: anchor on the local parent revision. With no
   parent (``parent_id == 0``) the revision starts a new history and its
   page must exist or be creatable from the remote record. A required
   parent that is itself missing makes the gap unfixable. Otherwise the
   full revision is fetched and inserted.
2. **Checksum mismatch**: always reported. Content is rewritten only when
   the local copy is empty (length 0), a known import defect. Timestamp,
   visibility, comment and minor flag stay as they are locally.
3. **Match, or no remote checksum**: nothing to do.

Dry-run mode performs the same detection and reporting with no writes.
Revisions a dry run *would* have inserted still count as present parents
for later digests, so both modes report the same findings.

## Usage

    verifier = IntegrityVerifier(store, remote, reconciler, dry_run=True)
    report = verifier.run(manager)
    print(report.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from ..errors import GrabberError
from ..models.cursor import SyncCursor
from ..models.outcome import ConflictFinding, IntegrityFinding, ItemOutcome
from ..models.records import (
    LocalRevision,
    PageRecord,
    RemoteRevision,
    RevisionDigest,
    content_sha1,
    sanitise_title,
)
from ..persistence.audit import FindingsLedger
from ..remote.base import RemoteSource
from ..store.base import LocalStore
from .conflicts import ConflictResolver
from .identity import IdentityReconciler
from .pagination import CursorManager

logger = logging.getLogger(__name__)

DIGEST_PARAMS: Dict[str, Any] = {
    "list": "allrevisions",
    "arvprop": "ids|timestamp|sha1",
    "arvlimit": "max",
    "arvdir": "newer",
}


@dataclass
class IntegrityReport:
    """Exact counts for one verification pass."""

    checked: int = 0
    missing: int = 0
    mismatched: int = 0
    repaired: int = 0
    unfixable: int = 0
    failed: int = 0
    dry_run: bool = False
    findings: List[IntegrityFinding] = field(default_factory=list)

    def summary(self) -> str:
        line = (
            f"{self.checked} revisions checked, {self.missing} missing, "
            f"{self.mismatched} hash mismatches, {self.repaired} repaired, "
            f"{self.unfixable} unfixable, {self.failed} failed"
        )
        return line + (" (dry run)" if self.dry_run else "")


class IntegrityVerifier:
    """Detects missing and corrupted mirrored revisions."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteSource,
        reconciler: IdentityReconciler,
        conflicts: Optional[ConflictResolver] = None,
        ledger: Optional[FindingsLedger] = None,
        dry_run: bool = False,
    ):
        self.store = store
        self.remote = remote
        self.reconciler = reconciler
        self.conflicts = conflicts or ConflictResolver(store)
        self.ledger = ledger
        self.dry_run = dry_run
        self.report = IntegrityReport(dry_run=dry_run)
        self._would_insert: Set[int] = set()

    # ─── Entry points ───────────────────────────────────────

    @staticmethod
    def extract(payload: Mapping[str, Any]) -> Optional[List[Any]]:
        result = payload.get("query")
        if not isinstance(result, Mapping) or "allrevisions" not in result:
            return None
        return list(result["allrevisions"] or [])

    def run(
        self,
        manager: CursorManager,
        params: Optional[Dict[str, Any]] = None,
        cursor: Optional[SyncCursor] = None,
    ) -> IntegrityReport:
        """Page through every remote revision digest."""
        manager.run(
            {**DIGEST_PARAMS, **(params or {})},
            extract=self.extract,
            process=self.process_page,
            cursor=cursor,
        )
        logger.info(self.report.summary())
        return self.report

    def verify(self, digests: Iterable[RevisionDigest]) -> IntegrityReport:
        """Check an already materialised digest stream."""
        for digest in digests:
            self._check_safely(digest)
        logger.info(self.report.summary())
        return self.report

    def process_page(self, page: Mapping[str, Any]) -> ItemOutcome:
        """``CursorManager`` processor: one page chunk of digests."""
        failed_before = self.report.failed
        for rev in page.get("revisions") or []:
            self._check_safely(RevisionDigest.from_api(rev))
        key = f"page:{page.get('pageid', '?')}"
        if self.report.failed > failed_before:
            return ItemOutcome.failed(
                key,
                "integrity_check_failed",
                f"{self.report.failed - failed_before} revisions could not be checked",
            )
        return ItemOutcome.ok(key)

    # ─── Decision ───────────────────────────────────────────

    def _check_safely(self, digest: RevisionDigest) -> None:
        try:
            self.check(digest)
        except GrabberError:
            raise
        except Exception as e:
            logger.error(f"Problem checking revision {digest.rev_id}: {e}", exc_info=True)
            self._record("failed", digest, message=str(e))

    def check(self, digest: RevisionDigest) -> Optional[IntegrityFinding]:
        self.report.checked += 1
        local = self.store.get_revision(digest.rev_id)
        if local is None and digest.rev_id not in self._would_insert:
            return self._handle_missing(digest)
        if local is None:
            return None

        local_sha1 = local.sha1 or content_sha1(local.content)
        if digest.sha1 is None or local_sha1 == digest.sha1:
            return None
        return self._handle_mismatch(digest, local, local_sha1)

    def _handle_missing(self, digest: RevisionDigest) -> IntegrityFinding:
        page_id = 0
        if digest.parent_id:
            parent = self.store.get_revision(digest.parent_id)
            if parent is None and digest.parent_id not in self._would_insert:
                logger.warning(
                    f"Bad revision (missing): {digest.rev_id}, parent {digest.parent_id} "
                    f"is missing too; cannot anchor history",
                    extra={"rev_id": digest.rev_id},
                )
                return self._record("unfixable", digest, message="parent revision missing")
            page_id = parent.page_id if parent is not None else 0

        logger.info(f"Bad revision (missing): {digest.rev_id}", extra={"rev_id": digest.rev_id})

        if self.dry_run:
            self.report.missing += 1
            self._would_insert.add(digest.rev_id)
            return self._record("missing", digest)

        remote = self.remote.fetch_revision(digest.rev_id)
        if remote is None:
            self.report.missing += 1
            return self._record("failed", digest, message="remote revision unavailable")

        page_id = page_id or remote.page_id
        new_title = None
        if page_id and self.store.get_page(page_id) is None:
            new_title = sanitise_title(remote.namespace, remote.title)
            if not new_title:
                page_id = 0
        if not page_id:
            logger.warning(
                f"Bad revision (missing): {digest.rev_id} has no usable page",
                extra={"rev_id": digest.rev_id},
            )
            return self._record("unfixable", digest, message="page cannot be created")

        self.report.missing += 1
        actor = self.reconciler.resolve(remote.user_id, remote.user_name)
        content = remote.content or ""
        conflict: Optional[ConflictFinding] = None
        # Page row and revision commit together
        with self.store.transaction():
            if new_title is not None:
                conflict = self._create_page(remote, page_id, new_title)
            self.store.insert_revision(
                LocalRevision(
                    rev_id=remote.rev_id,
                    page_id=page_id,
                    parent_id=digest.parent_id,
                    timestamp=remote.timestamp,
                    actor_id=actor.actor_id,
                    comment=remote.comment,
                    content=content,
                    content_model=remote.content_model,
                    sha1=remote.checksum or digest.sha1,
                    length=LocalRevision.length_of(content),
                    minor=remote.minor,
                    visibility=remote.visibility,
                )
            )
            self._advance_latest(page_id, remote)

        if conflict is not None and self.ledger is not None:
            self.ledger.record_conflict(conflict)
        return self._record("missing", digest, remote_sha1=remote.checksum, message="inserted")

    def _handle_mismatch(
        self,
        digest: RevisionDigest,
        local: LocalRevision,
        local_sha1: str,
    ) -> IntegrityFinding:
        self.report.mismatched += 1
        logger.warning(
            f"Bad revision (hash): {digest.rev_id} (ours: {local_sha1} | theirs: {digest.sha1})",
            extra={"rev_id": digest.rev_id},
        )
        if local.length != 0:
            return self._record("mismatch", digest, local_sha1=local_sha1)

        if self.dry_run:
            return self._record("mismatch", digest, local_sha1=local_sha1, message="empty content, repairable")

        remote = self.remote.fetch_revision(digest.rev_id)
        if remote is None or remote.content is None:
            return self._record(
                "failed",
                digest,
                local_sha1=local_sha1,
                message="could not fetch remote content",
            )

        with self.store.transaction():
            self.store.replace_revision_content(
                digest.rev_id,
                remote.content,
                remote.checksum,
                content_model=remote.content_model,
            )
            page = self.store.get_page(local.page_id)
            if page is not None and page.latest == local.rev_id:
                self.store.update_page(
                    page.model_copy(update={"length": LocalRevision.length_of(remote.content)})
                )

        self.report.repaired += 1
        logger.info(
            f"Replaced revision {digest.rev_id} with content from remote wiki",
            extra={"rev_id": digest.rev_id},
        )
        return self._record("repaired", digest, local_sha1=local_sha1, remote_sha1=remote.checksum)

    # ─── Helpers ────────────────────────────────────────────

    def _create_page(self, remote: RemoteRevision, page_id: int, title: str) -> Optional[ConflictFinding]:
        conflict = self.conflicts.reserve_slot(remote.namespace, title, page_id)
        self.store.insert_page(
            PageRecord(
                page_id=page_id,
                namespace=remote.namespace,
                title=title,
                content_model=remote.content_model,
            )
        )
        return conflict
        title = sanitise_title(remote.namespace, remote.title)
        if not title:
            return False
        self.conflicts.reserve_slot(remote.namespace, title, page_id)
        with self.store.transaction():
            self.store.insert_page(
                PageRecord(
                    page_id=page_id,
                    namespace=remote.namespace,
                    title=title,
                    content_model=remote.content_model,
                )
            )
        return True

    def _advance_latest(self, page_id: int, remote: RemoteRevision) -> None:
        page = self.store.get_page(page_id)
        if page is None:
            return
        current = self.store.get_revision(page.latest) if page.latest else None
        if current is not None and current.timestamp >= remote.timestamp:
            return
        self.store.update_page(
            page.model_copy(
                update={
                    "latest": remote.rev_id,
                    "length": LocalRevision.length_of(remote.content or ""),
                }
            )
        )

    def _record(
        self,
        kind: str,
        digest: RevisionDigest,
        local_sha1: Optional[str] = None,
        remote_sha1: Optional[str] = None,
        message: str = "",
    ) -> IntegrityFinding:
        if kind == "unfixable":
            self.report.unfixable += 1
        elif kind == "failed":
            self.report.failed += 1

        finding = IntegrityFinding(
            kind=kind,
            rev_id=digest.rev_id,
            parent_id=digest.parent_id,
            timestamp=digest.timestamp,
            local_sha1=local_sha1,
            remote_sha1=remote_sha1 or digest.sha1,
            message=message,
            dry_run=self.dry_run,
        )
        self.report.findings.append(finding)
        if self.ledger is not None:
            self.ledger.record(finding)
        return finding
