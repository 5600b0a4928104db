"""
Sync Run — Wire collaborators together and drive one job.

A run owns exactly one remote client, one store connection, one
transfer manager and one ``ReconciliationContext``. Jobs executed on the
same run share the identity cache; separate runs never do.

## Run ID Format

    R-{YYYYMMDD}T{HHMMSS}-{RANDOM}
    Example: R-20260204T221903-92929A

## Usage

    from wikigrab.engine.run import SyncRun

    with SyncRun.open(settings, cursor_path=Path("revisions.cursor.json")) as run:
        result = run.revisions()
    print(result.summary())

Fatal errors (``AuthorizationError``, ``ConfigurationError``,
``MalformedResponseError``, ``TransientIOError``) propagate to the caller;
per-item problems only show up in the counts.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config.settings import GrabberSettings
from ..errors import MalformedResponseError
from ..files.importer import FileImporter
from ..files.transfer import FileTransferManager
from ..models.cursor import SyncCursor
from ..persistence.audit import FindingsLedger, new_run_id
from ..persistence.cursor_file import load_cursor, save_cursor
from ..remote.base import RemoteSource
from ..remote.client import ApiClient
from ..store.base import LocalStore
from ..store.sqlite import SQLiteStore
from ..sync.conflicts import ConflictResolver
from ..sync.identity import IdentityReconciler
from ..sync.integrity import DIGEST_PARAMS, IntegrityReport, IntegrityVerifier
from ..sync.pagination import CursorManager, PaginationResult
from ..sync.restrictions import RestrictionImporter
from ..sync.revisions import DeletedRevisionImporter, RevisionImporter, RevisionTagImporter
from ..sync.tags import TagApplier

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class RunResult:
    """Result of one job."""

    run_id: str
    job: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: int = 0
    dry_run: bool = False

    # Pagination
    items_processed: int = 0
    pages: int = 0
    stalled_pages: int = 0
    failures: int = 0
    last_continuation: Optional[Dict[str, Any]] = None
    last_timestamp: Optional[str] = None

    # Job specific counters (inserted, skipped, renames, ...)
    counts: Dict[str, int] = field(default_factory=dict)
    integrity: Optional[IntegrityReport] = None

    def absorb(self, pagination: PaginationResult) -> None:
        self.items_processed += pagination.items_processed
        self.pages += pagination.pages
        self.stalled_pages += pagination.stalled_pages
        self.failures += pagination.failures
        self.last_continuation = pagination.last_continuation or self.last_continuation
        self.last_timestamp = pagination.last_timestamp or self.last_timestamp

    def summary(self) -> str:
        if self.integrity is not None:
            return self.integrity.summary()
        parts = [f"{self.items_processed} items", f"{self.failures} failed"]
        parts.extend(f"{v} {k.replace('_', ' ')}" for k, v in self.counts.items())
        return f"{self.job}: " + ", ".join(parts)


class SyncRun:
    """One run against one remote and one local store."""

    def __init__(
        self,
        settings: GrabberSettings,
        remote: RemoteSource,
        store: LocalStore,
        transfer: Optional[FileTransferManager] = None,
        ledger: Optional[FindingsLedger] = None,
        cursor_path: Optional[Path] = None,
        run_id: Optional[str] = None,
    ):
        self.settings = settings
        self.remote = remote
        self.store = store
        self.transfer = transfer
        self.ledger = ledger
        self.cursor_path = cursor_path
        self.run_id = run_id or (ledger.run_id if ledger else new_run_id())

        self.reconciler = IdentityReconciler(
            store,
            remote,
            collision_suffix=settings.collision_suffix,
        )
        self.conflicts = ConflictResolver(store)
        self.tags = TagApplier(store)

    @classmethod
    def open(
        cls,
        settings: GrabberSettings,
        cursor_path: Optional[Path] = None,
    ) -> "SyncRun":
        """Build the concrete collaborators from settings and log in if configured."""
        settings.validate()
        client = ApiClient(settings.api_url, user_agent=settings.user_agent, timeout=settings.timeout)
        if settings.has_login:
            client.login(settings.username, settings.password)

        run_id = new_run_id()
        ledger = FindingsLedger(settings.findings_path, run_id=run_id) if settings.findings_path else None
        return cls(
            settings,
            remote=client,
            store=SQLiteStore(settings.db_path),
            transfer=FileTransferManager(
                max_retries=settings.max_retries,
                retry_delay=settings.retry_delay,
                transcoding_hosts=settings.transcoding_hosts,
            ),
            ledger=ledger,
            cursor_path=cursor_path,
            run_id=run_id,
        )

    def __enter__(self) -> "SyncRun":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self.remote.close()
        self.store.close()
        if self.transfer is not None:
            self.transfer.close()

    # ─── Plumbing ───────────────────────────────────────────

    def _manager(self, job: str) -> CursorManager:
        return CursorManager(
            self.remote,
            job=job,
            report_interval=self.settings.report_interval,
            stall_report_every=self.settings.stall_report_every,
            checkpoint=self._checkpoint if self.cursor_path else None,
            on_stall=self._stalled,
            on_failure=self.ledger.record_outcome if self.ledger is not None else None,
        )

    def _checkpoint(self, cursor: SyncCursor) -> None:
        save_cursor(cursor, self.cursor_path)

    def _stalled(self, cursor: SyncCursor) -> None:
        if self.ledger is not None:
            self.ledger.emit("stalled", level="warning", details=cursor.model_dump())

    def _cursor(self, job: str) -> SyncCursor:
        """Saved cursor for ``job`` if one is resumable, else a fresh template."""
        if self.cursor_path is not None:
            saved = load_cursor(self.cursor_path, job=job)
            if saved is not None and not saved.exhausted:
                return saved
        return SyncCursor(
            job=job,
            namespaces=self.settings.namespaces,
            start=self.settings.start,
            end=self.settings.end,
        )

    def _begin(self, job: str, dry_run: bool = False) -> RunResult:
        logger.info(f"Starting {job} run {self.run_id}", extra={"run_id": self.run_id, "job": job})
        if self.ledger is not None:
            self.ledger.emit("run_start", details={"job": job, "dry_run": dry_run})
        return RunResult(run_id=self.run_id, job=job, started_at=_now_iso(), dry_run=dry_run)

    def _finish(self, result: RunResult, started: float) -> RunResult:
        result.ended_at = _now_iso()
        result.duration_ms = int((time.time() - started) * 1000)
        logger.info(result.summary(), extra={"run_id": self.run_id, "job": result.job})
        if self.ledger is not None:
            self.ledger.emit(
                "run_end",
                details={"job": result.job, "summary": result.summary(), "failures": result.failures},
            )
        return result

    def _content_namespaces(self) -> List[int]:
        if self.settings.namespaces:
            return list(self.settings.namespaces)
        namespaces = self.remote.site_info().get("namespaces") or {}
        values = namespaces.values() if isinstance(namespaces, dict) else namespaces
        found = sorted({int(ns["id"]) for ns in values if int(ns.get("id", -1)) >= 0})
        if not found:
            raise MalformedResponseError("Remote reported no namespaces")
        return found

    # ─── Jobs ───────────────────────────────────────────────

    def revisions(self) -> RunResult:
        started = time.time()
        result = self._begin(RevisionImporter.job)
        importer = RevisionImporter(self.store, self.reconciler, self.conflicts, self.tags, ledger=self.ledger)
        cursor = self._cursor(importer.job)

        result.absorb(
            self._manager(importer.job).run(
                importer.params(cursor.namespaces, cursor.start, cursor.end),
                extract=importer.extract,
                process=importer.process_page,
                cursor=cursor,
            )
        )
        result.counts = {
            "revisions_inserted": importer.inserted,
            "revisions_present": importer.skipped,
            "pages_inserted": importer.pages_inserted,
            "pages_updated": importer.pages_updated,
            "titles_relocated": self.conflicts.resolved,
            "user_renames": self.reconciler.context.renames,
        }
        return self._finish(result, started)

    def deleted_revisions(self, adrcontinue: Optional[str] = None) -> RunResult:
        started = time.time()
        result = self._begin(DeletedRevisionImporter.job)
        importer = DeletedRevisionImporter(self.store, self.reconciler, self.tags, end=self.settings.end)

        if adrcontinue is None:
            saved = self._cursor(importer.job)
            adrcontinue = saved.params.get("adrcontinue")

        result.absorb(
            importer.run(self._manager(importer.job), self._content_namespaces(), adrcontinue=adrcontinue)
        )
        result.counts = {
            "archived": importer.inserted,
            "skipped": importer.skipped,
            "user_renames": self.reconciler.context.renames,
        }
        return self._finish(result, started)

    def revision_tags(self) -> RunResult:
        started = time.time()
        result = self._begin(RevisionTagImporter.job)
        importer = RevisionTagImporter(self.store, self.tags, end=self.settings.end)
        cursor = self._cursor(importer.job)

        result.absorb(
            self._manager(importer.job).run(
                importer.params(start=cursor.start),
                extract=importer.extract,
                process=importer.process_page,
                cursor=cursor,
            )
        )
        result.counts = {"revisions_tagged": importer.tagged, "skipped": importer.skipped}
        return self._finish(result, started)

    def restrictions(self) -> RunResult:
        started = time.time()
        result = self._begin(RestrictionImporter.job)
        importer = RestrictionImporter(self.store)
        manager = self._manager(importer.job)
        saved = self._cursor(importer.job)

        # A saved position only applies to the namespace it was taken in
        namespaces: List[Optional[int]] = list(self.settings.namespaces) or [None]
        resume_ns = saved.namespaces[0] if saved.params and saved.namespaces else None
        for namespace in namespaces:
            if resume_ns is not None and namespace is not None and namespace < resume_ns:
                logger.info(f"Skipping namespace {namespace}")
                continue
            if saved.params and namespace == resume_ns:
                cursor = saved
            else:
                cursor = SyncCursor(job=importer.job, namespaces=[] if namespace is None else [namespace])
            result.absorb(
                manager.run(
                    importer.params(namespace),
                    extract=importer.extract,
                    process=importer.process_page,
                    cursor=cursor,
                )
            )
        result.counts = {
            "pages_updated": importer.pages_updated,
            "restrictions_written": importer.restrictions_written,
        }
        return self._finish(result, started)

    def files(self) -> RunResult:
        started = time.time()
        result = self._begin(FileImporter.job)
        if self.transfer is None:
            self.transfer = FileTransferManager(
                max_retries=self.settings.max_retries,
                retry_delay=self.settings.retry_delay,
                transcoding_hosts=self.settings.transcoding_hosts,
            )
        importer = FileImporter(self.store, self.reconciler, self.transfer, self.settings.file_repo)

        result.absorb(
            self._manager(importer.job).run(
                importer.params(),
                extract=importer.extract,
                process=importer.process_file,
                cursor=self._cursor(importer.job),
            )
        )
        result.counts = {
            "versions_stored": importer.versions_stored,
            "versions_skipped": importer.versions_skipped,
            "transfers_failed": importer.transfers_failed,
        }
        return self._finish(result, started)

    def check_revisions(self, dry_run: bool = False) -> RunResult:
        started = time.time()
        result = self._begin("check-revisions", dry_run=dry_run)
        verifier = IntegrityVerifier(
            self.store,
            self.remote,
            self.reconciler,
            conflicts=self.conflicts,
            ledger=self.ledger,
            dry_run=dry_run,
        )
        manager = self._manager("check-revisions")

        params: Dict[str, Any] = {}
        if self.settings.namespaces:
            params["arvnamespace"] = self.settings.namespaces
        result.integrity = verifier.report
        pagination = manager.run(
            {**DIGEST_PARAMS, **params},
            extract=verifier.extract,
            process=verifier.process_page,
            cursor=self._cursor("check-revisions"),
        )
        result.absorb(pagination)
        result.counts = {
            "checked": verifier.report.checked,
            "missing": verifier.report.missing,
            "mismatched": verifier.report.mismatched,
            "repaired": verifier.report.repaired,
            "unfixable": verifier.report.unfixable,
        }
        return self._finish(result, started)

