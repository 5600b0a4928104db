"""
Pagination Cursor Manager — Drives one paginated query until exhausted.

Every content type (revisions, deleted revisions, files, restrictions,
tags, integrity digests) runs through the same loop; only the item
extractor and the per-item processor differ.

## Termination

The loop ends when a response carries no continuation map. An empty page
that still carries one is a *stalled* page: the server filtered every
row out of that batch after paging. Stalled pages keep the loop going.
Every ``stall_report_every`` consecutive stalled pages the current cursor
is logged and handed to ``on_stall`` so an operator can checkpoint or
abort a run that is crawling through a sparse range.

## Failure Policy

- ``TransientIOError`` and other ``GrabberError`` kinds propagate.
- A response without the expected result structure (or a body that is not
  a JSON object) is fatal on the first page, likely a scope or rights
  problem. After that it counts as one stalled page and the loop asks
  again from the last good continuation. ``max_malformed`` such pages in
  a row abort the run; the saved cursor still points at the last good page.
- A processor that returns a failed ``ItemOutcome`` or raises any other
  exception only bumps ``failures`` and is handed to ``on_failure``
  (the findings ledger, when one is configured); the loop moves on.

## Usage

    manager = CursorManager(remote, job="revisions", report_interval=500)
    result = manager.run(
        {"list": "allrevisions", "arvlimit": "max"},
        extract=lambda payload: payload.get("query", {}).get("allrevisions"),
        process=importer.process_page,
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..errors import GrabberError, MalformedResponseError
from ..models.cursor import SyncCursor
from ..models.outcome import ItemOutcome
from ..remote.base import RemoteSource

logger = logging.getLogger(__name__)

# payload -> items, or None when the result structure is absent
Extractor = Callable[[Dict[str, Any]], Optional[List[Any]]]
Processor = Callable[[Any], Optional[ItemOutcome]]

# Consecutive unreadable pages tolerated before the run is aborted
MAX_MALFORMED_PAGES = 5


@dataclass
class PaginationResult:
    """Totals for one exhausted query."""

    items_processed: int = 0
    pages: int = 0
    stalled_pages: int = 0
    failures: int = 0
    last_continuation: Optional[Dict[str, Any]] = None
    last_timestamp: Optional[str] = None


def continuation_of(payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the continuation map from a response.

    The modern ``continue`` map is used as-is. The legacy
    ``query-continue`` map is keyed by module and is flattened.
    """
    modern = payload.get("continue")
    if modern:
        return dict(modern)

    legacy = payload.get("query-continue")
    if legacy:
        merged: Dict[str, Any] = {}
        for module_params in legacy.values():
            if isinstance(module_params, Mapping):
                merged.update(module_params)
        return merged or None
    return None


def default_timestamp(item: Any) -> Optional[str]:
    if isinstance(item, Mapping):
        # Page chunks carry their timestamps on the revisions
        revisions = item.get("revisions")
        if revisions and isinstance(revisions[-1], Mapping):
            return revisions[-1].get("timestamp")
        return item.get("timestamp")
    return getattr(item, "timestamp", None)


def default_key(item: Any) -> str:
    """Short identifier for log lines and the findings ledger."""
    if isinstance(item, Mapping):
        for name, prefix in (("revid", "rev"), ("pageid", "page"), ("title", "title"), ("name", "file")):
            if item.get(name) not in (None, ""):
                return f"{prefix}:{item[name]}"
    rev_id = getattr(item, "rev_id", None)
    if rev_id is not None:
        return f"rev:{rev_id}"
    return repr(item)[:80]


class CursorManager:
    """Generic query loop with stalled-page tolerance and checkpoints."""

    def __init__(
        self,
        remote: RemoteSource,
        job: str,
        report_interval: int = 500,
        stall_report_every: int = 10,
        checkpoint: Optional[Callable[[SyncCursor], None]] = None,
        on_stall: Optional[Callable[[SyncCursor], None]] = None,
        on_failure: Optional[Callable[[ItemOutcome], None]] = None,
        timestamp_of: Callable[[Any], Optional[str]] = default_timestamp,
        key_of: Callable[[Any], str] = default_key,
        max_malformed: int = MAX_MALFORMED_PAGES,
    ):
        self.remote = remote
        self.job = job
        self.report_interval = max(1, report_interval)
        self.stall_report_every = max(1, stall_report_every)
        self.checkpoint = checkpoint
        self.on_stall = on_stall
        self.on_failure = on_failure
        self.timestamp_of = timestamp_of
        self.key_of = key_of
        self.max_malformed = max(1, max_malformed)

    def run(
        self,
        params: Dict[str, Any],
        extract: Extractor,
        process: Processor,
        cursor: Optional[SyncCursor] = None,
    ) -> PaginationResult:
        """
        Query until the remote stops returning a continuation map.

        Args:
            params: Base request parameters (scope filters, page size)
            extract: Pulls the item list out of a payload
            process: Handles one item
            cursor: Saved position to resume from, or the job template

        Returns:
            PaginationResult with exact counts
        """
        result = PaginationResult()
        cursor = cursor or SyncCursor(job=self.job)
        base_items = cursor.items_processed if cursor.params else 0
        continuation: Optional[Dict[str, Any]] = dict(cursor.params) or None
        if continuation:
            logger.info(f"{self.job}: resuming from {continuation}")

        consecutive_stalls = 0
        consecutive_malformed = 0

        while True:
            request = {**params, **(continuation or {})}
            payload, items = self._fetch(request, extract, first_page=result.pages == 0)
            result.pages += 1

            if items is None:
                consecutive_malformed += 1
                if consecutive_malformed >= self.max_malformed:
                    raise MalformedResponseError(
                        f"{consecutive_malformed} malformed pages in a row",
                        {"job": self.job, "continuation": continuation},
                    )
                # No fresh token: the same page is requested again
                continuation = continuation_of(payload or {}) or continuation
                logger.warning(
                    f"{self.job}: page {result.pages} had no result structure, continuing from {continuation}"
                )
            else:
                consecutive_malformed = 0
                continuation = continuation_of(payload or {})
                for item in items:
                    self._process_one(item, process, result)

            if continuation:
                result.last_continuation = continuation
            cursor = cursor.advance(continuation, result.last_timestamp, base_items + result.items_processed)
            self._save(cursor)

            if not continuation:
                break

            if items:
                consecutive_stalls = 0
                continue

            result.stalled_pages += 1
            consecutive_stalls += 1
            logger.debug(f"{self.job}: empty page with continuation {continuation}")
            if consecutive_stalls % self.stall_report_every == 0:
                logger.warning(
                    f"{self.job}: {consecutive_stalls} consecutive empty pages, "
                    f"cursor {continuation}, last timestamp {result.last_timestamp}"
                )
                if self.on_stall is not None:
                    self.on_stall(cursor)

        logger.info(
            f"{self.job}: done, {result.items_processed} items over {result.pages} pages "
            f"({result.stalled_pages} stalled, {result.failures} failed)"
        )
        return result

    def _fetch(
        self,
        request: Dict[str, Any],
        extract: Extractor,
        first_page: bool,
    ) -> Tuple[Optional[Dict[str, Any]], Optional[List[Any]]]:
        """Query one page; ``(payload, None)`` or ``(None, None)`` when it is malformed."""
        try:
            payload = self.remote.query(request)
        except MalformedResponseError as e:
            if first_page:
                raise
            logger.warning(f"{self.job}: unreadable page: {e}")
            return None, None

        items = extract(payload)
        if items is None and first_page:
            raise MalformedResponseError(
                "First page has no result structure; check scope and rights",
                {"job": self.job},
            )
        return payload, items

    def _process_one(self, item: Any, process: Processor, result: PaginationResult) -> None:
        timestamp = self.timestamp_of(item)
        try:
            outcome = process(item)
        except GrabberError:
            raise
        except Exception as e:
            key = self.key_of(item)
            logger.error(f"{self.job}: {key} at {timestamp} failed: {e}", exc_info=True)
            self._failed(
                ItemOutcome.failed(key, "exception", f"{type(e).__name__}: {e}", details={"timestamp": timestamp}),
                result,
            )
        else:
            if outcome is not None and outcome.is_failed:
                error = outcome.error
                logger.error(
                    f"{self.job}: {outcome.key} at {timestamp} failed: "
                    f"{error.code if error else 'unknown'} {error.message if error else ''}"
                )
                self._failed(outcome, result)

        result.items_processed += 1
        if timestamp:
            result.last_timestamp = timestamp
        if result.items_processed % self.report_interval == 0:
            logger.info(
                f"{self.job}: {result.items_processed} items processed, "
                f"last timestamp {result.last_timestamp}"
            )

    def _failed(self, outcome: ItemOutcome, result: PaginationResult) -> None:
        result.failures += 1
        if self.on_failure is not None:
            self.on_failure(outcome)

    def _save(self, cursor: SyncCursor) -> None:
        if self.checkpoint is not None:
            self.checkpoint(cursor)
