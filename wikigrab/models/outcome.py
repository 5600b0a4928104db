"""
Outcome Models — Per-item results and findings.

Every item processor returns an ``ItemOutcome``, regardless of success or
failure, so one bad revision never stops a run. Integrity and conflict
findings are recorded the same way and written to the findings ledger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ErrorDetails(BaseModel):
    """Details about a per-item failure."""

    code: str
    message: str
    retryable: bool = False


class ItemOutcome(BaseModel):
    """
    Result of processing one item (revision, page, file version...).

    ``key`` identifies the item well enough to reproduce the problem,
    e.g. ``rev:1234`` or ``file:Foo.png@20200101000000``.
    """

    status: Literal["ok", "skipped", "failed"]
    key: str
    ts_iso: str = Field(default_factory=utc_now_iso)
    details: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDetails] = None

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def ok(cls, key: str, details: Optional[Dict[str, Any]] = None) -> "ItemOutcome":
        """Create a successful outcome."""
        return cls(status="ok", key=key, details=details)

    @classmethod
    def skipped(cls, key: str, reason: str) -> "ItemOutcome":
        """Create a skipped outcome (already present, out of window, ...)."""
        return cls(status="skipped", key=key, details={"skip_reason": reason})

    @classmethod
    def failed(
        cls,
        key: str,
        error_code: str,
        error_message: str,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ItemOutcome":
        """Create a failed outcome."""
        return cls(
            status="failed",
            key=key,
            details=details,
            error=ErrorDetails(
                code=error_code,
                message=error_message,
                retryable=retryable,
            ),
        )


FindingKind = Literal["missing", "mismatch", "repaired", "unfixable", "failed"]


class IntegrityFinding(BaseModel):
    """A missing or corrupted mirrored revision (never fatal)."""

    kind: FindingKind
    rev_id: int
    parent_id: int = 0
    timestamp: Optional[str] = None
    local_sha1: Optional[str] = None
    remote_sha1: Optional[str] = None
    message: str = ""
    dry_run: bool = False


class ConflictFinding(BaseModel):
    """A title collision that was resolved by relocating the occupant."""

    namespace: int
    title: str
    incoming_page_id: int
    occupant_page_id: int
    relocated_to: str
