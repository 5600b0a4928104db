"""
Findings Ledger — Append-only NDJSON record of what a run found.

Each line is one JSON object (newline-delimited JSON). Integrity findings,
title relocations and failed items are appended as they happen, so the
ledger survives a run that is killed halfway.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from ..models.outcome import ConflictFinding, IntegrityFinding, ItemOutcome


def new_run_id() -> str:
    """Run identifier, e.g. ``R-20260204T221903-92929A``."""
    now = datetime.now(timezone.utc)
    return f"R-{now.strftime('%Y%m%dT%H%M%S')}-{uuid4().hex[:6].upper()}"


class FindingsLedger:
    """
    Append-only NDJSON findings writer.

    Usage:
        ledger = FindingsLedger(Path("audit/findings.ndjson"), run_id="R-123")
        ledger.emit("run_start", details={"job": "check-revisions"})
    """

    def __init__(self, path: Path, run_id: Optional[str] = None):
        self.path = path
        self.run_id = run_id or new_run_id()
        self._ensure_exists()

    def _ensure_exists(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()

    def emit(
        self,
        event_type: str,
        level: str = "info",
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append one event.

        Args:
            event_type: Type of event (run_start, integrity, conflict, ...)
            level: info, warning or error
            details: Event payload

        Returns:
            Generated event_id
        """
        event_id = f"E-{uuid4().hex[:8].upper()}"
        entry: Dict[str, Any] = {
            "ts_iso": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "event_id": event_id,
            "run_id": self.run_id,
            "level": level,
            "type": event_type,
        }
        if details is not None:
            entry["details"] = details

        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
        return event_id

    def record(self, finding: IntegrityFinding) -> str:
        level = "info" if finding.kind in ("missing", "repaired") else "warning"
        return self.emit("integrity", level=level, details=finding.model_dump())

    def record_conflict(self, finding: ConflictFinding) -> str:
        return self.emit("conflict", details=finding.model_dump())

    def record_outcome(self, outcome: ItemOutcome) -> str:
        level = "error" if outcome.is_failed else "info"
        return self.emit("item", level=level, details=outcome.model_dump())
