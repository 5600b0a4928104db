"""
Sync Cursor — Resumable pagination position for one job.

The cursor holds the continuation map the remote last returned plus the
scope filters the job was started with, so ``--cursor-file`` runs can
pick up exactly where a killed run stopped.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .outcome import utc_now_iso


class SyncCursor(BaseModel):
    """Serializable pagination position."""

    schema_version: int = 1
    job: str
    params: Dict[str, Any] = Field(default_factory=dict)
    direction: Literal["newer", "older"] = "newer"
    namespaces: List[int] = Field(default_factory=list)
    start: Optional[str] = None
    end: Optional[str] = None
    last_timestamp: Optional[str] = None
    items_processed: int = 0
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def exhausted(self) -> bool:
        """True once the remote returned a page without continuation."""
        return not self.params

    def advance(
        self,
        continuation: Optional[Dict[str, Any]],
        last_timestamp: Optional[str],
        items_processed: int,
    ) -> "SyncCursor":
        """Return a copy positioned after the page that was just processed."""
        return self.model_copy(
            update={
                "params": dict(continuation or {}),
                "last_timestamp": last_timestamp or self.last_timestamp,
                "items_processed": items_processed,
                "updated_at": utc_now_iso(),
            }
        )
