"""
Cursor File Persistence — JSON cursor backend.

A run started with ``--cursor-file`` saves its ``SyncCursor`` after every
page, so a killed run resumes from the last completed page.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from ..models.cursor import SyncCursor

logger = logging.getLogger(__name__)


def load_cursor(path: Path, job: Optional[str] = None) -> Optional[SyncCursor]:
    """
    Load a cursor from a JSON file.

    Args:
        path: Path to the cursor file
        job: Expected job name; a cursor saved by another job is ignored

    Returns:
        The saved cursor, or None if the file does not exist

    Raises:
        ValidationError: If the file content is not a valid cursor
    """
    if not path.exists():
        return None
    logger.debug(f"Loading cursor from {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    cursor = SyncCursor(**data)
    if job is not None and cursor.job != job:
        logger.warning(f"Cursor in {path} belongs to job {cursor.job}, not {job}; ignoring it")
        return None
    return cursor


def save_cursor(cursor: SyncCursor, path: Path) -> None:
    """
    Save a cursor to a JSON file.

    Uses atomic write (write to temp, then rename) so a crash mid-write
    never leaves a truncated cursor behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = path.with_suffix(".tmp")
    with temp_path.open("w", encoding="utf-8") as f:
        json.dump(cursor.model_dump(), f, indent=4)
        f.write("\n")

    os.replace(temp_path, path)
    logger.debug(f"Cursor saved: job={cursor.job} items={cursor.items_processed} → {path.name}")
