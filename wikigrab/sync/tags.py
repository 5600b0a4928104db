"""
Tag Applier — Attach change tags to a revision or a log entry.

Association rows are keyed by (tag, revision) or (tag, log entry), and a
tag's usage counter only moves when a new association row lands, so
re-importing the same revisions leaves the counters untouched.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..store.base import LocalStore

logger = logging.getLogger(__name__)


class TagApplier:
    def __init__(self, store: LocalStore):
        self.store = store

    def apply(
        self,
        tags: Iterable[str],
        rev_id: Optional[int] = None,
        log_id: Optional[int] = None,
    ) -> int:
        """
        Apply ``tags`` to exactly one of ``rev_id``/``log_id``.

        Returns:
            Number of associations newly added

        Raises:
            ValueError: If neither or both targets are given
        """
        if (rev_id is None) == (log_id is None):
            raise ValueError("exactly one of rev_id or log_id is required")

        names = list(dict.fromkeys(t for t in tags if t))
        if not names:
            return 0

        added = 0
        with self.store.transaction():
            for name in names:
                tag_id = self.store.acquire_tag_id(name)
                if self.store.add_tag_association(tag_id, rev_id=rev_id, log_id=log_id):
                    self.store.increment_tag_count(tag_id)
                    added += 1

        if added:
            target = f"rev {rev_id}" if rev_id is not None else f"log {log_id}"
            logger.debug(f"Tagged {target}: {added} new of {names}")
        return added
