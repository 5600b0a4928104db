"""
Conflict Resolver — Free a (namespace, title) slot before a page insert.

When the remote moves page A away and creates page B under A's old title,
a mirror that has not replayed the move yet still holds A there. Inserting
B would then break the unique title rule, so A is moved aside to a
placeholder title first. A later run that sees A's real title puts it
back where it belongs through the normal page update.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..models.outcome import ConflictFinding
from ..store.base import LocalStore

logger = logging.getLogger(__name__)

PLACEHOLDER_FORMAT = "{title}/moved-{page_id}"


class ConflictResolver:
    """Relocates pages that occupy a title an incoming page needs."""

    def __init__(self, store: LocalStore):
        self.store = store
        self.resolved = 0

    def reserve_slot(
        self,
        namespace: int,
        title: str,
        incoming_page_id: int,
    ) -> Optional[ConflictFinding]:
        """
        Make ``(namespace, title)`` available to ``incoming_page_id``.

        Returns the relocation performed, or None when the slot was free
        or already held by the incoming page itself.
        """
        occupant = self.store.get_page_by_title(namespace, title)
        if occupant is None or occupant.page_id == incoming_page_id:
            return None

        placeholder = self._placeholder(namespace, title, occupant.page_id)
        with self.store.transaction():
            self.store.move_page(occupant.page_id, namespace, placeholder)
        self.resolved += 1

        logger.info(
            f"Title {namespace}:{title} held by page {occupant.page_id}, "
            f"moved it to {placeholder} for page {incoming_page_id}",
            extra={"page_id": incoming_page_id},
        )
        return ConflictFinding(
            namespace=namespace,
            title=title,
            incoming_page_id=incoming_page_id,
            occupant_page_id=occupant.page_id,
            relocated_to=placeholder,
        )

    def _placeholder(self, namespace: int, title: str, page_id: int) -> str:
        base = PLACEHOLDER_FORMAT.format(title=title, page_id=page_id)
        candidate = base
        n = 2
        while self.store.get_page_by_title(namespace, candidate) is not None:
            candidate = f"{base}-{n}"
            n += 1
        return candidate
