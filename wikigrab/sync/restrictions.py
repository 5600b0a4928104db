"""
Restriction Importer — Mirror page protections.

Pages the mirror does not know are ignored. For known pages the local
restriction set is replaced with the remote one, minus entries inherited
from a cascading protection elsewhere (those carry a ``source``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..models.outcome import ItemOutcome
from ..models.records import PageRestriction
from ..store.base import LocalStore

logger = logging.getLogger(__name__)


class RestrictionImporter:
    job = "restrictions"

    def __init__(self, store: LocalStore):
        self.store = store
        self.pages_updated = 0
        self.restrictions_written = 0

    @staticmethod
    def params(namespace: Optional[int] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "generator": "allpages",
            "gaplimit": "max",
            "gapprtype": "edit|move|upload",
            "prop": "info",
            "inprop": "protection",
        }
        if namespace is not None:
            params["gapnamespace"] = namespace
        return params

    @staticmethod
    def extract(payload: Mapping[str, Any]) -> Optional[List[Any]]:
        result = payload.get("query")
        if not isinstance(result, Mapping) or "pages" not in result:
            return None
        return list(result["pages"] or [])

    def process_page(self, page: Mapping[str, Any]) -> ItemOutcome:
        page_id = int(page.get("pageid") or 0)
        key = f"page:{page_id}"
        if not page_id or self.store.get_page(page_id) is None:
            return ItemOutcome.skipped(key, "page not mirrored")

        restrictions = [
            PageRestriction(
                page_id=page_id,
                type=prot["type"],
                level=prot["level"],
                cascade="cascade" in prot and prot["cascade"] is not False,
                expiry=prot.get("expiry") or "infinity",
            )
            for prot in page.get("protection") or []
            if "source" not in prot
        ]

        with self.store.transaction():
            self.store.delete_restrictions(page_id)
            for restriction in restrictions:
                self.store.insert_restriction(restriction)

        self.pages_updated += 1
        self.restrictions_written += len(restrictions)
        logger.debug(f"Setting page_restrictions on page_id {page_id}", extra={"page_id": page_id})
        return ItemOutcome.ok(key, {"restrictions": len(restrictions)})
