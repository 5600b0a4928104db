"""
Remote Source Base Class — Interface to the wiki being mirrored.

The remote is always authoritative; nothing here writes back to it.

## Contract

- ``query(params)`` returns the decoded payload of one ``action=query``
  request: the ``query`` result plus an optional ``continue`` (or legacy
  ``query-continue``) map. Transport problems raise ``TransientIOError``,
  rejected requests raise ``AuthorizationError``.
- ``fetch_revision(rev_id)`` returns the full revision or None if the
  remote no longer has it.
- ``fetch_user_name(user_id)`` returns the current name or None if the
  account is missing or suppressed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..models.records import RemoteRevision

# Properties requested whenever a full revision is needed
REVISION_PROPS = "ids|timestamp|user|userid|comment|content|sha1|size|flags|tags|contentmodel"


class RemoteSource(ABC):
    """Abstract paginated content source."""

    @abstractmethod
    def query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def fetch_revision(self, rev_id: int) -> Optional[RemoteRevision]:
        pass

    @abstractmethod
    def fetch_user_name(self, user_id: int) -> Optional[str]:
        pass

    def site_info(self) -> Dict[str, Any]:
        """General site information (name, generator, namespaces)."""
        payload = self.query({"meta": "siteinfo", "siprop": "general|namespaces"})
        return payload.get("query", {})

    def close(self) -> None:
        """Release network resources."""
