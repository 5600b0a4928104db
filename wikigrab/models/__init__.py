"""
Models — Records, cursors and outcomes shared by every component.
"""

from .cursor import SyncCursor
from .outcome import ConflictFinding, ErrorDetails, IntegrityFinding, ItemOutcome
from .records import (
    ActorIdentity,
    ArchivedRevision,
    ChangeTag,
    FileVersion,
    LocalRevision,
    PageRecord,
    PageRestriction,
    RemoteRevision,
    RevisionDigest,
    Visibility,
    content_sha1,
    default_content_model,
    normalize_metadata,
    sanitise_title,
)

__all__ = [
    "ActorIdentity",
    "ArchivedRevision",
    "ChangeTag",
    "ConflictFinding",
    "ErrorDetails",
    "FileVersion",
    "IntegrityFinding",
    "ItemOutcome",
    "LocalRevision",
    "PageRecord",
    "PageRestriction",
    "RemoteRevision",
    "RevisionDigest",
    "SyncCursor",
    "Visibility",
    "content_sha1",
    "default_content_model",
    "normalize_metadata",
    "sanitise_title",
]
