"""
Record Models — Pydantic schemas for remote snapshots and local rows.

Remote records (``RemoteRevision``, ``RevisionDigest``, ``FileVersion``)
are read-only snapshots parsed from API payloads. Local records mirror
the rows ``LocalStore`` implementations read and write.
"""

from __future__ import annotations

import enum
import hashlib
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field


class Visibility(enum.IntFlag):
    """Revision/file deletion bitfield (revdelete)."""

    NONE = 0
    TEXT = 1        # content hidden (files: "file hidden")
    COMMENT = 2
    USER = 4
    RESTRICTED = 8  # suppressed, hidden from admins too

    @classmethod
    def from_markers(cls, data: Mapping[str, Any]) -> "Visibility":
        """
        Rebuild the bitfield from the API's ``*hidden`` markers.

        formatversion=1 sends the key with an empty string value,
        formatversion=2 sends ``true``; both mean "hidden".
        """
        flags = cls.NONE
        if _marked(data, "texthidden") or _marked(data, "filehidden"):
            flags |= cls.TEXT
        if _marked(data, "commenthidden"):
            flags |= cls.COMMENT
        if _marked(data, "userhidden"):
            flags |= cls.USER
        if _marked(data, "suppressed"):
            flags |= cls.RESTRICTED
        return flags


def _marked(data: Mapping[str, Any], key: str) -> bool:
    return key in data and data[key] is not False


def content_sha1(content: str) -> str:
    """Hex SHA-1 of revision text, as the API reports it."""
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def _slot_content(rev: Mapping[str, Any]) -> Dict[str, Any]:
    """Pull content fields from either slot-style or legacy payloads."""
    main = (rev.get("slots") or {}).get("main")
    source: Mapping[str, Any] = main if isinstance(main, Mapping) else rev
    content = source.get("content")
    if content is None:
        content = source.get("*")
    return {
        "content": content,
        "content_model": source.get("contentmodel") or rev.get("contentmodel"),
        "content_format": source.get("contentformat") or rev.get("contentformat"),
        "sha1": source.get("sha1") or rev.get("sha1"),
        "size": source.get("size", rev.get("size")),
    }


class RevisionDigest(BaseModel):
    """Lightweight remote revision fingerprint used by the integrity check."""

    rev_id: int
    parent_id: int = 0
    timestamp: str
    sha1: Optional[str] = None

    @classmethod
    def from_api(cls, rev: Mapping[str, Any]) -> "RevisionDigest":
        sha1 = rev.get("sha1")
        if rev.get("sha1hidden") is not None and rev.get("sha1hidden") is not False:
            sha1 = None
        return cls(
            rev_id=int(rev["revid"]),
            parent_id=int(rev.get("parentid") or 0),
            timestamp=rev["timestamp"],
            sha1=sha1 or None,
        )


class RemoteRevision(BaseModel):
    """A full revision as returned by the remote API."""

    rev_id: int
    parent_id: int = 0
    page_id: int = 0
    namespace: int = 0
    title: str = ""
    timestamp: str
    user_id: int = 0
    user_name: str = ""
    comment: str = ""
    content: Optional[str] = None
    content_model: Optional[str] = None
    content_format: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None
    minor: bool = False
    tags: List[str] = Field(default_factory=list)
    visibility: int = 0  # Visibility bits

    @classmethod
    def from_api(
        cls,
        rev: Mapping[str, Any],
        page: Optional[Mapping[str, Any]] = None,
    ) -> "RemoteRevision":
        """Build from an ``allrevisions``/``revisions`` entry and its page chunk."""
        page = page or {}
        visibility = Visibility.from_markers(rev)
        slot = _slot_content(rev)
        if (rev.get("slots") or {}).get("main"):
            visibility |= Visibility.TEXT & Visibility.from_markers(rev["slots"]["main"])

        return cls(
            rev_id=int(rev["revid"]),
            parent_id=int(rev.get("parentid") or 0),
            page_id=int(page.get("pageid") or rev.get("pageid") or 0),
            namespace=int(page.get("ns", rev.get("ns", 0)) or 0),
            title=page.get("title") or rev.get("title") or "",
            timestamp=rev["timestamp"],
            user_id=int(rev.get("userid") or 0),
            user_name=rev.get("user") or "",
            comment="" if visibility & Visibility.COMMENT else (rev.get("comment") or ""),
            content=None if visibility & Visibility.TEXT else slot["content"],
            content_model=slot["content_model"],
            content_format=slot["content_format"],
            sha1=slot["sha1"] or None,
            size=slot["size"],
            minor=_marked(rev, "minor"),
            tags=list(rev.get("tags") or []),
            visibility=int(visibility),
        )

    @property
    def checksum(self) -> Optional[str]:
        """Remote sha1, or one computed from the content when omitted."""
        if self.sha1:
            return self.sha1
        if self.content is not None:
            return content_sha1(self.content)
        return None


class LocalRevision(BaseModel):
    """Local mirror of a remote revision."""

    rev_id: int
    page_id: int
    parent_id: int = 0
    timestamp: str
    actor_id: int
    comment: str = ""
    content: str = ""
    content_model: Optional[str] = None
    sha1: Optional[str] = None
    length: int = 0
    minor: bool = False
    visibility: int = 0

    @staticmethod
    def length_of(content: str) -> int:
        return len(content.encode("utf-8"))


class ArchivedRevision(LocalRevision):
    """A deleted revision kept in the archive table."""

    namespace: int = 0
    title: str = ""


class PageRecord(BaseModel):
    """Local page row. ``(namespace, title)`` is unique in the store."""

    page_id: int
    namespace: int
    title: str
    latest: int = 0
    length: int = 0
    content_model: Optional[str] = None
    is_redirect: bool = False


class ActorIdentity(BaseModel):
    """Canonical identity a revision or log entry is attributed to."""

    actor_id: int
    user_id: int = 0
    name: str
    migrated: bool = False


class ChangeTag(BaseModel):
    """Tag definition with its local numeric id and usage counter."""

    tag_id: int
    name: str
    count: int = 0


class PageRestriction(BaseModel):
    """One protection entry for a page."""

    page_id: int
    type: str
    level: str
    cascade: bool = False
    expiry: str = "infinity"


class FileVersion(BaseModel):
    """One version of a file as listed by ``imageinfo``."""

    name: str
    timestamp: Optional[str] = None  # version timestamp, None for the current version
    uploaded_at: str = ""
    size: int = 0
    width: int = 0
    height: int = 0
    bit_depth: int = 0
    mime: str = "unknown/unknown"
    media_type: str = "UNKNOWN"
    sha1: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    visibility: int = 0  # Visibility bits
    archive_name: Optional[str] = None  # None for the current version
    url: Optional[str] = None
    user_id: int = 0
    user_name: str = ""
    comment: str = ""

    @property
    def is_current(self) -> bool:
        return self.archive_name is None

    @property
    def major_mime(self) -> str:
        return self.mime.split("/", 1)[0]

    @property
    def minor_mime(self) -> str:
        parts = self.mime.split("/", 1)
        return parts[1] if len(parts) > 1 else "unknown"

    @classmethod
    def from_api(
        cls,
        name: str,
        info: Mapping[str, Any],
        current: bool,
    ) -> "FileVersion":
        """
        Build from one ``imageinfo`` entry.

        Hidden fields are blanked the same way the remote blanks them.
        """
        visibility = Visibility.from_markers(info)
        return cls(
            name=name,
            timestamp=None if current else info.get("timestamp"),
            uploaded_at=info.get("timestamp") or "",
            size=int(info.get("size") or 0),
            width=int(info.get("width") or 0),
            height=int(info.get("height") or 0),
            bit_depth=int(info.get("bitdepth") or 0),
            mime=info.get("mime") or "unknown/unknown",
            media_type=info.get("mediatype") or "UNKNOWN",
            sha1=info.get("sha1") or None,
            metadata=normalize_metadata(info.get("metadata")),
            visibility=int(visibility),
            archive_name=None if current else info.get("archivename"),
            url=info.get("url"),
            user_id=0 if visibility & Visibility.USER else int(info.get("userid") or 0),
            user_name="" if visibility & Visibility.USER else (info.get("user") or ""),
            comment="" if visibility & Visibility.COMMENT else (info.get("comment") or ""),
        )


def normalize_metadata(metadata: Any) -> Dict[str, Any]:
    """
    Turn the API's ``[{"name": k, "value": v}, ...]`` lists into a mapping.

    Nested lists of the same shape are converted recursively.
    """
    result: Dict[str, Any] = {}
    if not isinstance(metadata, list):
        return result
    for entry in metadata:
        if not isinstance(entry, Mapping) or "name" not in entry:
            continue
        value = entry.get("value")
        if isinstance(value, list):
            result[entry["name"]] = normalize_metadata(value)
        else:
            result[entry["name"]] = value
    return result


def sanitise_title(namespace: int, title: str) -> str:
    """
    Convert a displayed title to the stored form.

    The namespace prefix is stripped outside the main namespace and spaces
    become underscores: ``(10, "Template:Info box")`` -> ``"Info_box"``.
    """
    if namespace != 0 and ":" in title:
        title = title.split(":", 1)[1]
    return title.replace(" ", "_")


# Namespaces whose pages are not wikitext by default
_NAMESPACE_MODELS = {828: "Scribunto"}
_SUFFIX_MODELS = {".css": "css", ".js": "javascript", ".json": "json"}


def default_content_model(namespace: int, title: str) -> str:
    """Content model a page gets when the remote does not say."""
    if namespace in _NAMESPACE_MODELS:
        return _NAMESPACE_MODELS[namespace]
    # MediaWiki: and User: pages pick their model from the suffix
    if namespace in (2, 8):
        for suffix, model in _SUFFIX_MODELS.items():
            if title.endswith(suffix):
                return model
    return "wikitext"
