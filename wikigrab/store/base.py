"""
Local Store Base Class — Interface every mirror backend implements.

All operations are synchronous and individually atomic. Callers that
need several writes to land together (one revision plus its page row,
one file version) wrap them in ``transaction()``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import List, Optional

from ..models.records import (
    ActorIdentity,
    ArchivedRevision,
    ChangeTag,
    FileVersion,
    LocalRevision,
    PageRecord,
    PageRestriction,
)


class LocalStore(ABC):
    """
    Abstract entity repository for mirrored content.

    Implementations must keep ``(namespace, title)`` unique for pages and
    ``actor_name`` unique for actors.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Group writes into one atomic unit. Nested calls join the outer unit."""

    # ─── Revisions ──────────────────────────────────────────

    @abstractmethod
    def get_revision(self, rev_id: int) -> Optional[LocalRevision]:
        pass

    @abstractmethod
    def insert_revision(self, revision: LocalRevision) -> None:
        pass

    @abstractmethod
    def replace_revision_content(
        self,
        rev_id: int,
        content: str,
        sha1: Optional[str],
        content_model: Optional[str] = None,
    ) -> None:
        """Rewrite content, length and sha1 only; all other fields stay as they are."""

    @abstractmethod
    def get_archived_revision(self, rev_id: int) -> Optional[ArchivedRevision]:
        pass

    @abstractmethod
    def insert_archived_revision(self, revision: ArchivedRevision) -> None:
        pass

    # ─── Pages ──────────────────────────────────────────────

    @abstractmethod
    def get_page(self, page_id: int) -> Optional[PageRecord]:
        pass

    @abstractmethod
    def get_page_by_title(self, namespace: int, title: str) -> Optional[PageRecord]:
        pass

    @abstractmethod
    def insert_page(self, page: PageRecord) -> None:
        pass

    @abstractmethod
    def update_page(self, page: PageRecord) -> None:
        pass

    @abstractmethod
    def move_page(self, page_id: int, namespace: int, title: str) -> None:
        pass

    # ─── Users & actors ─────────────────────────────────────

    @abstractmethod
    def get_actor_by_user_id(self, user_id: int) -> Optional[ActorIdentity]:
        """Identity of a registered user; ``actor_id`` is 0 if no actor row exists yet."""

    @abstractmethod
    def get_actor_by_name(self, name: str) -> Optional[ActorIdentity]:
        pass

    @abstractmethod
    def find_user_id_by_name(self, name: str) -> Optional[int]:
        pass

    @abstractmethod
    def create_user(self, name: str, user_id: Optional[int] = None, password: str = "") -> int:
        """Create a local account and return its id."""

    @abstractmethod
    def acquire_actor(self, user_id: int, name: str) -> ActorIdentity:
        """Return the actor for ``(user_id, name)``, creating user/actor rows as needed."""

    @abstractmethod
    def rename_user(self, user_id: int, new_name: str) -> None:
        """Rename the user row and its actor row in place."""

    @abstractmethod
    def unknown_actor(self) -> ActorIdentity:
        pass

    # ─── Change tags ────────────────────────────────────────

    @abstractmethod
    def acquire_tag_id(self, name: str) -> int:
        pass

    @abstractmethod
    def add_tag_association(
        self,
        tag_id: int,
        rev_id: Optional[int] = None,
        log_id: Optional[int] = None,
    ) -> bool:
        """Insert an association row, ignoring duplicates. True if a row was added."""

    @abstractmethod
    def increment_tag_count(self, tag_id: int, by: int = 1) -> None:
        pass

    @abstractmethod
    def get_tag(self, name: str) -> Optional[ChangeTag]:
        pass

    @abstractmethod
    def tags_for_revision(self, rev_id: int) -> List[str]:
        pass

    # ─── Page restrictions ──────────────────────────────────

    @abstractmethod
    def delete_restrictions(self, page_id: int) -> None:
        pass

    @abstractmethod
    def insert_restriction(self, restriction: PageRestriction) -> None:
        pass

    @abstractmethod
    def get_restrictions(self, page_id: int) -> List[PageRestriction]:
        pass

    # ─── Files ──────────────────────────────────────────────

    @abstractmethod
    def get_image(self, name: str) -> Optional[FileVersion]:
        pass

    @abstractmethod
    def insert_image(self, version: FileVersion, actor_id: int) -> bool:
        """Register the current version. False if a row for the name already exists."""

    @abstractmethod
    def old_image_exists(self, name: str, archive_name: str, timestamp: str) -> bool:
        pass

    @abstractmethod
    def insert_old_image(self, version: FileVersion, actor_id: int) -> None:
        pass

    def close(self) -> None:
        """Release the underlying connection."""
