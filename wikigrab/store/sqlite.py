"""
SQLite Store — Local mirror backend on a single SQLite file.

The connection runs in autocommit mode; ``transaction()`` opens an
explicit ``BEGIN`` so one logical unit (a revision and its page row, a
file version) commits or rolls back as a whole. A crash therefore leaves
the store consistent up to the last committed unit.

## Usage

    from wikigrab.store.sqlite import SQLiteStore

    store = SQLiteStore(Path("mirror.sqlite"))
    with store.transaction():
        store.insert_revision(rev)
        store.update_page(page)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union

from ..errors import TransientIOError
from ..models.records import (
    ActorIdentity,
    ArchivedRevision,
    ChangeTag,
    FileVersion,
    LocalRevision,
    PageRecord,
    PageRestriction,
)
from .base import LocalStore

logger = logging.getLogger(__name__)

UNKNOWN_ACTOR_NAME = "Unknown user"

SCHEMA = """
CREATE TABLE IF NOT EXISTS user (
    user_id INTEGER PRIMARY KEY,
    user_name TEXT NOT NULL UNIQUE,
    user_password TEXT NOT NULL DEFAULT '',
    user_touched TEXT
);

CREATE TABLE IF NOT EXISTS actor (
    actor_id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_user INTEGER UNIQUE,
    actor_name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS page (
    page_id INTEGER PRIMARY KEY,
    page_namespace INTEGER NOT NULL,
    page_title TEXT NOT NULL,
    page_latest INTEGER NOT NULL DEFAULT 0,
    page_len INTEGER NOT NULL DEFAULT 0,
    page_content_model TEXT,
    page_is_redirect INTEGER NOT NULL DEFAULT 0,
    page_touched TEXT,
    UNIQUE (page_namespace, page_title)
);

CREATE TABLE IF NOT EXISTS revision (
    rev_id INTEGER PRIMARY KEY,
    rev_page INTEGER NOT NULL,
    rev_parent_id INTEGER NOT NULL DEFAULT 0,
    rev_timestamp TEXT NOT NULL,
    rev_actor INTEGER NOT NULL,
    rev_comment TEXT NOT NULL DEFAULT '',
    rev_minor_edit INTEGER NOT NULL DEFAULT 0,
    rev_deleted INTEGER NOT NULL DEFAULT 0,
    rev_len INTEGER NOT NULL DEFAULT 0,
    rev_sha1 TEXT,
    rev_content TEXT NOT NULL DEFAULT '',
    rev_content_model TEXT
);
CREATE INDEX IF NOT EXISTS idx_revision_page ON revision(rev_page, rev_timestamp);

CREATE TABLE IF NOT EXISTS archive (
    ar_rev_id INTEGER PRIMARY KEY,
    ar_namespace INTEGER NOT NULL,
    ar_title TEXT NOT NULL,
    ar_page_id INTEGER NOT NULL DEFAULT 0,
    ar_parent_id INTEGER NOT NULL DEFAULT 0,
    ar_timestamp TEXT NOT NULL,
    ar_actor INTEGER NOT NULL,
    ar_comment TEXT NOT NULL DEFAULT '',
    ar_minor_edit INTEGER NOT NULL DEFAULT 0,
    ar_deleted INTEGER NOT NULL DEFAULT 0,
    ar_len INTEGER NOT NULL DEFAULT 0,
    ar_sha1 TEXT,
    ar_content TEXT NOT NULL DEFAULT '',
    ar_content_model TEXT
);
CREATE INDEX IF NOT EXISTS idx_archive_title ON archive(ar_namespace, ar_title, ar_timestamp);

CREATE TABLE IF NOT EXISTS change_tag_def (
    ctd_id INTEGER PRIMARY KEY AUTOINCREMENT,
    ctd_name TEXT NOT NULL UNIQUE,
    ctd_count INTEGER NOT NULL DEFAULT 0
);

-- 0 stands for "not set" so the UNIQUE key also covers absent ids
CREATE TABLE IF NOT EXISTS change_tag (
    ct_id INTEGER PRIMARY KEY AUTOINCREMENT,
    ct_tag_id INTEGER NOT NULL,
    ct_rev_id INTEGER NOT NULL DEFAULT 0,
    ct_log_id INTEGER NOT NULL DEFAULT 0,
    UNIQUE (ct_tag_id, ct_rev_id, ct_log_id)
);

CREATE TABLE IF NOT EXISTS page_restrictions (
    pr_id INTEGER PRIMARY KEY AUTOINCREMENT,
    pr_page INTEGER NOT NULL,
    pr_type TEXT NOT NULL,
    pr_level TEXT NOT NULL,
    pr_cascade INTEGER NOT NULL DEFAULT 0,
    pr_expiry TEXT NOT NULL DEFAULT 'infinity',
    UNIQUE (pr_page, pr_type)
);

CREATE TABLE IF NOT EXISTS image (
    img_name TEXT PRIMARY KEY,
    img_size INTEGER NOT NULL DEFAULT 0,
    img_width INTEGER NOT NULL DEFAULT 0,
    img_height INTEGER NOT NULL DEFAULT 0,
    img_bits INTEGER NOT NULL DEFAULT 0,
    img_metadata TEXT NOT NULL DEFAULT '{}',
    img_media_type TEXT,
    img_major_mime TEXT,
    img_minor_mime TEXT,
    img_description TEXT NOT NULL DEFAULT '',
    img_actor INTEGER NOT NULL,
    img_timestamp TEXT NOT NULL,
    img_sha1 TEXT
);

CREATE TABLE IF NOT EXISTS oldimage (
    oi_name TEXT NOT NULL,
    oi_archive_name TEXT NOT NULL,
    oi_size INTEGER NOT NULL DEFAULT 0,
    oi_width INTEGER NOT NULL DEFAULT 0,
    oi_height INTEGER NOT NULL DEFAULT 0,
    oi_bits INTEGER NOT NULL DEFAULT 0,
    oi_metadata TEXT NOT NULL DEFAULT '{}',
    oi_media_type TEXT,
    oi_major_mime TEXT,
    oi_minor_mime TEXT,
    oi_description TEXT NOT NULL DEFAULT '',
    oi_actor INTEGER NOT NULL,
    oi_timestamp TEXT NOT NULL,
    oi_deleted INTEGER NOT NULL DEFAULT 0,
    oi_sha1 TEXT,
    UNIQUE (oi_name, oi_archive_name, oi_timestamp)
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SQLiteStore(LocalStore):
    """
    ``LocalStore`` backed by ``sqlite3``.

    One connection per store; the grabber is single-threaded so the
    connection is never shared across threads.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, isolation_level=None)
        except sqlite3.Error as e:
            raise TransientIOError(f"Cannot open store: {e}", {"path": self.db_path}) from e
        self._conn.row_factory = sqlite3.Row
        self._depth = 0
        self._conn.executescript(SCHEMA)
        logger.debug(f"SQLite store ready at {self.db_path}")

    # ─── Plumbing ───────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._execute("BEGIN")
        self._depth = 1
        try:
            yield
        except BaseException:
            self._depth = 0
            self._conn.rollback()
            raise
        self._depth = 0
        try:
            self._execute("COMMIT")
        except BaseException:
            # A failed COMMIT leaves the transaction open
            self._conn.rollback()
            raise

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.OperationalError as e:
            # Locked/busy database, disk I/O: re-running is the recovery path
            raise TransientIOError(f"Store operation failed: {e}", {"sql": sql.split()[0]}) from e

    def _one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self._execute(sql, params).fetchone()

    def close(self) -> None:
        self._conn.close()

    # ─── Revisions ──────────────────────────────────────────

    def get_revision(self, rev_id: int) -> Optional[LocalRevision]:
        row = self._one("SELECT * FROM revision WHERE rev_id = ?", (rev_id,))
        if row is None:
            return None
        return LocalRevision(
            rev_id=row["rev_id"],
            page_id=row["rev_page"],
            parent_id=row["rev_parent_id"],
            timestamp=row["rev_timestamp"],
            actor_id=row["rev_actor"],
            comment=row["rev_comment"],
            content=row["rev_content"],
            content_model=row["rev_content_model"],
            sha1=row["rev_sha1"],
            length=row["rev_len"],
            minor=bool(row["rev_minor_edit"]),
            visibility=row["rev_deleted"],
        )

    def insert_revision(self, revision: LocalRevision) -> None:
        self._execute(
            """
            INSERT INTO revision (
                rev_id, rev_page, rev_parent_id, rev_timestamp, rev_actor,
                rev_comment, rev_minor_edit, rev_deleted, rev_len, rev_sha1,
                rev_content, rev_content_model
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                revision.rev_id,
                revision.page_id,
                revision.parent_id,
                revision.timestamp,
                revision.actor_id,
                revision.comment,
                int(revision.minor),
                revision.visibility,
                revision.length,
                revision.sha1,
                revision.content,
                revision.content_model,
            ),
        )

    def replace_revision_content(
        self,
        rev_id: int,
        content: str,
        sha1: Optional[str],
        content_model: Optional[str] = None,
    ) -> None:
        self._execute(
            """
            UPDATE revision
               SET rev_content = ?, rev_len = ?, rev_sha1 = ?,
                   rev_content_model = COALESCE(?, rev_content_model)
             WHERE rev_id = ?
            """,
            (content, LocalRevision.length_of(content), sha1, content_model, rev_id),
        )

    def get_archived_revision(self, rev_id: int) -> Optional[ArchivedRevision]:
        row = self._one("SELECT * FROM archive WHERE ar_rev_id = ?", (rev_id,))
        if row is None:
            return None
        return ArchivedRevision(
            rev_id=row["ar_rev_id"],
            page_id=row["ar_page_id"],
            parent_id=row["ar_parent_id"],
            namespace=row["ar_namespace"],
            title=row["ar_title"],
            timestamp=row["ar_timestamp"],
            actor_id=row["ar_actor"],
            comment=row["ar_comment"],
            content=row["ar_content"],
            content_model=row["ar_content_model"],
            sha1=row["ar_sha1"],
            length=row["ar_len"],
            minor=bool(row["ar_minor_edit"]),
            visibility=row["ar_deleted"],
        )

    def insert_archived_revision(self, revision: ArchivedRevision) -> None:
        self._execute(
            """
            INSERT INTO archive (
                ar_rev_id, ar_namespace, ar_title, ar_page_id, ar_parent_id,
                ar_timestamp, ar_actor, ar_comment, ar_minor_edit, ar_deleted,
                ar_len, ar_sha1, ar_content, ar_content_model
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                revision.rev_id,
                revision.namespace,
                revision.title,
                revision.page_id,
                revision.parent_id,
                revision.timestamp,
                revision.actor_id,
                revision.comment,
                int(revision.minor),
                revision.visibility,
                revision.length,
                revision.sha1,
                revision.content,
                revision.content_model,
            ),
        )

    # ─── Pages ──────────────────────────────────────────────

    @staticmethod
    def _page(row: Optional[sqlite3.Row]) -> Optional[PageRecord]:
        if row is None:
            return None
        return PageRecord(
            page_id=row["page_id"],
            namespace=row["page_namespace"],
            title=row["page_title"],
            latest=row["page_latest"],
            length=row["page_len"],
            content_model=row["page_content_model"],
            is_redirect=bool(row["page_is_redirect"]),
        )

    def get_page(self, page_id: int) -> Optional[PageRecord]:
        return self._page(self._one("SELECT * FROM page WHERE page_id = ?", (page_id,)))

    def get_page_by_title(self, namespace: int, title: str) -> Optional[PageRecord]:
        return self._page(
            self._one(
                "SELECT * FROM page WHERE page_namespace = ? AND page_title = ?",
                (namespace, title),
            )
        )

    def insert_page(self, page: PageRecord) -> None:
        self._execute(
            """
            INSERT INTO page (
                page_id, page_namespace, page_title, page_latest, page_len,
                page_content_model, page_is_redirect, page_touched
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                page.page_id,
                page.namespace,
                page.title,
                page.latest,
                page.length,
                page.content_model,
                int(page.is_redirect),
                _now_iso(),
            ),
        )

    def update_page(self, page: PageRecord) -> None:
        self._execute(
            """
            UPDATE page
               SET page_namespace = ?, page_title = ?, page_latest = ?, page_len = ?,
                   page_content_model = ?, page_is_redirect = ?, page_touched = ?
             WHERE page_id = ?
            """,
            (
                page.namespace,
                page.title,
                page.latest,
                page.length,
                page.content_model,
                int(page.is_redirect),
                _now_iso(),
                page.page_id,
            ),
        )

    def move_page(self, page_id: int, namespace: int, title: str) -> None:
        self._execute(
            "UPDATE page SET page_namespace = ?, page_title = ?, page_touched = ? WHERE page_id = ?",
            (namespace, title, _now_iso(), page_id),
        )

    # ─── Users & actors ─────────────────────────────────────

    def get_actor_by_user_id(self, user_id: int) -> Optional[ActorIdentity]:
        row = self._one(
            """
            SELECT u.user_id, u.user_name, u.user_password, a.actor_id
              FROM user u LEFT JOIN actor a ON a.actor_user = u.user_id
             WHERE u.user_id = ?
            """,
            (user_id,),
        )
        if row is None:
            return None
        return ActorIdentity(
            actor_id=row["actor_id"] or 0,
            user_id=row["user_id"],
            name=row["user_name"],
            migrated=bool(row["user_password"]),
        )

    def get_actor_by_name(self, name: str) -> Optional[ActorIdentity]:
        row = self._one(
            """
            SELECT a.actor_id, a.actor_user, a.actor_name, u.user_password
              FROM actor a LEFT JOIN user u ON u.user_id = a.actor_user
             WHERE a.actor_name = ?
            """,
            (name,),
        )
        if row is None:
            return None
        return ActorIdentity(
            actor_id=row["actor_id"],
            user_id=row["actor_user"] or 0,
            name=row["actor_name"],
            migrated=bool(row["user_password"]),
        )

    def find_user_id_by_name(self, name: str) -> Optional[int]:
        row = self._one("SELECT user_id FROM user WHERE user_name = ?", (name,))
        return row["user_id"] if row else None

    def create_user(self, name: str, user_id: Optional[int] = None, password: str = "") -> int:
        cursor = self._execute(
            "INSERT INTO user (user_id, user_name, user_password, user_touched) VALUES (?, ?, ?, ?)",
            (user_id, name, password, _now_iso()),
        )
        return user_id if user_id is not None else int(cursor.lastrowid)

    def acquire_actor(self, user_id: int, name: str) -> ActorIdentity:
        with self.transaction():
            if user_id:
                self._execute(
                    "INSERT OR IGNORE INTO user (user_id, user_name, user_touched) VALUES (?, ?, ?)",
                    (user_id, name, _now_iso()),
                )
                row = self._one("SELECT actor_id FROM actor WHERE actor_user = ?", (user_id,))
                if row is None:
                    self._execute(
                        "INSERT INTO actor (actor_user, actor_name) VALUES (?, ?)",
                        (user_id, name),
                    )
                identity = self.get_actor_by_user_id(user_id)
                if identity is None:
                    raise TransientIOError(f"Actor for user {user_id} vanished after insert", {"user_id": user_id})
                return identity

            row = self._one(
                "SELECT actor_id FROM actor WHERE actor_name = ? AND actor_user IS NULL",
                (name,),
            )
            if row is None:
                cursor = self._execute("INSERT INTO actor (actor_name) VALUES (?)", (name,))
                return ActorIdentity(actor_id=int(cursor.lastrowid), user_id=0, name=name)
            return ActorIdentity(actor_id=row["actor_id"], user_id=0, name=name)

    def rename_user(self, user_id: int, new_name: str) -> None:
        with self.transaction():
            self._execute(
                "UPDATE user SET user_name = ?, user_touched = ? WHERE user_id = ?",
                (new_name, _now_iso(), user_id),
            )
            self._execute(
                "UPDATE actor SET actor_name = ? WHERE actor_user = ?",
                (new_name, user_id),
            )

    def unknown_actor(self) -> ActorIdentity:
        return self.acquire_actor(0, UNKNOWN_ACTOR_NAME)

    # ─── Change tags ────────────────────────────────────────

    def acquire_tag_id(self, name: str) -> int:
        self._execute("INSERT OR IGNORE INTO change_tag_def (ctd_name) VALUES (?)", (name,))
        row = self._one("SELECT ctd_id FROM change_tag_def WHERE ctd_name = ?", (name,))
        return int(row["ctd_id"])

    def add_tag_association(
        self,
        tag_id: int,
        rev_id: Optional[int] = None,
        log_id: Optional[int] = None,
    ) -> bool:
        cursor = self._execute(
            "INSERT OR IGNORE INTO change_tag (ct_tag_id, ct_rev_id, ct_log_id) VALUES (?, ?, ?)",
            (tag_id, rev_id or 0, log_id or 0),
        )
        return cursor.rowcount > 0

    def increment_tag_count(self, tag_id: int, by: int = 1) -> None:
        self._execute(
            "UPDATE change_tag_def SET ctd_count = ctd_count + ? WHERE ctd_id = ?",
            (by, tag_id),
        )

    def get_tag(self, name: str) -> Optional[ChangeTag]:
        row = self._one("SELECT * FROM change_tag_def WHERE ctd_name = ?", (name,))
        if row is None:
            return None
        return ChangeTag(tag_id=row["ctd_id"], name=row["ctd_name"], count=row["ctd_count"])

    def tags_for_revision(self, rev_id: int) -> List[str]:
        rows = self._execute(
            """
            SELECT d.ctd_name FROM change_tag t
              JOIN change_tag_def d ON d.ctd_id = t.ct_tag_id
             WHERE t.ct_rev_id = ?
             ORDER BY d.ctd_name
            """,
            (rev_id,),
        ).fetchall()
        return [r["ctd_name"] for r in rows]

    # ─── Page restrictions ──────────────────────────────────

    def delete_restrictions(self, page_id: int) -> None:
        self._execute("DELETE FROM page_restrictions WHERE pr_page = ?", (page_id,))

    def insert_restriction(self, restriction: PageRestriction) -> None:
        self._execute(
            """
            INSERT INTO page_restrictions (pr_page, pr_type, pr_level, pr_cascade, pr_expiry)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                restriction.page_id,
                restriction.type,
                restriction.level,
                int(restriction.cascade),
                restriction.expiry,
            ),
        )

    def get_restrictions(self, page_id: int) -> List[PageRestriction]:
        rows = self._execute(
            "SELECT * FROM page_restrictions WHERE pr_page = ? ORDER BY pr_type",
            (page_id,),
        ).fetchall()
        return [
            PageRestriction(
                page_id=r["pr_page"],
                type=r["pr_type"],
                level=r["pr_level"],
                cascade=bool(r["pr_cascade"]),
                expiry=r["pr_expiry"],
            )
            for r in rows
        ]

    # ─── Files ──────────────────────────────────────────────

    def get_image(self, name: str) -> Optional[FileVersion]:
        row = self._one("SELECT * FROM image WHERE img_name = ?", (name,))
        if row is None:
            return None
        return FileVersion(
            name=row["img_name"],
            uploaded_at=row["img_timestamp"],
            size=row["img_size"],
            width=row["img_width"],
            height=row["img_height"],
            bit_depth=row["img_bits"],
            mime=f"{row['img_major_mime']}/{row['img_minor_mime']}",
            media_type=row["img_media_type"] or "UNKNOWN",
            sha1=row["img_sha1"],
            metadata=json.loads(row["img_metadata"] or "{}"),
            comment=row["img_description"],
        )

    def insert_image(self, version: FileVersion, actor_id: int) -> bool:
        cursor = self._execute(
            """
            INSERT OR IGNORE INTO image (
                img_name, img_size, img_width, img_height, img_bits, img_metadata,
                img_media_type, img_major_mime, img_minor_mime, img_description,
                img_actor, img_timestamp, img_sha1
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                version.name,
                version.size,
                version.width,
                version.height,
                version.bit_depth,
                json.dumps(version.metadata, default=str),
                version.media_type,
                version.major_mime,
                version.minor_mime,
                version.comment,
                actor_id,
                version.uploaded_at,
                version.sha1,
            ),
        )
        return cursor.rowcount > 0

    def old_image_exists(self, name: str, archive_name: str, timestamp: str) -> bool:
        row = self._one(
            """
            SELECT 1 FROM oldimage
             WHERE oi_name = ? AND oi_archive_name = ? AND oi_timestamp = ?
            """,
            (name, archive_name, timestamp),
        )
        return row is not None

    def insert_old_image(self, version: FileVersion, actor_id: int) -> None:
        self._execute(
            """
            INSERT INTO oldimage (
                oi_name, oi_archive_name, oi_size, oi_width, oi_height, oi_bits,
                oi_metadata, oi_media_type, oi_major_mime, oi_minor_mime,
                oi_description, oi_actor, oi_timestamp, oi_deleted, oi_sha1
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                version.name,
                version.archive_name,
                version.size,
                version.width,
                version.height,
                version.bit_depth,
                json.dumps(version.metadata, default=str),
                version.media_type,
                version.major_mime,
                version.minor_mime,
                version.comment,
                actor_id,
                version.timestamp,
                version.visibility,
                version.sha1,
            ),
        )
