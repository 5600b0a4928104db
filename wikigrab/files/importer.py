"""
File Importer — Mirror file versions and their bytes.

Walks ``generator=allimages`` with the full ``imageinfo`` history. The
current version of a file is registered in ``image``, older versions in
``oldimage`` (once), and the bytes of every version go through the
``FileTransferManager`` into the local file repository:

    <repo>/<name>                   current version
    <repo>/archive/<archive_name>   older versions

Rows are written before the bytes are fetched, so a failed download is
healed by the next run: the row is already there and the transfer is
retried.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..models.outcome import ItemOutcome
from ..models.records import FileVersion, Visibility, sanitise_title
from ..store.base import LocalStore
from ..sync.identity import IdentityReconciler
from .transfer import FileTransferManager

logger = logging.getLogger(__name__)

FILE_NAMESPACE = 6
IMAGEINFO_PROPS = (
    "timestamp|user|userid|comment|url|size|dimensions|sha1|mime|mediatype|metadata|bitdepth|archivename"
)


class FileImporter:
    job = "files"

    def __init__(
        self,
        store: LocalStore,
        reconciler: IdentityReconciler,
        transfer: FileTransferManager,
        repo_dir: Path,
    ):
        self.store = store
        self.reconciler = reconciler
        self.transfer = transfer
        self.repo_dir = repo_dir
        self.versions_stored = 0
        self.versions_skipped = 0
        self.transfers_failed = 0

    @staticmethod
    def params(start: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "generator": "allimages",
            "gailimit": "50",
            "prop": "imageinfo",
            "iiprop": IMAGEINFO_PROPS,
            "iilimit": "max",
        }
        if start:
            params["gaifrom"] = start
        return params

    @staticmethod
    def extract(payload: Mapping[str, Any]) -> Optional[List[Any]]:
        result = payload.get("query")
        if not isinstance(result, Mapping) or "pages" not in result:
            return None
        return list(result["pages"] or [])

    def destination(self, version: FileVersion) -> Path:
        if version.is_current:
            return self.repo_dir / version.name
        return self.repo_dir / "archive" / (version.archive_name or "")

    def process_file(self, page: Mapping[str, Any]) -> ItemOutcome:
        name = sanitise_title(FILE_NAMESPACE, page.get("title") or "")
        key = f"file:{name}"
        infos = page.get("imageinfo") or []
        if not name or not infos:
            return ItemOutcome.skipped(key, "no file versions")

        failed: List[str] = []
        for info in infos:
            version = FileVersion.from_api(name, info, current="archivename" not in info)
            if not self._store_version(version):
                failed.append(version.uploaded_at)

        if failed:
            return ItemOutcome.failed(
                key,
                "transfer_failed",
                f"{len(failed)} version(s) could not be downloaded: {failed}",
                retryable=True,
            )
        return ItemOutcome.ok(key, {"versions": len(infos)})

    def _store_version(self, version: FileVersion) -> bool:
        label = version.name if version.is_current else f"{version.name} version {version.timestamp}"

        if version.url is None:
            # Suppressed versions come without URL or MIME for us
            logger.info(f"File {label} suppressed, skipping it", extra={"file_name": version.name})
            self.versions_skipped += 1
            return True
        if version.mime == "video/youtube" and self.transfer.is_transcoding(version.url):
            logger.info(f"File {label} is an external video, skipping it", extra={"file_name": version.name})
            self.versions_skipped += 1
            return True
        if not version.is_current and not version.archive_name:
            logger.warning(f"File {label} has no archive name, skipping it", extra={"file_name": version.name})
            self.versions_skipped += 1
            return True

        actor = self.reconciler.resolve(version.user_id, version.user_name)
        with self.store.transaction():
            if version.is_current:
                if not self.store.insert_image(version, actor.actor_id):
                    logger.debug(f"File {label} already registered", extra={"file_name": version.name})
            elif not self.store.old_image_exists(version.name, version.archive_name, version.timestamp):
                self.store.insert_old_image(version, actor.actor_id)

        if version.visibility & Visibility.TEXT and version.sha1 is None:
            logger.info(f"File {label} content hidden, row kept without bytes", extra={"file_name": version.name})
            self.versions_skipped += 1
            return True

        result = self.transfer.fetch(version.name, version.url, version.sha1, self.destination(version))
        if not result.ok:
            self.transfers_failed += 1
            return False
        self.versions_stored += 1
        return True
