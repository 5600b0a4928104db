"""
File Transfer Manager — Checksum-verified downloads with bounded retry.

## Flow

1. A file already at the destination with the expected SHA-1 is accepted
   without touching the network. One with a different SHA-1 is purged.
2. Bytes are streamed into a private temp file in the destination
   directory and hashed on the way.
3. A failed attempt (checksum, HTTP status or transport error) is retried
   up to ``max_retries`` attempts in total. Retry ``n`` appends
   ``purge=n`` to the URL to get past edge caches and sleeps
   ``retry_delay * n`` seconds first.
4. A verified temp file is moved into place with ``os.replace``. Nothing
   is ever left at the destination after a failed fetch.

## Transcoding Origins

Some hosts serve a lossy re-encode unless ``format=original`` is on the
URL. For those hosts the flag is added, except for ``.webp`` files: asked
for the "original" there, the host answers with a PNG, which can never
match the WebP checksum. WebP files are instead fetched plain with
``image/webp`` leading the ``Accept`` header.

## Usage

    transfer = FileTransferManager(transcoding_hosts=["static.example.org"])
    result = transfer.fetch("Foo.png", url, sha1, repo / "Foo.png")
    if not result.ok:
        print(result.reason)
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 5.0
CHUNK_SIZE = 64 * 1024

# Formats the transcoding hosts mangle when asked for the original
ORIGINAL_FLAG_EXEMPT = (".webp",)

mimetypes.add_type("image/webp", ".webp")


def default_file_mode() -> int:
    """Mode a plain ``open()`` would give a new file under the current umask."""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


@dataclass
class TransferResult:
    """Outcome of one ``fetch``. ``attempts`` is 0 when the file was already valid."""

    ok: bool
    name: str
    path: Path
    attempts: int = 0
    reason: Optional[str] = None  # checksum, http, transport, io
    url: Optional[str] = None

    @property
    def downloaded(self) -> bool:
        return self.ok and self.attempts > 0


def file_sha1(path: Path) -> str:
    """Hex SHA-1 of a file's bytes."""
    digest = hashlib.sha1()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def with_query(url: str, param: str) -> str:
    """Append ``param`` (``key=value``) to ``url``."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{param}"


def accept_header(name: str) -> Optional[str]:
    """``Accept`` value preferring the MIME type implied by the extension."""
    mime, _ = mimetypes.guess_type(name)
    if not mime:
        return None
    return f"{mime},*/*;q=0.8"


class FileTransferManager:
    """Downloads file versions into the local file repository."""

    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transcoding_hosts: Iterable[str] = (),
        timeout: float = 90.0,
    ):
        self._http = http or httpx.Client(timeout=timeout, follow_redirects=True)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.transcoding_hosts = [h.lower() for h in transcoding_hosts if h]
        self.file_mode = default_file_mode()

    def is_transcoding(self, url: str) -> bool:
        host = (httpx.URL(url).host or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.transcoding_hosts)

    def source_url(self, name: str, url: str) -> str:
        """URL to request, with ``format=original`` where the host needs it."""
        if not self.is_transcoding(url):
            return url
        lowered = (name + " " + url).lower()
        if any(ext in lowered for ext in ORIGINAL_FLAG_EXEMPT):
            return url
        return with_query(url, "format=original")

    def fetch(
        self,
        name: str,
        url: str,
        expected_sha1: Optional[str],
        destination: Path,
    ) -> TransferResult:
        if destination.exists():
            if expected_sha1 is None or file_sha1(destination) == expected_sha1:
                return TransferResult(ok=True, name=name, path=destination)
            logger.info(f"File {name} doesn't match expected sha1, purging it", extra={"file_name": name})
            destination.unlink()

        source = self.source_url(name, url)
        headers: Dict[str, str] = {}
        accept = accept_header(name)
        if accept:
            headers["Accept"] = accept

        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=".grabfile-")
        # mkstemp creates 0600; mirrored files get the usual mode
        os.fchmod(fd, self.file_mode)
        os.close(fd)
        tmp_path = Path(tmp_name)

        reason: Optional[str] = None
        target = source
        attempts = 0
        try:
            for attempt in range(self.max_retries):
                if attempt > 0:
                    target = with_query(source, f"purge={attempt}")
                    time.sleep(self.retry_delay * attempt)
                attempts += 1

                reason = self._download(target, headers, tmp_path, expected_sha1, name)
                if reason is None:
                    os.replace(tmp_path, destination)
                    logger.debug(f"Stored {name} after {attempts} attempt(s)", extra={"file_name": name})
                    return TransferResult(ok=True, name=name, path=destination, attempts=attempts, url=target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        logger.error(
            f"Failed to save file {name} from URL {url} after {attempts} attempts ({reason})",
            extra={"file_name": name},
        )
        return TransferResult(
            ok=False,
            name=name,
            path=destination,
            attempts=attempts,
            reason=reason,
            url=target,
        )

    def _download(
        self,
        url: str,
        headers: Dict[str, str],
        tmp_path: Path,
        expected_sha1: Optional[str],
        name: str,
    ) -> Optional[str]:
        """One attempt. Returns None on success, otherwise the failure reason."""
        digest = hashlib.sha1()
        try:
            with self._http.stream("GET", url, headers=headers) as response:
                if response.status_code >= 400:
                    logger.warning(f"Download of {name} got HTTP {response.status_code}", extra={"file_name": name})
                    return "http"
                with tmp_path.open("wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        digest.update(chunk)
        except httpx.HTTPError as e:
            logger.warning(f"Download of {name} failed: {e}", extra={"file_name": name})
            return "transport"
        except OSError as e:
            logger.warning(f"Writing {name} failed: {e}", extra={"file_name": name})
            return "io"

        if expected_sha1 is not None and digest.hexdigest() != expected_sha1:
            logger.warning(
                f"Checksum mismatch for {name}: got {digest.hexdigest()}, expected {expected_sha1}",
                extra={"file_name": name},
            )
            return "checksum"
        return None

    def close(self) -> None:
        self._http.close()
