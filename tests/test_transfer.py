"""
Tests for the File Transfer Manager.
"""

import hashlib
import os
import stat
from unittest.mock import patch

import httpx
import pytest

from wikigrab.files.transfer import FileTransferManager, accept_header, default_file_mode, with_query

GOOD = b"real image bytes"
GOOD_SHA1 = hashlib.sha1(GOOD).hexdigest()


def make_manager(handler, **kwargs):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return FileTransferManager(http=http, retry_delay=2.0, **kwargs)


@pytest.fixture
def no_sleep():
    with patch("wikigrab.files.transfer.time.sleep") as sleep:
        yield sleep


class TestHelpers:
    """Tests for URL and header helpers."""

    def test_with_query(self):
        assert with_query("https://x/a.png", "purge=1") == "https://x/a.png?purge=1"
        assert with_query("https://x/a.png?v=2", "purge=1") == "https://x/a.png?v=2&purge=1"

    def test_accept_header(self):
        assert accept_header("Foo.webp") == "image/webp,*/*;q=0.8"
        assert accept_header("Foo.png") == "image/png,*/*;q=0.8"
        assert accept_header("Foo") is None


class TestFetch:
    """Tests for checksum-verified downloads."""

    def test_valid_existing_file_needs_no_download(self, tmp_path):
        """A file already holding the expected checksum costs zero attempts."""
        destination = tmp_path / "Foo.png"
        destination.write_bytes(GOOD)

        def handler(request):
            raise AssertionError("no request expected")

        result = make_manager(handler).fetch("Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, destination)

        assert result.ok is True
        assert result.attempts == 0
        assert result.downloaded is False

    def test_download_into_place(self, tmp_path, no_sleep):
        destination = tmp_path / "archive" / "20200101!Foo.png"
        manager = make_manager(lambda request: httpx.Response(200, content=GOOD))

        result = manager.fetch("Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, destination)

        assert result.ok and result.attempts == 1
        assert destination.read_bytes() == GOOD
        no_sleep.assert_not_called()

    def test_downloaded_file_gets_umask_mode(self, tmp_path, no_sleep):
        destination = tmp_path / "Foo.png"
        old_umask = os.umask(0o022)
        try:
            manager = make_manager(lambda request: httpx.Response(200, content=GOOD))
            manager.fetch("Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, destination)
        finally:
            os.umask(old_umask)

        assert stat.S_IMODE(destination.stat().st_mode) == 0o644

    def test_default_file_mode_follows_umask(self):
        old_umask = os.umask(0o027)
        try:
            assert default_file_mode() == 0o640
        finally:
            os.umask(old_umask)

    def test_stale_file_is_replaced(self, tmp_path, no_sleep):
        destination = tmp_path / "Foo.png"
        destination.write_bytes(b"old bytes")
        manager = make_manager(lambda request: httpx.Response(200, content=GOOD))

        result = manager.fetch("Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, destination)

        assert result.downloaded
        assert destination.read_bytes() == GOOD

    def test_retry_adds_purge_and_backs_off(self, tmp_path, no_sleep):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            body = GOOD if len(urls) == 3 else b"cached garbage"
            return httpx.Response(200, content=body)

        result = make_manager(handler).fetch(
            "Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, tmp_path / "Foo.png"
        )

        assert result.ok and result.attempts == 3
        assert urls == [
            "https://up.example.org/Foo.png",
            "https://up.example.org/Foo.png?purge=1",
            "https://up.example.org/Foo.png?purge=2",
        ]
        assert [c.args[0] for c in no_sleep.call_args_list] == [2.0, 4.0]

    def test_exhausted_retries_leave_nothing_behind(self, tmp_path, no_sleep):
        destination = tmp_path / "Foo.png"
        manager = make_manager(lambda request: httpx.Response(200, content=b"wrong"), max_retries=2)

        result = manager.fetch("Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, destination)

        assert result.ok is False
        assert result.reason == "checksum"
        assert result.attempts == 2
        assert not destination.exists()
        assert list(tmp_path.iterdir()) == []

    def test_http_error_reason(self, tmp_path, no_sleep):
        manager = make_manager(lambda request: httpx.Response(404), max_retries=1)
        result = manager.fetch("Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, tmp_path / "Foo.png")
        assert result.reason == "http"

    def test_transport_error_reason(self, tmp_path, no_sleep):
        def handler(request):
            raise httpx.ConnectError("connection reset", request=request)

        result = make_manager(handler, max_retries=1).fetch(
            "Foo.png", "https://up.example.org/Foo.png", GOOD_SHA1, tmp_path / "Foo.png"
        )
        assert result.ok is False
        assert result.reason == "transport"
        assert list(tmp_path.iterdir()) == []

    def test_unknown_checksum_accepts_any_bytes(self, tmp_path, no_sleep):
        manager = make_manager(lambda request: httpx.Response(200, content=b"anything"))
        assert manager.fetch("Foo.png", "https://up.example.org/Foo.png", None, tmp_path / "Foo.png").ok


class TestTranscodingHosts:
    """Tests for format=original handling."""

    def test_original_flag_added_for_transcoding_host(self, tmp_path, no_sleep):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=GOOD)

        manager = make_manager(handler, transcoding_hosts=["cdn.example.org"])
        manager.fetch("Foo.png", "https://img.cdn.example.org/Foo.png", GOOD_SHA1, tmp_path / "Foo.png")

        assert str(seen[0].url) == "https://img.cdn.example.org/Foo.png?format=original"
        assert seen[0].headers["Accept"] == "image/png,*/*;q=0.8"

    def test_webp_is_fetched_without_original_flag(self, tmp_path, no_sleep):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=GOOD)

        manager = make_manager(handler, transcoding_hosts=["cdn.example.org"])
        manager.fetch("Foo.webp", "https://cdn.example.org/Foo.webp", GOOD_SHA1, tmp_path / "Foo.webp")

        assert str(seen[0].url) == "https://cdn.example.org/Foo.webp"
        assert seen[0].headers["Accept"] == "image/webp,*/*;q=0.8"

    def test_other_hosts_are_left_alone(self):
        manager = FileTransferManager(transcoding_hosts=["cdn.example.org"])
        try:
            assert manager.source_url("Foo.png", "https://upload.example.org/Foo.png") == (
                "https://upload.example.org/Foo.png"
            )
            assert manager.is_transcoding("https://notcdn.example.org/x") is False
        finally:
            manager.close()
