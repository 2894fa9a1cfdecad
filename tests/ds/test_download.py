"""Tests for ds.download: HTTP via httpx.MockTransport, SFTP with a patched fetch."""

from __future__ import annotations

import gzip
import io
import tarfile
import zipfile
from pathlib import Path
from unittest import mock

import httpx
import paramiko
import pytest

from tabds.config import RemoteConfig, Settings
from tabds.ds.download import (
    DownloadConfig,
    DownloadManager,
    SftpFetcher,
    is_archive,
    map_nested,
    url_to_filename,
)
from tabds.ds.types import DownloadError, DownloadMode

HELLO_SHA = "sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"

_RealClient = httpx.Client


@pytest.fixture()
def http(monkeypatch):
    """Route every httpx.Client through a MockTransport; returns the request log."""
    state = {"requests": [], "responses": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(str(request.url))
        if state["responses"]:
            return state["responses"].pop(0)
        return httpx.Response(200, content=b"hello")

    def factory(**kwargs):
        kwargs.pop("proxy", None)
        return _RealClient(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr("tabds.ds.download.httpx.Client", factory)
    monkeypatch.setattr("tabds.ds.download.time.sleep", lambda _s: None)
    return state


@pytest.fixture()
def dl(settings):
    return DownloadManager("scores", DownloadConfig(retry_delay=0), settings=settings)


class TestHelpers:
    def test_map_nested(self):
        data = {"train": ["a", "b"], "test": ("c",), "extra": "d"}
        assert map_nested(str.upper, data) == {"train": ["A", "B"], "test": ("C",), "extra": "D"}

    def test_map_nested_rejects_numbers(self):
        with pytest.raises(TypeError, match="Unsupported"):
            map_nested(str.upper, [1])

    def test_url_to_filename(self):
        a = url_to_filename("https://example.com/data/train.csv?x=1")
        assert a.endswith("-train.csv")
        assert a == url_to_filename("https://example.com/data/train.csv?x=1")
        assert a != url_to_filename("https://example.com/other/train.csv")

    def test_is_archive(self):
        assert is_archive("a.tar.gz") and is_archive("a.ZIP") and is_archive("a.tgz")
        assert not is_archive("a.csv.gz")


class TestLocalFiles:
    def test_local_paths_pass_through(self, dl, tmp_path):
        p = tmp_path / "hello.txt"
        p.write_bytes(b"hello")
        assert dl.download({"train": [str(p)]}) == {"train": [str(p)]}
        assert dl.recorded_checksums == {str(p): {"num_bytes": 5, "checksum": HELLO_SHA}}
        assert dl.downloaded_size == 5

    def test_missing_local_file(self, dl, tmp_path):
        with pytest.raises(FileNotFoundError, match="doesn't exist"):
            dl.download(str(tmp_path / "missing.csv"))

    def test_iter_files_skips_hidden(self, dl, tmp_path):
        (tmp_path / "d" / ".git").mkdir(parents=True)
        (tmp_path / "d" / "a.csv").write_text("x")
        (tmp_path / "d" / ".git" / "b.csv").write_text("x")
        (tmp_path / "d" / "__pycache__").mkdir()
        (tmp_path / "d" / "__pycache__" / "c.csv").write_text("x")
        (tmp_path / "d" / "_notes.csv").write_text("x")
        files = list(dl.iter_files([str(tmp_path / "d")]))
        assert [Path(f).name for f in files] == ["a.csv"]


class TestHttpDownload:
    URL = "https://example.com/data/train.csv"

    def test_download_and_cache(self, dl, http, settings):
        local = dl.download(self.URL)
        assert Path(local).parent == settings.downloads_dir
        assert Path(local).read_bytes() == b"hello"
        assert dl.recorded_checksums[self.URL]["checksum"] == HELLO_SHA

        again = DownloadManager(download_config=DownloadConfig(retry_delay=0), settings=settings)
        assert again.download(self.URL) == local
        assert len(http["requests"]) == 1

    def test_force_redownload(self, dl, http, settings):
        dl.download(self.URL)
        forced = DownloadManager(
            download_config=DownloadConfig(retry_delay=0),
            download_mode=DownloadMode.FORCE_REDOWNLOAD,
            settings=settings,
        )
        forced.download(self.URL)
        assert len(http["requests"]) == 2

    def test_retry_then_success(self, dl, http):
        http["responses"] = [httpx.Response(503), httpx.Response(200, content=b"hello")]
        local = dl.download(self.URL)
        assert Path(local).read_bytes() == b"hello"
        assert len(http["requests"]) == 2

    def test_all_attempts_fail(self, dl, http):
        http["responses"] = [httpx.Response(404) for _ in range(3)]
        with pytest.raises(DownloadError, match="Failed after 3 attempts"):
            dl.download(self.URL)
        assert not list(dl.downloads_dir.glob("*.incomplete"))

    def test_offline_without_cache(self, http, settings):
        offline = DownloadManager(download_config=DownloadConfig(offline=True), settings=settings)
        with pytest.raises(DownloadError, match="Offline mode"):
            offline.download(self.URL)
        assert http["requests"] == []


class TestExtract:
    def test_tar_gz(self, dl, tmp_path):
        archive = tmp_path / "data.tar.gz"
        with tarfile.open(archive, "w:gz") as tf:
            payload = b"x\n1\n"
            info = tarfile.TarInfo("inner/train.csv")
            info.size = len(payload)
            tf.addfile(info, io.BytesIO(payload))
        out = Path(dl.extract(str(archive)))
        assert out.parent == dl.extracted_dir
        assert (out / "inner" / "train.csv").read_bytes() == b"x\n1\n"
        assert dl.extract(str(archive)) == str(out)

    def test_zip(self, dl, tmp_path):
        archive = tmp_path / "data.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("train.jsonl", '{"a": 1}\n')
        out = Path(dl.download_and_extract(str(archive)))
        assert (out / "train.jsonl").is_file()

    def test_gzip_file(self, dl, tmp_path):
        src = tmp_path / "train.csv.gz"
        with gzip.open(src, "wb") as fh:
            fh.write(b"x\n1\n")
        out = Path(dl.extract(str(src)))
        assert out.name.endswith("-train.csv")
        assert out.read_bytes() == b"x\n1\n"

    def test_plain_file_unchanged(self, dl, tmp_path):
        p = tmp_path / "train.csv"
        p.write_text("x\n")
        assert dl.extract([str(p)]) == [str(p)]


class TestSftp:
    URL = "sftp://data.example.com/srv/data/train.csv"

    @pytest.fixture()
    def remote_settings(self, tmp_path):
        return Settings(
            cache_root=tmp_path / "cache",
            remotes={"lab": RemoteConfig(name="lab", host="data.example.com", user="ci", port=2222, key_file="/k")},
        )

    def test_remote_lookup(self, remote_settings):
        remote, path = SftpFetcher(remote_settings.remotes)._remote_for(self.URL)
        assert (remote.user, remote.port, remote.key_file) == ("ci", 2222, "/k")
        assert path == "/srv/data/train.csv"

    def test_user_in_url_wins(self, remote_settings):
        remote, _ = SftpFetcher(remote_settings.remotes)._remote_for("sftp://bob@data.example.com/x.csv")
        assert remote.user == "bob"

    def test_unknown_host_without_user(self):
        with pytest.raises(DownloadError, match="No user given"):
            SftpFetcher()._remote_for("sftp://other.example.com/x.csv")

    def test_download_through_manager(self, remote_settings):
        def fake_get(self, remote, remote_path, local_path):
            Path(local_path).write_bytes(b"hello")

        dl = DownloadManager(download_config=DownloadConfig(retry_delay=0), settings=remote_settings)
        with mock.patch.object(SftpFetcher, "_get", fake_get):
            local = dl.download(self.URL)
        assert Path(local).read_bytes() == b"hello"
        assert dl.recorded_checksums[self.URL]["checksum"] == HELLO_SHA

    def test_missing_remote_file(self, remote_settings, tmp_path):
        fetcher = SftpFetcher(remote_settings.remotes, retry_delay=0)
        with mock.patch.object(SftpFetcher, "_get", side_effect=FileNotFoundError("nope")) as get:
            with pytest.raises(DownloadError, match="Remote file not found"):
                fetcher.download(self.URL, tmp_path / "out.csv")
        assert get.call_count == 1

    def test_retries_on_ssh_error(self, remote_settings, tmp_path, monkeypatch):
        monkeypatch.setattr("tabds.ds.download.time.sleep", lambda _s: None)
        fetcher = SftpFetcher(remote_settings.remotes, retries=2, retry_delay=0)
        with mock.patch.object(SftpFetcher, "_get", side_effect=paramiko.SSHException("reset")) as get:
            with pytest.raises(DownloadError, match="Failed after 2 attempts"):
                fetcher.download(self.URL, tmp_path / "out.csv")
        assert get.call_count == 2
