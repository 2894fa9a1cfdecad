"""Download, cache and extract raw data files.

:class:`DownloadManager` is what ``_split_generators`` receives. It maps
nested structures of URLs or local paths to local paths, remembers the size
and checksum of everything it fetched, and unpacks archives on request.

Remote schemes:

* ``http://`` / ``https://`` - streamed with :class:`Downloader` (httpx);
* ``sftp://user@host[:port]/path`` - fetched with :class:`SftpFetcher`
  (paramiko), using the key file of a matching ``remotes`` entry.
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import os
import shutil
import tarfile
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Iterator
from urllib.parse import unquote, urlparse

import httpx
import paramiko

from tabds.config import RemoteConfig, Settings
from tabds.ds.data_files import is_remote
from tabds.ds.integrity import get_size_checksum_dict
from tabds.ds.types import DownloadError, DownloadMode

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_DELAY = 5  # seconds
_STREAM_CHUNK = 1 << 20
_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")


@dataclass
class DownloadConfig:
    """Options of a :class:`DownloadManager`."""

    cache_dir: Path | None = None
    force_download: bool = False
    proxy: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 60.0
    max_retries: int = _MAX_RETRIES
    retry_delay: float = _RETRY_DELAY
    offline: bool = False


# ---------------------------------------------------------------------------
# Structure helpers
# ---------------------------------------------------------------------------

def map_nested(fn: Callable[[str], Any], data: Any) -> Any:
    """Apply *fn* to every string leaf of a str / list / tuple / dict structure."""
    if isinstance(data, dict):
        return {k: map_nested(fn, v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return type(data)(map_nested(fn, v) for v in data)
    if isinstance(data, (str, os.PathLike)):
        return fn(str(data))
    raise TypeError(f"Unsupported url structure element: {data!r}")


def url_to_filename(url: str) -> str:
    """Deterministic cache filename: 16 hex chars of ``sha256(url)`` + basename."""
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    basename = PurePosixPath(unquote(urlparse(url).path)).name or "file"
    return f"{digest}-{basename}"


def is_archive(path: str | Path) -> bool:
    name = str(path).lower()
    return name.endswith(_ARCHIVE_SUFFIXES)


def extract_archive(archive_path: Path, extract_dir: Path) -> Path:
    """Unpack ``.tar.gz``, ``.tgz``, ``.tar`` or ``.zip`` into *extract_dir*."""
    extract_dir.mkdir(parents=True, exist_ok=True)
    name = archive_path.name.lower()

    if name.endswith((".tar.gz", ".tgz")):
        with tarfile.open(archive_path, "r:gz") as tf:
            tf.extractall(extract_dir, filter="data")
    elif name.endswith(".tar"):
        with tarfile.open(archive_path, "r:") as tf:
            tf.extractall(extract_dir, filter="data")
    elif name.endswith(".zip"):
        with zipfile.ZipFile(archive_path, "r") as zf:
            zf.extractall(extract_dir)
    else:
        raise ValueError(f"Unsupported archive format: {archive_path}")

    return extract_dir


def _gunzip(path: Path, dest: Path) -> Path:
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".incomplete")
    with gzip.open(path, "rb") as src, open(tmp, "wb") as dst:
        shutil.copyfileobj(src, dst)
    tmp.replace(dest)
    return dest


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class Downloader:
    """HTTP downloader built on httpx.

    Supports proxies, custom headers, timeouts and retries. The body is
    streamed into ``<output>.incomplete`` and renamed once complete.
    """

    def __init__(
        self,
        proxy: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 60.0,
        retries: int = _MAX_RETRIES,
        retry_delay: float = _RETRY_DELAY,
    ) -> None:
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._client_kwargs: dict[str, Any] = {"timeout": timeout, "follow_redirects": True}
        if proxy:
            self._client_kwargs["proxy"] = proxy
        if headers:
            self._client_kwargs["headers"] = headers

    def download(self, url: str, output_path: Path) -> Path:
        """Fetch *url* into *output_path*.

        Raises:
            DownloadError: After the last failed attempt.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = output_path.with_name(output_path.name + ".incomplete")

        for attempt in range(1, self.retries + 1):
            try:
                with httpx.Client(**self._client_kwargs) as client:
                    with client.stream("GET", url) as resp:
                        resp.raise_for_status()
                        with open(tmp, "wb") as fh:
                            for chunk in resp.iter_bytes(chunk_size=_STREAM_CHUNK):
                                fh.write(chunk)
                tmp.replace(output_path)
                return output_path
            except httpx.HTTPError as exc:
                tmp.unlink(missing_ok=True)
                if attempt == self.retries:
                    raise DownloadError(f"Failed after {self.retries} attempts: {url}: {exc}") from exc
                logger.warning(
                    "Attempt %d/%d failed for %s: %s, retrying in %ss",
                    attempt, self.retries, url, exc, self.retry_delay,
                )
                time.sleep(self.retry_delay)
        raise DownloadError(f"Could not download {url}")


class SftpFetcher:
    """Fetch single files over SFTP (``sftp://user@host[:port]/path``)."""

    def __init__(
        self,
        remotes: dict[str, RemoteConfig] | None = None,
        retries: int = _MAX_RETRIES,
        retry_delay: float = _RETRY_DELAY,
    ) -> None:
        self._remotes = remotes or {}
        self.retries = max(1, retries)
        self.retry_delay = retry_delay

    def _remote_for(self, url: str) -> tuple[RemoteConfig, str]:
        parsed = urlparse(url)
        if not parsed.hostname:
            raise DownloadError(f"Invalid sftp url: {url}")
        known = next((r for r in self._remotes.values() if r.host == parsed.hostname), None)
        user = parsed.username or (known.user if known else None)
        if not user:
            raise DownloadError(f"No user given for {url} and no matching remote configured")
        remote = RemoteConfig(
            name=known.name if known else parsed.hostname,
            host=parsed.hostname,
            user=user,
            port=parsed.port or (known.port if known else 22),
            key_file=known.key_file if known else None,
        )
        return remote, unquote(parsed.path)

    def _get(self, remote: RemoteConfig, remote_path: str, local_path: Path) -> None:
        transport = paramiko.Transport((remote.host, remote.port))
        try:
            if remote.key_file:
                pkey = paramiko.RSAKey.from_private_key_file(remote.key_file)
                transport.connect(username=remote.user, pkey=pkey)
            else:
                transport.connect(username=remote.user)
            sftp = paramiko.SFTPClient.from_transport(transport)
            try:
                sftp.get(remote_path, str(local_path))
            finally:
                sftp.close()
        finally:
            transport.close()

    def download(self, url: str, output_path: Path) -> Path:
        """Fetch *url* into *output_path*.

        Raises:
            DownloadError: After the last failed attempt, or immediately if
                the remote file does not exist.
        """
        remote, remote_path = self._remote_for(url)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = output_path.with_name(output_path.name + ".incomplete")

        for attempt in range(1, self.retries + 1):
            try:
                self._get(remote, remote_path, tmp)
                tmp.replace(output_path)
                return output_path
            except FileNotFoundError as exc:
                tmp.unlink(missing_ok=True)
                raise DownloadError(f"Remote file not found: {url}") from exc
            except (paramiko.SSHException, OSError) as exc:
                tmp.unlink(missing_ok=True)
                if attempt == self.retries:
                    raise DownloadError(f"Failed after {self.retries} attempts: {url}: {exc}") from exc
                logger.warning(
                    "Attempt %d/%d failed for %s: %s, retrying in %ss",
                    attempt, self.retries, url, exc, self.retry_delay,
                )
                time.sleep(self.retry_delay)
        raise DownloadError(f"Could not download {url}")


# ---------------------------------------------------------------------------
# DownloadManager
# ---------------------------------------------------------------------------

class DownloadManager:
    """Download / extract helper handed to ``_split_generators``.

    Args:
        dataset_name: Used in log messages only.
        download_config: Transport and cache options.
        download_mode: ``FORCE_REDOWNLOAD`` ignores cached downloads.
        settings: Provides the default downloads directory and SFTP remotes.
    """

    def __init__(
        self,
        dataset_name: str | None = None,
        download_config: DownloadConfig | None = None,
        download_mode: DownloadMode | str = DownloadMode.REUSE_DATASET_IF_EXISTS,
        settings: Settings | None = None,
    ) -> None:
        self._dataset_name = dataset_name
        self.download_config = download_config or DownloadConfig()
        self._settings = settings or Settings()
        self.download_mode = DownloadMode(download_mode)
        cache_dir = self.download_config.cache_dir or self._settings.downloads_dir
        self.downloads_dir = Path(cache_dir)
        self.extracted_dir = self.downloads_dir / "extracted"
        self._recorded_sizes_checksums: dict[str, dict[str, Any]] = {}
        self._http = Downloader(
            proxy=self.download_config.proxy,
            headers=self.download_config.headers,
            timeout=self.download_config.timeout,
            retries=self.download_config.max_retries,
            retry_delay=self.download_config.retry_delay,
        )
        self._sftp = SftpFetcher(
            self._settings.remotes,
            retries=self.download_config.max_retries,
            retry_delay=self.download_config.retry_delay,
        )

    @property
    def recorded_checksums(self) -> dict[str, dict[str, Any]]:
        """``url -> {num_bytes, checksum}`` of every file handed out so far."""
        return dict(self._recorded_sizes_checksums)

    @property
    def downloaded_size(self) -> int:
        return sum(v["num_bytes"] for v in self._recorded_sizes_checksums.values())

    @property
    def _force(self) -> bool:
        return self.download_config.force_download or self.download_mode == DownloadMode.FORCE_REDOWNLOAD

    def _download_single(self, url_or_path: str) -> str:
        if not is_remote(url_or_path):
            path = Path(url_or_path).expanduser()
            if not path.exists():
                raise FileNotFoundError(f"Local file {path} doesn't exist")
            if path.is_file():
                self._record(url_or_path, path)
            return str(path)

        output = self.downloads_dir / url_to_filename(url_or_path)
        if output.exists() and not self._force:
            logger.debug("Reusing cached download %s for %s", output, url_or_path)
        elif self.download_config.offline or self._settings.offline:
            raise DownloadError(f"Offline mode is enabled and {url_or_path} is not cached")
        else:
            logger.info("Downloading %s", url_or_path)
            if url_or_path.startswith("sftp://"):
                self._sftp.download(url_or_path, output)
            else:
                self._http.download(url_or_path, output)
        self._record(url_or_path, output)
        return str(output)

    def _record(self, key: str, path: Path) -> None:
        self._recorded_sizes_checksums[key] = get_size_checksum_dict(path)

    def download(self, url_or_urls: Any) -> Any:
        """Download every URL in a (nested) structure; local paths pass through.

        Returns:
            The same structure with local file paths as leaves.
        """
        start = time.time()
        result = map_nested(self._download_single, url_or_urls)
        logger.debug("Downloading took %.1f min", (time.time() - start) / 60)
        return result

    def _extract_single(self, path: str) -> str:
        p = Path(path)
        if not p.is_file():
            return path
        name = p.name.lower()
        digest = hashlib.sha256(str(p.resolve()).encode("utf-8")).hexdigest()[:16]
        if is_archive(name):
            target = self.extracted_dir / digest
            if target.is_dir() and not self._force:
                return str(target)
            if target.exists():
                shutil.rmtree(target)
            tmp = target.with_name(target.name + ".incomplete")
            if tmp.exists():
                shutil.rmtree(tmp)
            logger.info("Extracting %s", p)
            extract_archive(p, tmp)
            tmp.replace(target)
            return str(target)
        if name.endswith(".gz"):
            target = self.extracted_dir / f"{digest}-{p.name[:-3]}"
            if target.is_file() and not self._force:
                return str(target)
            return str(_gunzip(p, target))
        return path

    def extract(self, path_or_paths: Any) -> Any:
        """Extract archives / ``.gz`` files; other paths are returned unchanged."""
        return map_nested(self._extract_single, path_or_paths)

    def download_and_extract(self, url_or_urls: Any) -> Any:
        return self.extract(self.download(url_or_urls))

    def iter_files(self, paths: str | list[str]) -> Iterator[str]:
        """Yield every non-hidden file under *paths* (files or directories)."""
        for path in [paths] if isinstance(paths, str) else paths:
            p = Path(path)
            if p.is_file():
                yield str(p)
                continue
            for fp in sorted(p.rglob("*")):
                rel_parts = fp.relative_to(p).parts
                if any(part.startswith((".", "_")) for part in rel_parts):
                    continue
                if fp.is_file():
                    yield str(fp)
