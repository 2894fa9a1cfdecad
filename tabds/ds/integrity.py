"""SHA-256 integrity helpers for downloads and prepared datasets."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import Any

from tabds.ds.splits import SplitDict
from tabds.ds.types import (
    ExpectedMoreDownloadedFilesError,
    ExpectedMoreSplitsError,
    FileEntry,
    NonMatchingChecksumError,
    NonMatchingSplitsSizesError,
    PreparedDataset,
    UnexpectedDownloadedFileError,
    UnexpectedSplitsError,
    VerifyResult,
)

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 8 * 1024 * 1024  # 8 MB


def compute_checksum(path: str | Path) -> str:
    """Compute the SHA-256 hex digest of a file.

    Args:
        path: Filesystem path to the file.

    Returns:
        Hex-encoded SHA-256 digest prefixed with ``sha256:``.
    """
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        while True:
            chunk = fh.read(_CHUNK_SIZE)
            if not chunk:
                break
            h.update(chunk)
    return f"sha256:{h.hexdigest()}"


def get_size_checksum_dict(path: str | Path) -> dict[str, Any]:
    """Return ``{"num_bytes": ..., "checksum": ...}`` for one file."""
    p = Path(path)
    return {"num_bytes": p.stat().st_size, "checksum": compute_checksum(p)}


# ---------------------------------------------------------------------------
# Download / split verification
# ---------------------------------------------------------------------------

def verify_checksums(
    expected: dict[str, dict[str, Any]] | None,
    recorded: dict[str, dict[str, Any]],
    verification_name: str | None = None,
) -> None:
    """Compare the checksums recorded during download with the expected ones.

    Raises:
        ExpectedMoreDownloadedFilesError: An expected URL was not downloaded.
        UnexpectedDownloadedFileError: A URL was downloaded but not expected.
        NonMatchingChecksumError: At least one checksum differs.
    """
    if expected is None:
        logger.info("Unable to verify checksums.")
        return
    missing = set(expected) - set(recorded)
    if missing:
        raise ExpectedMoreDownloadedFilesError(str(sorted(missing)))
    unexpected = set(recorded) - set(expected)
    if unexpected:
        raise UnexpectedDownloadedFileError(str(sorted(unexpected)))
    bad_urls = [
        url for url in expected
        if expected[url].get("checksum") != recorded[url].get("checksum")
    ]
    for_name = f" for {verification_name}" if verification_name is not None else ""
    if bad_urls:
        raise NonMatchingChecksumError(
            f"Checksums didn't match{for_name}:\n{bad_urls}\n"
            "Set `verification_mode='no_checks'` to skip checksums verification and ignore this error"
        )
    logger.info("All the checksums matched successfully%s.", for_name)


def verify_splits(expected: SplitDict | None, recorded: SplitDict) -> None:
    """Compare generated split sizes with the expected ones.

    Raises:
        ExpectedMoreSplitsError: An expected split was not generated.
        UnexpectedSplitsError: A generated split was not expected.
        NonMatchingSplitsSizesError: At least one split size differs.
    """
    if not expected:
        logger.info("Unable to verify splits sizes.")
        return
    missing = set(expected) - set(recorded)
    if missing:
        raise ExpectedMoreSplitsError(str(sorted(missing)))
    unexpected = set(recorded) - set(expected)
    if unexpected:
        raise UnexpectedSplitsError(str(sorted(unexpected)))
    bad_splits = [
        {"expected": expected[name].num_examples, "recorded": recorded[name].num_examples, "split": name}
        for name in expected
        if expected[name].num_examples != recorded[name].num_examples
    ]
    if bad_splits:
        raise NonMatchingSplitsSizesError(str(bad_splits))
    logger.info("All the splits matched successfully.")


# ---------------------------------------------------------------------------
# Prepared dataset files
# ---------------------------------------------------------------------------

def scan_directory(dataset_dir: str | Path, split: str) -> list[FileEntry]:
    """Return a :class:`FileEntry` per shard file of *split*.

    Shards live in ``<dataset_dir>/<split>-NNNNN/``.
    """
    root = Path(dataset_dir)
    if not root.is_dir():
        return []

    shard_re = re.compile(rf"{re.escape(split)}-\d{{5,}}")
    entries: list[FileEntry] = []
    for shard_dir in sorted(root.iterdir()):
        if not shard_dir.is_dir() or not shard_re.fullmatch(shard_dir.name):
            continue
        for fp in sorted(shard_dir.rglob("*")):
            if not fp.is_file():
                continue
            entries.append(
                FileEntry(
                    path=fp.relative_to(root).as_posix(),
                    size=fp.stat().st_size,
                    checksum=compute_checksum(fp),
                )
            )
    return entries


def verify_prepared(dataset_dir: str | Path, dataset: PreparedDataset) -> list[VerifyResult]:
    """Verify every registered shard file of *dataset* against its on-disk checksum.

    Args:
        dataset_dir: Directory holding the prepared dataset.
        dataset: The :class:`PreparedDataset` whose files to verify.

    Returns:
        A list of :class:`VerifyResult`, one per file.
    """
    results: list[VerifyResult] = []
    for _split, entries in dataset.files.items():
        for entry in entries:
            fp = Path(dataset_dir) / entry.path
            if not fp.exists():
                results.append(
                    VerifyResult(
                        dataset_id=dataset.dataset_id,
                        file_path=entry.path,
                        expected_checksum=entry.checksum,
                        actual_checksum="",
                        ok=False,
                        error="file not found",
                    )
                )
                continue
            actual = compute_checksum(fp)
            results.append(
                VerifyResult(
                    dataset_id=dataset.dataset_id,
                    file_path=entry.path,
                    expected_checksum=entry.checksum,
                    actual_checksum=actual,
                    ok=(actual == entry.checksum),
                )
            )
    return results
