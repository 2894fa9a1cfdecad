"""Data classes, enums and exceptions shared by the dataset modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class DownloadMode(str, Enum):
    """What to reuse from a previous ``download_and_prepare`` run."""

    REUSE_DATASET_IF_EXISTS = "reuse_dataset_if_exists"
    REUSE_CACHE_IF_EXISTS = "reuse_cache_if_exists"
    FORCE_REDOWNLOAD = "force_redownload"


class VerificationMode(str, Enum):
    """How much integrity checking runs after a dataset is generated.

    ``all_checks`` verifies download checksums and split sizes,
    ``basic_checks`` only split sizes, ``no_checks`` nothing.
    """

    ALL_CHECKS = "all_checks"
    BASIC_CHECKS = "basic_checks"
    NO_CHECKS = "no_checks"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class FileEntry:
    """A single shard file of a prepared dataset."""

    path: str
    size: int = 0
    checksum: str = ""


@dataclass
class PreparedDataset:
    """Registry record of one dataset materialised in the cache.

    ``builder_name``, ``config_name`` and ``version`` are derived from
    ``dataset_id`` (format: ``<builder>/<config>/<version>``).
    """

    dataset_id: str
    builder_name: str = field(default="", init=False)
    config_name: str = field(default="", init=False)
    version: str = field(default="", init=False)
    cache_dir: str = ""
    description: str = ""
    num_examples: int = 0
    dataset_size: int = 0
    download_size: int = 0
    splits: dict[str, int] = field(default_factory=dict)
    files: dict[str, list[FileEntry]] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        parts = self.dataset_id.strip("/").split("/")
        if len(parts) == 3:
            self.builder_name, self.config_name, self.version = parts


@dataclass
class VerifyResult:
    """Result of verifying one shard file of a prepared dataset."""

    dataset_id: str
    file_path: str
    expected_checksum: str
    actual_checksum: str
    ok: bool
    error: str | None = None


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class DatasetError(Exception):
    """Base exception for dataset operations."""


class ConfigError(DatasetError):
    """Raised when a configuration file is invalid."""


class DatasetNotFoundError(DatasetError, KeyError):
    """Raised when a prepared dataset id does not exist."""


class SplitNotFoundError(DatasetError, KeyError):
    """Raised when a split name is not part of a dataset."""


class DatasetNotPreparedError(DatasetError):
    """Raised when reading a dataset that was never prepared."""


class DataFilesNotFoundError(DatasetError, FileNotFoundError):
    """Raised when no usable data files can be resolved."""


class DatasetCardError(DatasetError):
    """Raised when a dataset card cannot be parsed."""


class DownloadError(DatasetError):
    """Raised when fetching a remote file fails."""


class DuplicatedKeysError(DatasetError):
    """Raised when ``_generate_examples`` yields the same key twice."""

    def __init__(self, key: object, split: str) -> None:
        super().__init__(f"Found duplicate key {key!r} in split '{split}'")
        self.key = key
        self.split = split


class VerificationError(DatasetError):
    """Base for integrity check failures."""


class ExpectedMoreDownloadedFilesError(VerificationError):
    """Some expected files were not downloaded."""


class UnexpectedDownloadedFileError(VerificationError):
    """Some downloaded files were not expected."""


class NonMatchingChecksumError(VerificationError):
    """A downloaded file's checksum differs from the recorded one."""


class ExpectedMoreSplitsError(VerificationError):
    """Some expected splits were not generated."""


class UnexpectedSplitsError(VerificationError):
    """Some generated splits were not expected."""


class NonMatchingSplitsSizesError(VerificationError):
    """A generated split's number of examples differs from the recorded one."""
