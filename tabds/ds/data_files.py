"""Resolve ``data_files`` glob patterns into per-split file lists."""

from __future__ import annotations

import glob
import logging
import re
from pathlib import Path, PurePosixPath
from typing import Union

from tabds.ds.splits import Split, validate_split_name
from tabds.ds.types import DataFilesNotFoundError

logger = logging.getLogger(__name__)

DataFilesPatterns = Union[str, list[str], dict[str, Union[str, list[str]]]]

REMOTE_PREFIXES = ("http://", "https://", "sftp://")

# Keyword -> split. Matched against file stems and parent directory names.
_SPLIT_KEYWORDS: dict[str, tuple[str, ...]] = {
    Split.TRAIN.value: ("train", "training"),
    Split.VALIDATION.value: ("validation", "valid", "dev", "val"),
    Split.TEST.value: ("test", "testing", "eval", "evaluation"),
}
_KEYWORD_SEP = r"[-._ /]"


def is_remote(path: str) -> bool:
    return str(path).startswith(REMOTE_PREFIXES)


def sanitize_patterns(patterns: DataFilesPatterns) -> dict[str, list[str]]:
    """Normalise user ``data_files`` into ``{split: [pattern, ...]}``.

    A bare string or list is assigned to the ``train`` split.
    """
    if isinstance(patterns, dict):
        return {
            validate_split_name(str(split)): [value] if isinstance(value, str) else list(value)
            for split, value in patterns.items()
        }
    if isinstance(patterns, str):
        return {Split.TRAIN.value: [patterns]}
    if isinstance(patterns, (list, tuple)):
        return {Split.TRAIN.value: list(patterns)}
    raise ValueError(f"data_files must be a str, list or dict, got {type(patterns).__name__}")


def _is_hidden(path: Path, base: Path) -> bool:
    try:
        rel = path.relative_to(base)
    except ValueError:
        rel = path
    return any(part.startswith((".", "_")) for part in rel.parts)


def _glob_root(full: Path) -> Path:
    """Leading part of *full* without glob characters."""
    root = Path(full.anchor) if full.is_absolute() else Path()
    for part in full.parts[len(root.parts):]:
        if glob.has_magic(part):
            break
        root = root / part
    return root


def resolve_pattern(pattern: str, base_path: str | Path) -> list[str]:
    """Expand one glob *pattern* relative to *base_path*.

    Remote URLs are returned as-is. Hidden files (``.``/``_`` prefixed) are
    skipped unless the pattern itself names a hidden part.

    Raises:
        DataFilesNotFoundError: If nothing matches.
    """
    if is_remote(pattern):
        return [pattern]
    base = Path(base_path).resolve()
    full = Path(pattern) if Path(pattern).is_absolute() else base / pattern
    pattern_hidden = any(
        part.startswith((".", "_")) and part not in (".", "..")
        for part in PurePosixPath(pattern).parts
    )
    matches = [
        Path(m).resolve()
        for m in glob.glob(str(full), recursive=True)
        if Path(m).is_file()
    ]
    if not pattern_hidden:
        root = _glob_root(full).resolve()
        matches = [m for m in matches if not _is_hidden(m, root)]
    if not matches:
        raise DataFilesNotFoundError(f"Unable to find '{pattern}' in {base}")
    return sorted({str(m) for m in matches})


def resolve_patterns(patterns: list[str], base_path: str | Path) -> list[str]:
    """Resolve several patterns, keeping first-seen order and dropping duplicates."""
    seen: dict[str, None] = {}
    for pattern in patterns:
        for path in resolve_pattern(pattern, base_path):
            seen.setdefault(path, None)
    return list(seen)


class DataFilesDict(dict):
    """``{split: [absolute path or URL, ...]}`` after resolution."""

    @classmethod
    def from_patterns(cls, patterns: DataFilesPatterns, base_path: str | Path = ".") -> DataFilesDict:
        return cls(
            {
                split: resolve_patterns(split_patterns, base_path)
                for split, split_patterns in sanitize_patterns(patterns).items()
            }
        )

    @property
    def all_files(self) -> list[str]:
        return [f for files in self.values() for f in files]


def _split_for_path(path: Path, base: Path) -> str | None:
    rel = path.relative_to(base).as_posix().lower()
    for split, keywords in _SPLIT_KEYWORDS.items():
        for kw in keywords:
            if re.search(rf"(^|{_KEYWORD_SEP}){re.escape(kw)}({_KEYWORD_SEP}|$)", rel):
                return split
    return None


def infer_splits(base_path: str | Path, extensions: tuple[str, ...]) -> DataFilesDict:
    """Group the supported files under *base_path* by split keyword.

    Files named like ``train.csv``, ``data/test-00000.jsonl`` or
    ``dev/part1.txt`` go to their split; if no file matches a keyword every
    supported file is assigned to ``train``.

    Raises:
        DataFilesNotFoundError: If the directory holds no supported file.
    """
    base = Path(base_path).resolve()
    files = [
        p for p in sorted(base.rglob("*"))
        if p.is_file() and not _is_hidden(p, base) and _has_extension(p.name, extensions)
    ]
    if not files:
        raise DataFilesNotFoundError(f"No supported data files found in {base}")

    grouped: dict[str, list[str]] = {}
    for p in files:
        split = _split_for_path(p, base)
        if split:
            grouped.setdefault(split, []).append(str(p))
    if not grouped:
        grouped = {Split.TRAIN.value: [str(p) for p in files]}

    ordered = DataFilesDict()
    for split in _SPLIT_KEYWORDS:
        if split in grouped:
            ordered[split] = grouped[split]
    logger.debug("Inferred splits in %s: %s", base, {k: len(v) for k, v in ordered.items()})
    return ordered


def _has_extension(name: str, extensions: tuple[str, ...]) -> bool:
    name = name.lower()
    if name.endswith(".gz"):
        name = name[:-3]
    return name.endswith(extensions)
