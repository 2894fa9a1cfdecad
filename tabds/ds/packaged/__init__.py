"""Builders for plain data files, selected by file extension."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from tabds.ds.data_files import DataFilesDict, is_remote
from tabds.ds.packaged.base import PackagedBuilder
from tabds.ds.packaged.csv import Csv, CsvConfig
from tabds.ds.packaged.json import Json, JsonConfig
from tabds.ds.packaged.text import Text, TextConfig
from tabds.ds.types import DataFilesNotFoundError

_PACKAGED_MODULES: dict[str, type[PackagedBuilder]] = {
    "csv": Csv,
    "json": Json,
    "text": Text,
}

_EXTENSION_TO_MODULE: dict[str, str] = {
    ".csv": "csv",
    ".tsv": "csv",
    ".json": "json",
    ".jsonl": "json",
    ".txt": "text",
}

SUPPORTED_EXTENSIONS = tuple(_EXTENSION_TO_MODULE)


def is_packaged_module(name: str) -> bool:
    return name in _PACKAGED_MODULES


def get_packaged_builder(name: str) -> type[PackagedBuilder]:
    try:
        return _PACKAGED_MODULES[name]
    except KeyError:
        raise ValueError(f"Unknown packaged module '{name}', expected one of {sorted(_PACKAGED_MODULES)}") from None


def module_for_path(path: str) -> str | None:
    name = path.rsplit("/", 1)[-1] if is_remote(path) else Path(path).name
    name = name.split("?", 1)[0].lower()
    if name.endswith(".gz"):
        name = name[:-3]
    return _EXTENSION_TO_MODULE.get(Path(name).suffix)


def infer_module_for_data_files(data_files: DataFilesDict | dict[str, list[str]]) -> str:
    """Most common packaged module among all files.

    Raises:
        DataFilesNotFoundError: If no file has a supported extension.
    """
    counts = Counter(
        module
        for files in data_files.values()
        for module in map(module_for_path, files)
        if module is not None
    )
    if not counts:
        raise DataFilesNotFoundError(
            f"No supported data file found, supported extensions are {list(SUPPORTED_EXTENSIONS)}"
        )
    return counts.most_common(1)[0][0]

