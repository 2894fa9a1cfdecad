"""CSV / TSV builder."""

from __future__ import annotations

import csv
import itertools
from dataclasses import dataclass
from typing import Any, Iterator

from tabds.ds.builder import BuilderConfig
from tabds.ds.features import Features, Value
from tabds.ds.info import DatasetInfo
from tabds.ds.packaged.base import INFER_SAMPLE_SIZE, PackagedBuilder


@dataclass
class CsvConfig(BuilderConfig):
    """Options of the csv builder.

    ``sep=None`` picks a tab for ``.tsv`` files and a comma otherwise. When
    ``column_names`` is given the files have no header row.
    """

    sep: str | None = None
    column_names: list[str] | None = None
    skip_rows: int = 0
    quotechar: str = '"'
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.skip_rows < 0:
            raise ValueError(f"skip_rows must be >= 0, got {self.skip_rows}")
        if self.sep is not None and len(self.sep) != 1:
            raise ValueError(f"sep must be a single character, got {self.sep!r}")


def _is_int(value: str) -> bool:
    try:
        int(value)
    except ValueError:
        return False
    return True


def _is_float(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def infer_string_dtype(values: list[str]) -> str:
    """Narrowest dtype that parses every non-empty cell of a column."""
    cells = [v.strip() for v in values if v is not None and v.strip() != ""]
    if not cells:
        return "string"
    if all(_is_int(v) for v in cells):
        return "int64"
    if all(_is_float(v) for v in cells):
        return "float64"
    if all(v.lower() in ("true", "false") for v in cells):
        return "bool"
    return "string"


class Csv(PackagedBuilder):
    BUILDER_CONFIG_CLASS = CsvConfig

    def _info(self) -> DatasetInfo:
        return DatasetInfo(features=None)

    def _sep(self, path: str) -> str:
        if self.config.sep is not None:
            return self.config.sep
        return "\t" if self._suffix(path) == ".tsv" else ","

    def _iter_file(self, path: str) -> Iterator[dict[str, Any]]:
        with open(path, newline="", encoding=self.config.encoding) as f:
            reader = csv.reader(f, delimiter=self._sep(path), quotechar=self.config.quotechar)
            for _ in range(self.config.skip_rows):
                next(reader, None)
            header = self.config.column_names
            if header is None:
                header = next(reader, None)
                if header is None:
                    return
            for row in reader:
                if not row:
                    continue
                if len(row) != len(header):
                    raise ValueError(
                        f"{path}:{reader.line_num}: expected {len(header)} fields, got {len(row)}"
                    )
                yield dict(zip(header, row))

    def _infer_features(self, path: str) -> Features:
        rows = list(itertools.islice(self._iter_file(path), INFER_SAMPLE_SIZE))
        if not rows:
            return Features({name: Value("string") for name in self.config.column_names or []})
        return Features(
            {name: Value(infer_string_dtype([row[name] for row in rows])) for name in rows[0]}
        )
