"""JSON / JSON Lines builder."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator

from tabds.ds.builder import BuilderConfig
from tabds.ds.info import DatasetInfo
from tabds.ds.packaged.base import PackagedBuilder


@dataclass
class JsonConfig(BuilderConfig):
    """Options of the json builder.

    ``field`` selects the list of records stored under that key of a
    top-level object, e.g. ``{"version": 2, "data": [...]}``.
    """

    field: str | None = None
    encoding: str = "utf-8"


def _rows(data: Any, path: str) -> list[dict[str, Any]]:
    # A dict of equally long lists is read column-wise.
    if isinstance(data, dict) and data and all(isinstance(v, list) for v in data.values()):
        lengths = {len(v) for v in data.values()}
        if len(lengths) != 1:
            raise ValueError(f"{path}: columns have different lengths {sorted(lengths)}")
        names = list(data)
        return [dict(zip(names, values)) for values in zip(*data.values())]
    if not isinstance(data, list):
        raise ValueError(
            f"{path}: expected a list of records, got {type(data).__name__}. "
            "Use the 'field' option to select the records of a JSON object."
        )
    for i, row in enumerate(data):
        if not isinstance(row, dict):
            raise ValueError(f"{path}: record {i} is a {type(row).__name__}, expected an object")
    return data


class Json(PackagedBuilder):
    BUILDER_CONFIG_CLASS = JsonConfig

    def _info(self) -> DatasetInfo:
        return DatasetInfo(features=None)

    def _iter_file(self, path: str) -> Iterator[dict[str, Any]]:
        if self.config.field is not None:
            with open(path, encoding=self.config.encoding) as f:
                data = json.load(f)
            if not isinstance(data, dict) or self.config.field not in data:
                raise ValueError(f"{path}: field '{self.config.field}' not found")
            yield from _rows(data[self.config.field], path)
            return

        with open(path, encoding=self.config.encoding) as f:
            head = f.read(1)
            while head and head.isspace():
                head = f.read(1)
            f.seek(0)
            if head == "[":
                yield from _rows(json.load(f), path)
                return
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"{path}:{lineno}: invalid JSON line: {exc}") from exc
                if not isinstance(row, dict):
                    raise ValueError(f"{path}:{lineno}: expected a JSON object, got {type(row).__name__}")
                yield row
