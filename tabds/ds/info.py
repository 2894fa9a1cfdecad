"""DatasetInfo and its ``dataset_info.yaml`` serialisation."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tabds.ds.features import Features
from tabds.ds.splits import SplitDict

DATASET_INFO_FILENAME = "dataset_info.yaml"

# Fields needing special (de)serialisation; everything else is auto-mapped.
_SPECIAL_FIELDS = frozenset({"features", "splits", "version"})


@dataclass
class DatasetInfo:
    """Descriptive and size metadata of one builder config."""

    description: str = ""
    citation: str = ""
    homepage: str = ""
    license: str = ""
    features: Features | None = None
    builder_name: str = ""
    config_name: str = ""
    version: str = ""
    splits: SplitDict = field(default_factory=SplitDict)
    download_checksums: dict[str, dict[str, Any]] = field(default_factory=dict)
    download_size: int = 0
    dataset_size: int = 0
    size_in_bytes: int = 0

    def __post_init__(self) -> None:
        if self.features is not None and not isinstance(self.features, Features):
            self.features = Features(self.features)
        if not isinstance(self.splits, SplitDict):
            self.splits = SplitDict(self.splits or {})
        self.version = str(self.version) if self.version else ""

    def update(self, other: DatasetInfo) -> None:
        """Copy every non-empty field of *other* onto this info."""
        for f in dataclasses.fields(self):
            value = getattr(other, f.name)
            if value:
                setattr(self, f.name, value)

    def copy(self) -> DatasetInfo:
        return DatasetInfo.from_dict(self.to_dict())

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            if f.name in _SPECIAL_FIELDS:
                continue
            d[f.name] = getattr(self, f.name)
        d["version"] = self.version
        d["features"] = self.features.to_dict() if self.features is not None else None
        d["splits"] = self.splits.to_list()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DatasetInfo:
        simple: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            if f.name in _SPECIAL_FIELDS or f.name not in d:
                continue
            simple[f.name] = d[f.name]
        features = d.get("features")
        return cls(
            **simple,
            version=str(d.get("version") or ""),
            features=Features.from_dict(features) if features else None,
            splits=SplitDict.from_list(d.get("splits")),
        )

    def write_to_directory(self, directory: str | Path) -> Path:
        path = Path(directory) / DATASET_INFO_FILENAME
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            yaml.dump(self.to_dict(), fh, default_flow_style=False, allow_unicode=True, sort_keys=False)
        return path

    @classmethod
    def from_directory(cls, directory: str | Path) -> DatasetInfo:
        """Load ``dataset_info.yaml`` from *directory*.

        Raises:
            FileNotFoundError: If the directory holds no info file.
        """
        path = Path(directory) / DATASET_INFO_FILENAME
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        return cls.from_dict(data if isinstance(data, dict) else {})
