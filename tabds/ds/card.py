"""Dataset cards: ``README.md`` with a YAML metadata header.

Example::

    ---
    license: mit
    configs:
    - config_name: default
      default: true
      data_files:
      - split: train
        path: data/train-*.csv
      - split: test
        path: data/test.csv
    ---
    # My dataset
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tabds.ds.info import DatasetInfo
from tabds.ds.types import DatasetCardError

CARD_FILENAME = "README.md"
_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)


def _normalize_data_files(data_files: Any, config_name: str) -> str | list[str] | dict[str, Any]:
    """Card ``data_files`` to builder ``data_files``.

    A list of ``{split, path}`` mappings becomes ``{split: path}``.
    """
    if isinstance(data_files, str):
        return data_files
    if isinstance(data_files, dict):
        return {str(k): v for k, v in data_files.items()}
    if isinstance(data_files, list):
        if all(isinstance(item, str) for item in data_files):
            return list(data_files)
        result: dict[str, Any] = {}
        for item in data_files:
            if not isinstance(item, dict) or "path" not in item:
                raise DatasetCardError(
                    f"Config '{config_name}': data_files entries must be strings or "
                    f"{{split, path}} mappings, got {item!r}"
                )
            result[str(item.get("split", "train"))] = item["path"]
        return result
    raise DatasetCardError(f"Config '{config_name}': invalid data_files {data_files!r}")


@dataclass
class DatasetCard:
    data: dict[str, Any] = field(default_factory=dict)
    text: str = ""

    @classmethod
    def parse(cls, content: str) -> DatasetCard:
        m = _FRONT_MATTER.match(content)
        if not m:
            return cls(data={}, text=content)
        try:
            data = yaml.safe_load(m.group(1)) or {}
        except yaml.YAMLError as exc:
            raise DatasetCardError(f"Invalid YAML in dataset card metadata: {exc}") from exc
        if not isinstance(data, dict):
            raise DatasetCardError(f"Dataset card metadata must be a mapping, got {type(data).__name__}")
        return cls(data=data, text=m.group(2))

    @classmethod
    def load(cls, path: str | Path) -> DatasetCard:
        """Read a card file, or ``README.md`` inside a directory."""
        p = Path(path)
        if p.is_dir():
            p = p / CARD_FILENAME
        return cls.parse(p.read_text(encoding="utf-8"))

    @classmethod
    def from_info(cls, info: DatasetInfo, text: str | None = None) -> DatasetCard:
        card = cls(data={}, text="")
        for key in ("license", "homepage"):
            value = getattr(info, key)
            if value:
                card.data[key] = value
        card.set_dataset_info(info)
        if text is None:
            title = info.builder_name or "Dataset"
            text = f"# {title}\n\n{info.description}\n" if info.description else f"# {title}\n"
        card.text = text
        return card

    def set_dataset_info(self, info: DatasetInfo) -> None:
        """Store *info* under ``dataset_info``, one entry per config."""
        entry: dict[str, Any] = {"config_name": info.config_name or "default"}
        if info.features is not None:
            entry["features"] = info.features.to_dict()
        entry["splits"] = info.splits.to_list()
        entry["download_size"] = info.download_size
        entry["dataset_size"] = info.dataset_size

        current = self.data.get("dataset_info")
        if current is None:
            self.data["dataset_info"] = entry
            return
        entries = current if isinstance(current, list) else [current]
        entries = [e for e in entries if e.get("config_name", "default") != entry["config_name"]]
        entries.append(entry)
        self.data["dataset_info"] = entries[0] if len(entries) == 1 else entries

    # -- configs -------------------------------------------------------------

    @property
    def configs(self) -> list[dict[str, Any]]:
        raw = self.data.get("configs") or []
        if not isinstance(raw, list):
            raise DatasetCardError(f"'configs' must be a list, got {type(raw).__name__}")
        for item in raw:
            if not isinstance(item, dict) or "config_name" not in item:
                raise DatasetCardError(f"Each config needs a 'config_name', got {item!r}")
        return raw

    @property
    def config_names(self) -> list[str]:
        return [c["config_name"] for c in self.configs]

    @property
    def default_config_name(self) -> str | None:
        configs = self.configs
        defaults = [c["config_name"] for c in configs if c.get("default")]
        if len(defaults) > 1:
            raise DatasetCardError(f"Several configs are marked as default: {defaults}")
        if defaults:
            return defaults[0]
        return configs[0]["config_name"] if len(configs) == 1 else None

    def get_config(self, name: str | None = None) -> dict[str, Any]:
        """Builder keyword arguments of config *name* (or of the default one).

        Raises:
            ValueError: If *name* is unknown, or is omitted with several
                configs and no default.
        """
        configs = {c["config_name"]: c for c in self.configs}
        if name is None:
            name = self.default_config_name
            if name is None:
                raise ValueError(
                    f"Config name is missing. Please pick one among the available configs: {list(configs)}"
                )
        if name not in configs:
            raise ValueError(f"BuilderConfig '{name}' not found. Available: {list(configs)}")
        config = configs[name]
        kwargs: dict[str, Any] = {"config_name": name}
        if config.get("data_files") is not None:
            kwargs["data_files"] = _normalize_data_files(config["data_files"], name)
        if config.get("data_dir") is not None:
            kwargs["data_dir"] = str(config["data_dir"])
        # Remaining keys are builder options such as ``sep`` or ``field``.
        for key, value in config.items():
            if key not in ("config_name", "data_files", "data_dir", "default"):
                kwargs[key] = value
        return kwargs

    # -- output --------------------------------------------------------------

    def __str__(self) -> str:
        if not self.data:
            return self.text
        header = yaml.safe_dump(self.data, default_flow_style=False, allow_unicode=True, sort_keys=False)
        return f"---\n{header}---\n{self.text}"

    def save(self, path: str | Path) -> Path:
        """Write the card to *path*, or to ``README.md`` inside a directory."""
        p = Path(path)
        if p.is_dir():
            p = p / CARD_FILENAME
        p.write_text(str(self), encoding="utf-8")
        return p
