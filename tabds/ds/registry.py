"""YAML registry of prepared datasets, the source of truth for the index.

One file per builder, ``<registry_dir>/<builder_name>.yaml``, mapping
``dataset_id -> record dict``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from tabds.ds.types import FileEntry, PreparedDataset

_SPECIAL_FIELDS = frozenset({"dataset_id", "files", "splits", "created_at", "updated_at"})


def _parse_dt(val: Any) -> datetime:
    if isinstance(val, datetime):
        return val
    if isinstance(val, str):
        return datetime.fromisoformat(val)
    return datetime.now(timezone.utc)


def dataset_to_dict(record: PreparedDataset) -> dict[str, Any]:
    """Serialise a :class:`PreparedDataset` for YAML; the id is the key."""
    d = asdict(record)
    for key in ("dataset_id", "builder_name", "config_name", "version"):
        del d[key]
    d["created_at"] = record.created_at.isoformat()
    d["updated_at"] = record.updated_at.isoformat()
    return d


def dict_to_dataset(dataset_id: str, d: dict[str, Any]) -> PreparedDataset:
    files = {
        split: [FileEntry(**e) for e in entries]
        for split, entries in (d.get("files") or {}).items()
    }
    simple: dict[str, Any] = {}
    for f in dataclasses.fields(PreparedDataset):
        if not f.init or f.name in _SPECIAL_FIELDS:
            continue
        if f.name in d:
            simple[f.name] = d[f.name]
    return PreparedDataset(
        dataset_id=dataset_id,
        **simple,
        splits={str(k): int(v) for k, v in (d.get("splits") or {}).items()},
        files=files,
        created_at=_parse_dt(d.get("created_at")),
        updated_at=_parse_dt(d.get("updated_at")),
    )


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _save_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        yaml.safe_dump(data, fh, default_flow_style=False, allow_unicode=True, sort_keys=False)
    tmp.replace(path)


def _yaml_files(registry_dir: str | Path) -> list[Path]:
    rd = Path(registry_dir)
    return sorted(rd.glob("*.yaml")) if rd.is_dir() else []


def _locate(registry_dir: str | Path, dataset_id: str) -> tuple[Path, dict[str, Any]] | None:
    """The YAML file holding *dataset_id* and its parsed content."""
    for yf in _yaml_files(registry_dir):
        data = _load_yaml(yf)
        if dataset_id in data:
            return yf, data
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_all(registry_dir: str | Path) -> list[PreparedDataset]:
    """Every record of every YAML file in *registry_dir*."""
    return [
        dict_to_dataset(did, ddict)
        for yf in _yaml_files(registry_dir)
        for did, ddict in _load_yaml(yf).items()
    ]


def load(registry_dir: str | Path, dataset_id: str) -> PreparedDataset | None:
    found = _locate(registry_dir, dataset_id)
    if found is None:
        return None
    return dict_to_dataset(dataset_id, found[1][dataset_id])


def save(registry_dir: str | Path, record: PreparedDataset) -> None:
    """Create or update *record* in its builder's YAML file."""
    yf = Path(registry_dir) / f"{record.builder_name or 'default'}.yaml"
    data = _load_yaml(yf)
    data[record.dataset_id] = dataset_to_dict(record)
    _save_yaml(yf, data)


def delete(registry_dir: str | Path, dataset_id: str) -> bool:
    """Remove a record. Returns ``True`` if it existed."""
    found = _locate(registry_dir, dataset_id)
    if found is None:
        return False
    yf, data = found
    del data[dataset_id]
    if data:
        _save_yaml(yf, data)
    else:
        yf.unlink()
    return True
