"""SQLite index of prepared datasets, rebuildable from the YAML registry."""

from __future__ import annotations

import dataclasses
from pathlib import Path

from sqlalchemy.orm import Session

from tabds.comm.models import PreparedDatasetRow, ShardFileRow, SplitRow
from tabds.ds import registry as reg
from tabds.ds.types import FileEntry, PreparedDataset

# _INIT_FIELDS: passable to PreparedDataset.__init__.
# _ALL_FIELDS: every scalar column of PreparedDatasetRow.
_NESTED = frozenset({"splits", "files"})
_INIT_FIELDS = tuple(
    f.name for f in dataclasses.fields(PreparedDataset) if f.name not in _NESTED and f.init
)
_ALL_FIELDS = tuple(
    f.name for f in dataclasses.fields(PreparedDataset) if f.name not in _NESTED
)


def _row_to_dataset(row: PreparedDatasetRow) -> PreparedDataset:
    files: dict[str, list[FileEntry]] = {}
    for f in sorted(row.files, key=lambda r: r.id):
        files.setdefault(f.split, []).append(FileEntry(path=f.path, size=f.size, checksum=f.checksum))
    splits = {s.name: s.num_examples for s in sorted(row.splits, key=lambda r: r.id)}
    return PreparedDataset(**{k: getattr(row, k) for k in _INIT_FIELDS}, splits=splits, files=files)


def _dataset_to_row(record: PreparedDataset) -> PreparedDatasetRow:
    row = PreparedDatasetRow(**{k: getattr(record, k) for k in _ALL_FIELDS})
    row.splits = [SplitRow(name=name, num_examples=n) for name, n in record.splits.items()]
    row.files = [
        ShardFileRow(split=split, path=e.path, size=e.size, checksum=e.checksum)
        for split, entries in record.files.items()
        for e in entries
    ]
    return row


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def rebuild_cache(session: Session, registry_dir: str | Path) -> int:
    """Drop every indexed row and repopulate from YAML; returns the dataset count."""
    session.query(ShardFileRow).delete()
    session.query(SplitRow).delete()
    session.query(PreparedDatasetRow).delete()
    session.flush()

    records = reg.load_all(registry_dir)
    session.add_all(_dataset_to_row(r) for r in records)
    session.commit()
    return len(records)


def indexed_ids(session: Session) -> set[str]:
    return {dataset_id for (dataset_id,) in session.query(PreparedDatasetRow.dataset_id)}


def query_dataset(session: Session, dataset_id: str) -> PreparedDataset | None:
    row = session.get(PreparedDatasetRow, dataset_id)
    return _row_to_dataset(row) if row else None


def query_datasets(
    session: Session,
    builder_name: str | None = None,
    config_name: str | None = None,
) -> list[PreparedDataset]:
    """Indexed datasets, optionally filtered, ordered by id."""
    q = session.query(PreparedDatasetRow)
    if builder_name:
        q = q.filter(PreparedDatasetRow.builder_name == builder_name)
    if config_name:
        q = q.filter(PreparedDatasetRow.config_name == config_name)
    return [_row_to_dataset(r) for r in q.order_by(PreparedDatasetRow.dataset_id).all()]


def upsert_dataset(session: Session, record: PreparedDataset) -> None:
    existing = session.get(PreparedDatasetRow, record.dataset_id)
    if existing:
        session.delete(existing)
        session.flush()
    session.add(_dataset_to_row(record))
    session.commit()


def delete_dataset(session: Session, dataset_id: str) -> None:
    row = session.get(PreparedDatasetRow, dataset_id)
    if row:
        session.delete(row)
        session.commit()
