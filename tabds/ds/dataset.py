"""Read-side of prepared datasets: :class:`Dataset` and :class:`DatasetDict`.

Columns are memory-mapped from the ``.npy`` shards written by
:mod:`tabds.ds.writer`; only the rows that are accessed get decoded.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

import numpy as np
import yaml

from tabds.ds.features import Features, FeatureType, Sequence, Value
from tabds.ds.info import DatasetInfo
from tabds.ds.splits import SplitDict, SplitInfo
from tabds.ds.types import DatasetNotPreparedError, SplitNotFoundError
from tabds.ds.writer import (
    DATA_SUFFIX,
    ITEM_SUFFIX,
    MASK_SUFFIX,
    OFFSETS_SUFFIX,
    shard_dir_name,
    write_examples,
)

logger = logging.getLogger(__name__)

DATASET_STATE_FILENAME = "state.yaml"
_ITER_BATCH_SIZE = 1000


def _load_array(path: Path) -> np.ndarray:
    try:
        return np.load(path, mmap_mode="r")
    except ValueError:
        # zero-length arrays cannot always be memory-mapped
        return np.load(path)


class _ColumnReader:
    """Decodes rows of one column of one shard."""

    def __init__(self, shard_dir: Path, prefix: str, feature: FeatureType) -> None:
        self.feature = feature
        mask_path = shard_dir / f"{prefix}{MASK_SUFFIX}.npy"
        self._mask = _load_array(mask_path) if mask_path.exists() else None
        self._inner: _ColumnReader | None = None
        if isinstance(feature, Sequence):
            self._offsets = _load_array(shard_dir / f"{prefix}{OFFSETS_SUFFIX}.npy")
            self._inner = _ColumnReader(shard_dir, prefix + ITEM_SUFFIX, feature.feature)
        elif isinstance(feature, Value) and feature.dtype == "string":
            self._data = _load_array(shard_dir / f"{prefix}{DATA_SUFFIX}.npy")
            self._offsets = _load_array(shard_dir / f"{prefix}{OFFSETS_SUFFIX}.npy")
        else:
            self._values = _load_array(shard_dir / f"{prefix}.npy")

    def slice(self, start: int, stop: int) -> list[Any]:
        """Decode rows ``[start, stop)``."""
        if stop <= start:
            return []
        if isinstance(self.feature, Sequence):
            offs = np.asarray(self._offsets[start:stop + 1])
            items = self._inner.slice(int(offs[0]), int(offs[-1]))
            rel = offs - offs[0]
            out = [items[rel[i]:rel[i + 1]] for i in range(len(rel) - 1)]
        elif isinstance(self.feature, Value) and self.feature.dtype == "string":
            offs = np.asarray(self._offsets[start:stop + 1])
            raw = self._data[offs[0]:offs[-1]].tobytes()
            rel = offs - offs[0]
            out = [raw[rel[i]:rel[i + 1]].decode("utf-8") for i in range(len(rel) - 1)]
        else:
            out = self._values[start:stop].tolist()
        if self._mask is not None:
            mask = self._mask[start:stop]
            out = [None if m else v for v, m in zip(out, mask)]
        return out

    def get(self, index: int) -> Any:
        return self.slice(index, index + 1)[0]


class _Shard:
    def __init__(self, shard_dir: Path, features: Features, num_rows: int) -> None:
        self.shard_dir = shard_dir
        self.features = features
        self.num_rows = num_rows
        self._columns: dict[str, _ColumnReader] = {}

    def column(self, name: str) -> _ColumnReader:
        if name not in self._columns:
            self._columns[name] = _ColumnReader(self.shard_dir, name, self.features[name])
        return self._columns[name]


class Dataset:
    """A table of rows backed by memory-mapped columnar shards.

    ``ds[i]`` returns a row dict, ``ds[a:b]`` and ``ds[[i, j]]`` a dict of
    lists, ``ds["col"]`` a whole column.
    """

    def __init__(
        self,
        shards: list[_Shard],
        features: Features,
        info: DatasetInfo | None = None,
        split: str | None = None,
        indices: np.ndarray | None = None,
    ) -> None:
        self._shards = shards
        self._features = features
        self._info = info or DatasetInfo(features=features)
        self._split = split
        self._indices = indices
        self._offsets = np.cumsum([0] + [s.num_rows for s in shards])

    # -- construction ------------------------------------------------------

    @classmethod
    def from_split_dir(cls, dataset_dir: str | Path, split: str, info: DatasetInfo) -> Dataset:
        """Open the shards of *split* described by ``info.splits``."""
        if split not in info.splits:
            raise SplitNotFoundError(f"Unknown split '{split}'. Should be one of {list(info.splits)}.")
        if info.features is None:
            raise DatasetNotPreparedError(f"No features recorded for {dataset_dir}")
        root = Path(dataset_dir)
        lengths = info.splits[split].shard_lengths
        shards = [
            _Shard(root / shard_dir_name(split, i), info.features, n)
            for i, n in enumerate(lengths)
        ]
        return cls(shards, info.features, info=info, split=split)

    # -- properties --------------------------------------------------------

    @property
    def features(self) -> Features:
        return self._features

    @property
    def info(self) -> DatasetInfo:
        return self._info

    @property
    def split(self) -> str | None:
        return self._split

    @property
    def column_names(self) -> list[str]:
        return list(self._features)

    @property
    def num_rows(self) -> int:
        if self._indices is not None:
            return len(self._indices)
        return int(self._offsets[-1])

    @property
    def num_columns(self) -> int:
        return len(self._features)

    @property
    def shape(self) -> tuple[int, int]:
        return self.num_rows, self.num_columns

    def __len__(self) -> int:
        return self.num_rows

    def __repr__(self) -> str:
        return f"Dataset({{\n    features: {self.column_names},\n    num_rows: {self.num_rows}\n}})"

    # -- row access --------------------------------------------------------

    def _physical(self, index: int) -> int:
        return int(self._indices[index]) if self._indices is not None else index

    def _locate(self, physical: int) -> tuple[_Shard, int]:
        shard_idx = int(np.searchsorted(self._offsets, physical, side="right")) - 1
        return self._shards[shard_idx], physical - int(self._offsets[shard_idx])

    def _check_index(self, index: int) -> int:
        n = self.num_rows
        if index < 0:
            index += n
        if not 0 <= index < n:
            raise IndexError(f"Index {index} out of range for dataset of size {n}")
        return index

    def _row(self, index: int) -> dict[str, Any]:
        shard, local = self._locate(self._physical(index))
        return {name: shard.column(name).get(local) for name in self._features}

    def _physical_range(self, start: int, stop: int) -> dict[str, list[Any]]:
        out: dict[str, list[Any]] = {name: [] for name in self._features}
        for i, shard in enumerate(self._shards):
            lo, hi = int(self._offsets[i]), int(self._offsets[i + 1])
            a, b = max(start, lo), min(stop, hi)
            if a >= b:
                continue
            for name in self._features:
                out[name].extend(shard.column(name).slice(a - lo, b - lo))
        return out

    def _take(self, indices: Iterable[int]) -> dict[str, list[Any]]:
        out: dict[str, list[Any]] = {name: [] for name in self._features}
        for index in indices:
            row = self._row(self._check_index(int(index)))
            for name, value in row.items():
                out[name].append(value)
        return out

    def _batch(self, start: int, stop: int) -> dict[str, list[Any]]:
        if self._indices is None:
            return self._physical_range(start, stop)
        return self._take(range(start, stop))

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, (int, np.integer)):
            return self._row(self._check_index(int(key)))
        if isinstance(key, slice):
            start, stop, step = key.indices(self.num_rows)
            if step == 1:
                return self._batch(start, max(start, stop))
            return self._take(range(start, stop, step))
        if isinstance(key, str):
            if key not in self._features:
                raise KeyError(f"Column {key!r} not in dataset. Current columns: {self.column_names}")
            return self._batch(0, self.num_rows)[key]
        if isinstance(key, (list, tuple, np.ndarray)):
            return self._take(key)
        raise TypeError(f"Unsupported key type: {type(key).__name__}")

    def __iter__(self) -> Iterator[dict[str, Any]]:
        names = self.column_names
        for batch in self.iter(_ITER_BATCH_SIZE):
            for values in zip(*(batch[n] for n in names)):
                yield dict(zip(names, values))

    def iter(self, batch_size: int, drop_last_batch: bool = False) -> Iterator[dict[str, list[Any]]]:
        """Yield dict-of-lists batches of *batch_size* rows."""
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        n = self.num_rows
        for start in range(0, n, batch_size):
            stop = min(start + batch_size, n)
            if drop_last_batch and stop - start < batch_size:
                return
            yield self._batch(start, stop)

    # -- transforms --------------------------------------------------------

    def _with_indices(self, indices: np.ndarray) -> Dataset:
        return Dataset(self._shards, self._features, info=self._info, split=self._split, indices=indices)

    def select(self, indices: Iterable[int]) -> Dataset:
        """Return a view on the given rows (negative indices allowed)."""
        idx = np.asarray(list(indices), dtype=np.int64)
        n = self.num_rows
        if idx.size:
            if idx.min() < -n or idx.max() >= n:
                raise IndexError(f"Indices out of range for dataset of size {n}")
            idx = np.where(idx < 0, idx + n, idx)
        base = self._indices if self._indices is not None else np.arange(n, dtype=np.int64)
        return self._with_indices(base[idx])

    def shuffle(self, seed: int | None = None, generator: np.random.Generator | None = None) -> Dataset:
        rng = generator if generator is not None else np.random.default_rng(seed)
        return self.select(rng.permutation(self.num_rows))

    def filter(self, function: Callable[[dict[str, Any]], bool]) -> Dataset:
        keep = [i for i, row in enumerate(self) if function(row)]
        return self.select(keep)

    def train_test_split(
        self,
        test_size: float | int | None = None,
        train_size: float | int | None = None,
        shuffle: bool = True,
        seed: int | None = None,
    ) -> DatasetDict:
        """Split into ``train`` and ``test`` views.

        Sizes are fractions in ``(0, 1)`` or absolute row counts; the default
        test size is 0.25.
        """
        n = self.num_rows
        n_test = _resolve_size(test_size, n, "test_size")
        n_train = _resolve_size(train_size, n, "train_size")
        if n_test is None and n_train is None:
            n_test = int(np.ceil(0.25 * n))
        if n_test is None:
            n_test = n - n_train
        if n_train is None:
            n_train = n - n_test
        if n_train + n_test > n or n_train <= 0 or n_test <= 0:
            raise ValueError(f"Cannot split {n} rows into train={n_train} and test={n_test}")
        order = np.random.default_rng(seed).permutation(n) if shuffle else np.arange(n)
        return DatasetDict(
            {
                "train": self.select(order[:n_train]),
                "test": self.select(order[n_train:n_train + n_test]),
            }
        )

    # -- export ------------------------------------------------------------

    def to_dict(self) -> dict[str, list[Any]]:
        return self._batch(0, self.num_rows)

    def to_pandas(self):
        """Return a ``pandas.DataFrame`` (pandas is imported on demand)."""
        import pandas as pd

        return pd.DataFrame(self.to_dict(), columns=self.column_names)

    def _write_split(self, path: Path, split: str, writer_batch_size: int | None = None) -> SplitInfo:
        _, num_examples, num_bytes, shard_lengths = write_examples(
            path, split, self, features=self._features, writer_batch_size=writer_batch_size
        )
        return SplitInfo(split, num_bytes=num_bytes, num_examples=num_examples, shard_lengths=shard_lengths)

    def save_to_disk(self, dataset_path: str | Path) -> None:
        """Write a self-contained copy (shards, info, state) to *dataset_path*."""
        path = Path(dataset_path)
        split = self._split or "train"
        _prepare_target(path, [self])
        info = self._info.copy()
        info.features = self._features
        info.splits = SplitDict()
        info.splits.add(self._write_split(path, split))
        info.dataset_size = info.splits.total_num_bytes
        info.write_to_directory(path)
        _write_state(path, "Dataset", [split])


def _resolve_size(size: float | int | None, n: int, label: str) -> int | None:
    if size is None:
        return None
    if isinstance(size, float):
        if not 0 < size < 1:
            raise ValueError(f"{label}={size} should be within (0, 1) when a float")
        return int(np.ceil(size * n)) if label == "test_size" else int(np.floor(size * n))
    if size <= 0 or size >= n:
        raise ValueError(f"{label}={size} should be within (0, {n}) when an int")
    return int(size)


def _prepare_target(path: Path, sources: list[Dataset]) -> None:
    target = path.resolve()
    for ds in sources:
        for shard in ds._shards:
            shard_dir = shard.shard_dir.resolve()
            if shard_dir == target or target in shard_dir.parents:
                raise PermissionError(
                    f"Tried to overwrite {path} but a dataset can't overwrite itself. "
                    "Save it to another directory first."
                )
    if path.exists():
        if any(path.iterdir()) and not (path / DATASET_STATE_FILENAME).exists():
            raise FileExistsError(f"{path} exists and is not a saved dataset")
        shutil.rmtree(path)
    path.mkdir(parents=True)


def _write_state(path: Path, kind: str, splits: list[str]) -> None:
    with open(path / DATASET_STATE_FILENAME, "w", encoding="utf-8") as fh:
        yaml.safe_dump({"type": kind, "splits": splits}, fh, sort_keys=False)


def concatenate_datasets(dsets: list[Dataset]) -> Dataset:
    """Concatenate datasets with identical features into one view."""
    if not dsets:
        raise ValueError("Unable to concatenate an empty list of datasets.")
    features = dsets[0].features
    for ds in dsets[1:]:
        if ds.features != features:
            raise ValueError(
                f"Datasets have different features: {features.to_dict()} != {ds.features.to_dict()}"
            )
    shards: list[_Shard] = []
    parts: list[np.ndarray] = []
    has_indices = any(ds._indices is not None for ds in dsets)
    for ds in dsets:
        base = sum(s.num_rows for s in shards)
        if has_indices:
            local = ds._indices if ds._indices is not None else np.arange(ds.num_rows, dtype=np.int64)
            parts.append(local + base)
        shards.extend(ds._shards)
    indices = np.concatenate(parts) if has_indices else None
    info = dsets[0].info.copy()
    return Dataset(shards, features, info=info, split="+".join(str(ds.split) for ds in dsets), indices=indices)


class DatasetDict(dict):
    """``split name -> Dataset``."""

    def _check_values_type(self) -> None:
        for ds in self.values():
            if not isinstance(ds, Dataset):
                raise TypeError(f"Values in DatasetDict should be Dataset objects, got {type(ds).__name__}")

    @property
    def num_rows(self) -> dict[str, int]:
        return {k: ds.num_rows for k, ds in self.items()}

    @property
    def column_names(self) -> dict[str, list[str]]:
        return {k: ds.column_names for k, ds in self.items()}

    def __repr__(self) -> str:
        body = ",\n".join(f"    {k}: {ds!r}" for k, ds in self.items())
        return f"DatasetDict({{\n{body}\n}})"

    def shuffle(self, seed: int | None = None) -> DatasetDict:
        return DatasetDict({k: ds.shuffle(seed=seed) for k, ds in self.items()})

    def save_to_disk(self, dataset_dict_path: str | Path) -> None:
        """Write every split into one directory with a shared ``dataset_info.yaml``."""
        self._check_values_type()
        path = Path(dataset_dict_path)
        _prepare_target(path, list(self.values()))
        first = next(iter(self.values()), None)
        info = first.info.copy() if first is not None else DatasetInfo()
        info.splits = SplitDict()
        for split, ds in self.items():
            if ds.features != first.features:
                raise ValueError("All splits of a DatasetDict must share the same features to be saved together")
            info.splits.add(ds._write_split(path, split))
        info.features = first.features if first is not None else Features()
        info.dataset_size = info.splits.total_num_bytes
        info.write_to_directory(path)
        _write_state(path, "DatasetDict", list(self))


def load_from_disk(dataset_path: str | Path) -> Dataset | DatasetDict:
    """Reopen a dataset written by :meth:`Dataset.save_to_disk` or
    :meth:`DatasetDict.save_to_disk`.

    Raises:
        FileNotFoundError: If *dataset_path* holds no saved dataset.
    """
    path = Path(dataset_path)
    state_path = path / DATASET_STATE_FILENAME
    if not state_path.exists():
        raise FileNotFoundError(f"Directory {path} is neither a Dataset nor a DatasetDict directory.")
    with open(state_path, encoding="utf-8") as fh:
        state = yaml.safe_load(fh) or {}
    info = DatasetInfo.from_directory(path)
    splits = state.get("splits") or list(info.splits)
    if state.get("type") == "Dataset":
        return Dataset.from_split_dir(path, splits[0], info)
    return DatasetDict({split: Dataset.from_split_dir(path, split, info) for split in splits})
