"""Columnar shard writer.

Examples are encoded, buffered in memory and flushed every
``writer_batch_size`` rows. Every column of a shard is a set of ``.npy``
files inside ``<split>-NNNNN/``:

=====================  ==============================================
``<col>.npy``          numeric / bool / class-label values
``<col>.data.npy``     UTF-8 bytes of a string column (``uint8``)
``<col>.offsets.npy``  ``int64`` row boundaries (strings and lists)
``<col>.item.*``       item column of a ``Sequence``
``<col>.mask.npy``     ``True`` where the value is ``None``
=====================  ==============================================

Masks are only kept for columns that actually contain a ``None``. Column
data is appended to ``.part`` files during a shard's lifetime and gets its
``.npy`` header when the shard is closed, so memory stays bounded by one
batch.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Iterable

import numpy as np
from numpy.lib import format as npy_format

from tabds.config import DEFAULT_MAX_SHARD_SIZE, DEFAULT_WRITER_BATCH_SIZE
from tabds.ds.features import ClassLabel, Features, FeatureType, Sequence, Value
from tabds.ds.types import DuplicatedKeysError

logger = logging.getLogger(__name__)

SHARD_NAME_FORMAT = "{split}-{index:05d}"
ITEM_SUFFIX = ".item"
DATA_SUFFIX = ".data"
OFFSETS_SUFFIX = ".offsets"
MASK_SUFFIX = ".mask"


def shard_dir_name(split: str, index: int) -> str:
    return SHARD_NAME_FORMAT.format(split=split, index=index)


class _ArrayFile:
    """Append-only 1-D array that becomes a ``.npy`` file on close."""

    def __init__(self, path: Path, dtype: str | np.dtype) -> None:
        self.path = path
        self.dtype = np.dtype(dtype)
        self.length = 0
        self._part = path.with_name(path.name + ".part")
        self._fh = open(self._part, "wb")

    def append(self, arr: np.ndarray) -> int:
        arr = np.ascontiguousarray(arr, dtype=self.dtype)
        self._fh.write(arr.tobytes())
        self.length += len(arr)
        return arr.nbytes

    def close(self, keep: bool = True) -> None:
        self._fh.close()
        if not keep:
            self._part.unlink(missing_ok=True)
            return
        header = {
            "descr": npy_format.dtype_to_descr(self.dtype),
            "fortran_order": False,
            "shape": (self.length,),
        }
        with open(self.path, "wb") as out:
            npy_format.write_array_header_1_0(out, header)
            with open(self._part, "rb") as src:
                shutil.copyfileobj(src, out)
        self._part.unlink()


class _ColumnWriter:
    """Writes one (possibly nested) column of one shard."""

    def __init__(self, shard_dir: Path, prefix: str, feature: FeatureType) -> None:
        self.feature = feature
        self.has_null = False
        self._mask = _ArrayFile(shard_dir / f"{prefix}{MASK_SUFFIX}.npy", np.bool_)
        self._files = [self._mask]
        self._inner: _ColumnWriter | None = None
        self._offsets: _ArrayFile | None = None
        self._end = 0

        if isinstance(feature, Sequence):
            self._offsets = self._add(shard_dir / f"{prefix}{OFFSETS_SUFFIX}.npy", np.int64)
            self._offsets.append(np.zeros(1, dtype=np.int64))
            self._inner = _ColumnWriter(shard_dir, prefix + ITEM_SUFFIX, feature.feature)
        elif isinstance(feature, Value) and feature.dtype == "string":
            self._values = self._add(shard_dir / f"{prefix}{DATA_SUFFIX}.npy", np.uint8)
            self._offsets = self._add(shard_dir / f"{prefix}{OFFSETS_SUFFIX}.npy", np.int64)
            self._offsets.append(np.zeros(1, dtype=np.int64))
        else:
            self._values = self._add(shard_dir / f"{prefix}.npy", feature.numpy_dtype)

    def _add(self, path: Path, dtype: Any) -> _ArrayFile:
        f = _ArrayFile(path, dtype)
        self._files.append(f)
        return f

    def append(self, values: list[Any]) -> int:
        """Append encoded *values*; returns the number of bytes written."""
        mask = np.fromiter((v is None for v in values), dtype=np.bool_, count=len(values))
        self.has_null = self.has_null or bool(mask.any())
        nbytes = self._mask.append(mask)

        if isinstance(self.feature, Sequence):
            lists = [v if v is not None else [] for v in values]
            lengths = np.fromiter((len(v) for v in lists), dtype=np.int64, count=len(lists))
            nbytes += self._offsets.append(self._end + np.cumsum(lengths))
            self._end += int(lengths.sum())
            nbytes += self._inner.append([item for v in lists for item in v])
        elif isinstance(self.feature, Value) and self.feature.dtype == "string":
            encoded = [v.encode("utf-8") if v is not None else b"" for v in values]
            lengths = np.fromiter((len(b) for b in encoded), dtype=np.int64, count=len(encoded))
            nbytes += self._offsets.append(self._end + np.cumsum(lengths))
            self._end += int(lengths.sum())
            nbytes += self._values.append(np.frombuffer(b"".join(encoded), dtype=np.uint8))
        else:
            fill = False if self._values.dtype == np.bool_ else 0
            nbytes += self._values.append(
                np.asarray([v if v is not None else fill for v in values], dtype=self._values.dtype)
            )
        return nbytes

    def close(self, keep: bool = True) -> None:
        for f in self._files:
            f.close(keep=keep and (f is not self._mask or self.has_null))
        if self._inner is not None:
            self._inner.close(keep=keep)


class ShardedWriter:
    """Buffer encoded examples of one split and flush them as columnar shards.

    Args:
        dataset_dir: Directory that receives the ``<split>-NNNNN/`` shards.
        split: Split name.
        features: Column types; inferred from the first example when ``None``.
        writer_batch_size: Examples buffered before a flush.
        max_shard_size: Bytes after which the next flush opens a new shard.
        check_duplicate_keys: Raise :class:`DuplicatedKeysError` on a repeated key.
    """

    def __init__(
        self,
        dataset_dir: str | Path,
        split: str,
        features: Features | None = None,
        writer_batch_size: int | None = None,
        max_shard_size: int | None = None,
        check_duplicate_keys: bool = True,
    ) -> None:
        self.dataset_dir = Path(dataset_dir)
        self.split = split
        self.features = features
        self.writer_batch_size = writer_batch_size or DEFAULT_WRITER_BATCH_SIZE
        self.max_shard_size = max_shard_size or DEFAULT_MAX_SHARD_SIZE
        self.check_duplicate_keys = check_duplicate_keys

        self._buffer: list[dict[str, Any]] = []
        self._seen_keys: set[str] = set()
        self._columns: dict[str, _ColumnWriter] | None = None
        self._shard_index = 0
        self._shard_rows = 0
        self._shard_bytes = 0
        self.shard_lengths: list[int] = []
        self.num_examples = 0
        self.num_bytes = 0

    def __enter__(self) -> ShardedWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()

    def write(self, example: dict[str, Any], key: Any = None) -> None:
        """Encode and buffer one example."""
        if key is not None and self.check_duplicate_keys:
            skey = str(key)
            if skey in self._seen_keys:
                raise DuplicatedKeysError(key, self.split)
            self._seen_keys.add(skey)
        if self.features is None:
            self.features = Features.infer(example)
            logger.debug("Inferred features for split %s: %s", self.split, self.features)
        self._buffer.append(self.features.encode_example(example))
        if len(self._buffer) >= self.writer_batch_size:
            self.flush()

    def flush(self) -> None:
        """Write buffered examples to the current shard."""
        if not self._buffer:
            return
        if self._columns is None:
            self._open_shard()
        for name, column in self._columns.items():
            self._shard_bytes += column.append([ex[name] for ex in self._buffer])
        self._shard_rows += len(self._buffer)
        self.num_examples += len(self._buffer)
        logger.debug("Flushed %d examples to %s", len(self._buffer), shard_dir_name(self.split, self._shard_index))
        self._buffer.clear()
        if self._shard_bytes >= self.max_shard_size:
            self._close_shard()

    def _open_shard(self) -> None:
        shard_dir = self.dataset_dir / shard_dir_name(self.split, self._shard_index)
        shard_dir.mkdir(parents=True, exist_ok=True)
        for name in self.features:
            if "/" in name or name.startswith("."):
                raise ValueError(f"Invalid column name: {name!r}")
        self._columns = {
            name: _ColumnWriter(shard_dir, name, feature)
            for name, feature in self.features.items()
        }

    def _close_shard(self) -> None:
        if self._columns is None:
            return
        for column in self._columns.values():
            column.close()
        self.shard_lengths.append(self._shard_rows)
        self.num_bytes += self._shard_bytes
        self._columns = None
        self._shard_index += 1
        self._shard_rows = 0
        self._shard_bytes = 0

    def finalize(self) -> tuple[int, int, list[int]]:
        """Flush and close; returns ``(num_examples, num_bytes, shard_lengths)``."""
        self.flush()
        self._close_shard()
        logger.info(
            "Wrote %d examples (%d bytes) in %d shard(s) for split %s",
            self.num_examples, self.num_bytes, len(self.shard_lengths), self.split,
        )
        return self.num_examples, self.num_bytes, list(self.shard_lengths)

    def abort(self) -> None:
        """Drop buffered data and close open files without producing arrays."""
        self._buffer.clear()
        if self._columns is not None:
            for column in self._columns.values():
                column.close(keep=False)
            self._columns = None


def write_examples(
    dataset_dir: str | Path,
    split: str,
    examples: Iterable[dict[str, Any]],
    features: Features | None = None,
    **kwargs: Any,
) -> tuple[Features, int, int, list[int]]:
    """Write *examples* as one split; returns features and writer stats."""
    with ShardedWriter(dataset_dir, split, features=features, **kwargs) as writer:
        for example in examples:
            writer.write(example)
        num_examples, num_bytes, shard_lengths = writer.finalize()
    return writer.features or Features(), num_examples, num_bytes, shard_lengths
