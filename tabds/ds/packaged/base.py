"""Shared plumbing of the packaged file-format builders."""

from __future__ import annotations

import abc
import itertools
import logging
from pathlib import Path
from typing import Any, Iterator

from tabds.ds.builder import GeneratorBasedBuilder
from tabds.ds.download import DownloadManager
from tabds.ds.features import Features
from tabds.ds.splits import SplitGenerator
from tabds.ds.types import DataFilesNotFoundError

logger = logging.getLogger(__name__)

# Rows read from the first file to infer features.
INFER_SAMPLE_SIZE = 1000


class PackagedBuilder(GeneratorBasedBuilder):
    """Builder reading every file of ``config.data_files`` with :meth:`_iter_file`."""

    def _split_generators(self, dl_manager: DownloadManager) -> list[SplitGenerator]:
        if not self.config.data_files:
            raise DataFilesNotFoundError(
                f"At least one data file must be specified, but got data_files={self.config.data_files}"
            )
        local = dl_manager.download_and_extract(dict(self.config.data_files))
        files = {split: list(dl_manager.iter_files(paths)) for split, paths in local.items()}
        if self.info.features is None:
            first = next((f for paths in files.values() for f in paths), None)
            if first is not None:
                self.info.features = self._infer_features(first)
                logger.debug("Inferred features from %s: %s", first, self.info.features)
        return [SplitGenerator(name=split, gen_kwargs={"files": paths}) for split, paths in files.items()]

    def _infer_features(self, path: str) -> Features:
        return Features.infer_batch(list(itertools.islice(self._iter_file(path), INFER_SAMPLE_SIZE)))

    @abc.abstractmethod
    def _iter_file(self, path: str) -> Iterator[dict[str, Any]]:
        """Yield the raw examples of one local file."""

    def _encode(self, example: dict[str, Any], path: str, row_idx: int) -> dict[str, Any]:
        features = self.info.features
        if features is None:
            return example
        extra = set(example) - set(features)
        if extra:
            raise ValueError(
                f"{path}: row {row_idx + 1} has columns not in features: {sorted(extra)}"
            )
        encoded = {}
        for name, feature in features.items():
            try:
                encoded[name] = feature.encode_example(example.get(name))
            except (TypeError, ValueError) as exc:
                raise ValueError(
                    f"{path}: row {row_idx + 1}, column '{name}': {exc}. Types are inferred from "
                    f"the first {INFER_SAMPLE_SIZE} rows of the first file; pass features= to override them."
                ) from exc
        return encoded

    def _generate_examples(self, files: list[str]) -> Iterator[tuple[str, dict[str, Any]]]:
        for file_idx, path in enumerate(files):
            logger.debug("Reading %s", path)
            for row_idx, example in enumerate(self._iter_file(path)):
                yield f"{file_idx}_{row_idx}", self._encode(example, path, row_idx)

    @staticmethod
    def _suffix(path: str) -> str:
        name = Path(path).name.lower()
        if name.endswith(".gz"):
            name = name[:-3]
        return Path(name).suffix
