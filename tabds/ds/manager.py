"""CacheManager: facade over the registry, the SQLite index and the cache dirs."""

from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from sqlalchemy.orm import Session

from tabds.comm.db import get_session, init_db
from tabds.config import Settings, load_settings
from tabds.ds import cache, integrity, registry
from tabds.ds.types import (
    DatasetNotFoundError,
    DatasetNotPreparedError,
    PreparedDataset,
    VerifyResult,
)

if TYPE_CHECKING:
    from tabds.ds.builder import DatasetBuilder

logger = logging.getLogger(__name__)


@contextmanager
def _session() -> Iterator[Session]:
    s = get_session()
    try:
        yield s
    finally:
        s.close()


class CacheManager:
    """Central facade for everything prepared in one cache root.

    Builders record each prepared dataset in the YAML registry; the manager
    mirrors the registry into SQLite for querying and resynchronises the
    index whenever the two disagree.

    Args:
        cache_root: Overrides ``Settings.cache_root``.
        db_path: Overrides ``Settings.db_path``.
        settings: Fully resolved settings; loaded from env / YAML when omitted.
    """

    def __init__(
        self,
        cache_root: str | Path | None = None,
        db_path: str | Path | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or load_settings(cache_root=cache_root, db_path=db_path)
        self._registry_dir = self.settings.registry_dir
        self._registry_dir.mkdir(parents=True, exist_ok=True)
        self.sync()

    @property
    def cache_root(self) -> Path:
        return self.settings.cache_root

    def sync(self) -> bool:
        """Rebuild the index if its ids differ from the registry's. Returns ``True`` if rebuilt."""
        init_db(self.settings.db_path)
        yaml_ids = {r.dataset_id for r in registry.load_all(self._registry_dir)}
        with _session() as s:
            if cache.indexed_ids(s) == yaml_ids:
                return False
            logger.info("Auto-rebuilding index from YAML (%d datasets)", len(yaml_ids))
            cache.rebuild_cache(s, self._registry_dir)
        return True

    # -- registry / index ----------------------------------------------------

    def register(self, builder: DatasetBuilder) -> PreparedDataset:
        """Index the record written by ``builder.download_and_prepare()``.

        Raises:
            DatasetNotPreparedError: If the builder has not prepared its dataset here.
        """
        record = registry.load(self._registry_dir, builder.dataset_id)
        if record is None or not builder.is_prepared:
            raise DatasetNotPreparedError(
                f"Dataset {builder.dataset_id} is not prepared in {self.cache_root}"
            )
        with _session() as s:
            cache.upsert_dataset(s, record)
        return record

    def get(self, dataset_id: str) -> PreparedDataset:
        self.sync()
        with _session() as s:
            result = cache.query_dataset(s, dataset_id)
        if result is None:
            raise DatasetNotFoundError(dataset_id)
        return result

    def list(
        self,
        builder_name: str | None = None,
        config_name: str | None = None,
    ) -> list[PreparedDataset]:
        self.sync()
        with _session() as s:
            return cache.query_datasets(s, builder_name=builder_name, config_name=config_name)

    def delete(self, dataset_id: str) -> None:
        """Remove a dataset from the registry, the index and the disk."""
        record = self.get(dataset_id)
        if not registry.delete(self._registry_dir, dataset_id):
            raise DatasetNotFoundError(dataset_id)
        with _session() as s:
            cache.delete_dataset(s, dataset_id)

        target = Path(record.cache_dir)
        if target.is_dir():
            shutil.rmtree(target)
            logger.info("Deleted %s", target)
        # Drop now-empty <config_id>/ and <builder>/ parents.
        for parent in (target.parent, target.parent.parent):
            if parent.is_dir() and parent != self.cache_root and not any(parent.iterdir()):
                parent.rmdir()

    def rebuild_cache(self) -> int:
        """Rebuild the SQLite index from YAML."""
        with _session() as s:
            return cache.rebuild_cache(s, self._registry_dir)

    # -- integrity -----------------------------------------------------------

    def verify(self, dataset_id: str | None = None) -> list[VerifyResult]:
        """Re-check shard checksums of one or every prepared dataset."""
        records = [self.get(dataset_id)] if dataset_id else self.list()
        results: list[VerifyResult] = []
        for record in records:
            results.extend(integrity.verify_prepared(Path(record.cache_dir), record))
        bad = sum(1 for r in results if not r.ok)
        if bad:
            logger.warning("%d of %d shard files failed verification", bad, len(results))
        return results

    # -- downloads -----------------------------------------------------------

    def clean_downloads(self) -> int:
        """Delete cached downloads and extractions. Returns the bytes freed."""
        downloads = self.settings.downloads_dir
        if not downloads.is_dir():
            return 0
        freed = sum(p.stat().st_size for p in downloads.rglob("*") if p.is_file())
        shutil.rmtree(downloads)
        logger.info("Removed %s (%d bytes)", downloads, freed)
        return freed
