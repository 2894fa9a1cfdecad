"""Dataset builders.

A builder turns raw files into a prepared, columnar dataset in the cache.
Subclasses of :class:`GeneratorBasedBuilder` implement three methods:

``_info()``
    Return a :class:`DatasetInfo` (description, features, homepage, ...).
``_split_generators(dl_manager)``
    Download / locate raw files and return one :class:`SplitGenerator` per
    split.
``_generate_examples(**gen_kwargs)``
    Yield ``(key, example)`` pairs for one split.

Example::

    class Scores(GeneratorBasedBuilder):
        VERSION = "1.0.0"

        def _info(self):
            return DatasetInfo(features=Features({"name": Value("string"), "score": Value("int32")}))

        def _split_generators(self, dl_manager):
            path = dl_manager.download("https://example.org/scores.csv")
            return [SplitGenerator(Split.TRAIN, gen_kwargs={"path": path})]

        def _generate_examples(self, path):
            ...
"""

from __future__ import annotations

import abc
import dataclasses
import hashlib
import json
import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from tabds.config import Settings, load_settings
from tabds.ds import integrity, registry
from tabds.ds.data_files import DataFilesDict, DataFilesPatterns, is_remote
from tabds.ds.dataset import Dataset, DatasetDict, concatenate_datasets
from tabds.ds.download import DownloadConfig, DownloadManager
from tabds.ds.features import Features
from tabds.ds.info import DATASET_INFO_FILENAME, DatasetInfo
from tabds.ds.splits import SplitDict, SplitGenerator, SplitInfo, check_splits_exist, parse_split_expression
from tabds.ds.types import (
    DatasetNotPreparedError,
    DownloadMode,
    PreparedDataset,
    VerificationMode,
)
from tabds.ds.version import Version
from tabds.ds.writer import ShardedWriter

logger = logging.getLogger(__name__)

INVALID_WINDOWS_CHARACTERS_IN_PATH = r"<>:/\|?*"
_INCOMPLETE_SUFFIX = ".incomplete"


def camelcase_to_snakecase(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name).lower()


@dataclass
class BuilderConfig:
    """Parameters of one variant of a dataset.

    Subclass it to add builder-specific options (separator, field name, ...).
    """

    name: str = "default"
    version: Version | str | None = "0.0.0"
    data_dir: str | None = None
    data_files: DataFilesPatterns | DataFilesDict | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        for invalid_char in INVALID_WINDOWS_CHARACTERS_IN_PATH:
            if invalid_char in self.name:
                raise ValueError(
                    f"Bad characters from black list '{INVALID_WINDOWS_CHARACTERS_IN_PATH}' "
                    f"found in '{self.name}'. They could create issues when creating a directory "
                    "for this config on Windows filesystem."
                )
        if self.version is not None and not isinstance(self.version, Version):
            self.version = Version(str(self.version))

    def create_config_id(self, config_kwargs: dict[str, Any], custom_features: Features | None = None) -> str:
        """Cache directory name of this config.

        Plain ``name`` when nothing but the name and version was customised,
        otherwise ``name-<16 hex digest>`` of the custom parameters, resolved
        data files (with their size and mtime) and custom features.
        """
        params = {k: v for k, v in config_kwargs.items() if k not in ("name", "version")}
        if self.data_files is not None:
            params["data_files"] = _data_files_fingerprint(self.data_files)
        if custom_features is not None:
            params["features"] = custom_features.to_dict()
        if not params:
            return self.name
        payload = json.dumps(params, sort_keys=True, default=str)
        return f"{self.name}-{hashlib.sha256(payload.encode('utf-8')).hexdigest()[:16]}"


def _data_files_fingerprint(data_files: Any) -> Any:
    if isinstance(data_files, dict):
        return {str(k): _data_files_fingerprint(v) for k, v in data_files.items()}
    if isinstance(data_files, (list, tuple)):
        return [_data_files_fingerprint(v) for v in data_files]
    path = str(data_files)
    if not is_remote(path) and Path(path).is_file():
        st = Path(path).stat()
        return [path, st.st_size, st.st_mtime_ns]
    return path


class DatasetBuilder(abc.ABC):
    """Base class: config selection, cache layout and the prepare/read lifecycle.

    Args:
        cache_dir: Cache root; defaults to ``Settings.cache_root``.
        dataset_name: Builder name used in the cache path; defaults to the
            snake-cased class name.
        config_name: Name of one of ``BUILDER_CONFIGS`` (or of a new config).
        data_dir: Directory of raw files, stored on the config.
        data_files: Glob patterns (``str``, ``list`` or ``{split: ...}``).
        base_path: Directory *data_dir* and relative patterns are resolved against.
        features: Overrides the features returned by ``_info()``.
        writer_batch_size: Examples buffered before each columnar flush.
        settings: Resolved :class:`Settings`; loaded from env / YAML when omitted.
        **config_kwargs: Extra fields of ``BUILDER_CONFIG_CLASS``.
    """

    VERSION: Version | str | None = None
    BUILDER_CONFIG_CLASS = BuilderConfig
    BUILDER_CONFIGS: list[BuilderConfig] = []
    DEFAULT_CONFIG_NAME: str | None = None
    DEFAULT_WRITER_BATCH_SIZE: int | None = None

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        dataset_name: str | None = None,
        config_name: str | None = None,
        data_dir: str | None = None,
        data_files: DataFilesPatterns | DataFilesDict | None = None,
        base_path: str | Path | None = None,
        features: Features | None = None,
        writer_batch_size: int | None = None,
        settings: Settings | None = None,
        **config_kwargs: Any,
    ) -> None:
        if settings is None:
            settings = load_settings(cache_root=cache_dir)
        elif cache_dir is not None:
            settings = dataclasses.replace(settings, cache_root=Path(cache_dir), db_path=None)
        self.settings = settings
        self.name = dataset_name or camelcase_to_snakecase(type(self).__name__)
        self.base_path = Path(base_path) if base_path is not None else Path.cwd()
        self._writer_batch_size = (
            writer_batch_size or self.DEFAULT_WRITER_BATCH_SIZE or self.settings.writer_batch_size
        )

        if data_dir is not None:
            config_kwargs["data_dir"] = data_dir
        if data_files is not None:
            config_kwargs["data_files"] = data_files
        self.config, self.config_id = self._create_builder_config(config_name, features, **config_kwargs)

        self.info = self._info()
        self.info.builder_name = self.name
        self.info.config_name = self.config.name
        self.info.version = str(self.config.version)
        if not self.info.description and self.config.description:
            self.info.description = self.config.description
        if features is not None:
            self.info.features = features
        if self.is_prepared:
            self.info.update(DatasetInfo.from_directory(self.cache_dir))

    # -- config --------------------------------------------------------------

    def _create_builder_config(
        self, config_name: str | None, custom_features: Features | None, **config_kwargs: Any
    ) -> tuple[BuilderConfig, str]:
        if config_name is None:
            config_name = config_kwargs.pop("name", None)
        valid = {f.name for f in dataclasses.fields(self.BUILDER_CONFIG_CLASS)}
        unknown = set(config_kwargs) - valid
        if unknown:
            raise ValueError(
                f"BuilderConfig {self.BUILDER_CONFIG_CLASS.__name__} doesn't have a '{sorted(unknown)[0]}' key."
            )

        configs = {c.name: c for c in self.BUILDER_CONFIGS}
        if len(configs) != len(self.BUILDER_CONFIGS):
            raise ValueError(f"Names in BUILDER_CONFIGS must not be duplicated. Got {list(configs)}")

        if config_name is None and configs:
            if self.DEFAULT_CONFIG_NAME is not None:
                config_name = self.DEFAULT_CONFIG_NAME
            elif len(configs) == 1:
                config_name = next(iter(configs))
            else:
                raise ValueError(
                    "Config name is missing.\n"
                    f"Please pick one among the available configs: {list(configs)}\n"
                    f"Example of usage:\n\t`load_dataset('{self.name}', '{next(iter(configs))}')`"
                )

        if config_name in configs:
            config = dataclasses.replace(configs[config_name], **config_kwargs)
        elif configs:
            raise ValueError(f"BuilderConfig '{config_name}' not found. Available: {list(configs)}")
        else:
            kwargs = dict(config_kwargs)
            if config_name is not None:
                kwargs["name"] = config_name
            kwargs.setdefault("version", str(self.VERSION) if self.VERSION else "0.0.0")
            config = self.BUILDER_CONFIG_CLASS(**kwargs)

        if self.VERSION and (config.version is None or config.version == "0.0.0"):
            config.version = Version(str(self.VERSION))
        if config.version is None:
            config.version = Version("0.0.0")

        if config.data_files is not None and not isinstance(config.data_files, DataFilesDict):
            config.data_files = DataFilesDict.from_patterns(config.data_files, self._data_base_path(config))

        config_id = config.create_config_id(config_kwargs, custom_features=custom_features)
        return config, config_id

    def _data_base_path(self, config: BuilderConfig) -> Path:
        base = self.base_path
        if config.data_dir:
            base = base / config.data_dir
        return base

    # -- cache layout --------------------------------------------------------

    @property
    def cache_dir(self) -> Path:
        """``<cache_root>/<builder>/<config_id>/<version>``."""
        return self.settings.cache_root / self.name / self.config_id / str(self.config.version)

    @property
    def dataset_id(self) -> str:
        return f"{self.name}/{self.config_id}/{self.config.version}"

    @property
    def is_prepared(self) -> bool:
        return (self.cache_dir / DATASET_INFO_FILENAME).exists()

    # -- lifecycle -----------------------------------------------------------

    @abc.abstractmethod
    def _info(self) -> DatasetInfo:
        """Return the static metadata of the dataset."""

    @abc.abstractmethod
    def _split_generators(self, dl_manager: DownloadManager) -> list[SplitGenerator]:
        """Locate the raw files and return one generator per split."""

    @abc.abstractmethod
    def _prepare_split(self, split_generator: SplitGenerator, target_dir: Path, max_shard_size: int) -> SplitInfo:
        """Write one split into *target_dir*."""

    def download_and_prepare(
        self,
        download_config: DownloadConfig | None = None,
        download_mode: DownloadMode | str | None = None,
        verification_mode: VerificationMode | str | None = None,
        max_shard_size: int | None = None,
        dl_manager: DownloadManager | None = None,
    ) -> None:
        """Download raw files and write the prepared dataset to :attr:`cache_dir`.

        The dataset is generated in ``<cache_dir>.incomplete`` and renamed
        once every split is written and verified, so a failure never leaves
        a half-written dataset behind.

        Raises:
            VerificationError: When a check enabled by *verification_mode* fails.
            DuplicatedKeysError: When a split yields the same key twice.
        """
        download_mode = DownloadMode(download_mode or DownloadMode.REUSE_DATASET_IF_EXISTS)
        verification_mode = VerificationMode(verification_mode or VerificationMode.BASIC_CHECKS)
        max_shard_size = max_shard_size or self.settings.max_shard_size

        if self.is_prepared and download_mode == DownloadMode.REUSE_DATASET_IF_EXISTS:
            logger.info("Found cached dataset %s (%s)", self.name, self.cache_dir)
            self.info = DatasetInfo.from_directory(self.cache_dir)
            return

        if dl_manager is None:
            if download_config is None:
                download_config = DownloadConfig(cache_dir=self.settings.downloads_dir)
            dl_manager = DownloadManager(
                dataset_name=self.name,
                download_config=download_config,
                download_mode=download_mode,
                settings=self.settings,
            )

        logger.info("Generating dataset %s (%s)", self.name, self.cache_dir)
        incomplete = self.cache_dir.with_name(self.cache_dir.name + _INCOMPLETE_SUFFIX)
        if incomplete.exists():
            shutil.rmtree(incomplete)
        incomplete.mkdir(parents=True)
        try:
            split_dict = self._download_and_prepare(dl_manager, incomplete, max_shard_size)

            if verification_mode == VerificationMode.ALL_CHECKS:
                integrity.verify_checksums(
                    self.info.download_checksums or None, dl_manager.recorded_checksums, "dataset source files"
                )
            if verification_mode in (VerificationMode.ALL_CHECKS, VerificationMode.BASIC_CHECKS):
                integrity.verify_splits(self.info.splits or None, split_dict)

            self.info.splits = split_dict
            self.info.download_checksums = dl_manager.recorded_checksums
            self.info.download_size = dl_manager.downloaded_size
            self.info.dataset_size = split_dict.total_num_bytes
            self.info.size_in_bytes = self.info.download_size + self.info.dataset_size
            if self.info.features is None:
                self.info.features = Features()
            self.info.write_to_directory(incomplete)
            files = {split: integrity.scan_directory(incomplete, split) for split in split_dict}

            if self.cache_dir.exists():
                shutil.rmtree(self.cache_dir)
            incomplete.rename(self.cache_dir)
        except BaseException:
            shutil.rmtree(incomplete, ignore_errors=True)
            raise

        self._register(files)
        logger.info(
            "Dataset %s prepared: %d examples in %d split(s)",
            self.name, split_dict.total_num_examples, len(split_dict),
        )

    def _download_and_prepare(self, dl_manager: DownloadManager, target_dir: Path, max_shard_size: int) -> SplitDict:
        split_dict = SplitDict()
        for split_generator in self._split_generators(dl_manager):
            if split_generator.name in split_dict:
                raise ValueError(f"Split '{split_generator.name}' is generated more than once")
            logger.info("Generating %s split", split_generator.name)
            split_dict.add(self._prepare_split(split_generator, target_dir, max_shard_size))
        return split_dict

    def _register(self, files: dict[str, list]) -> None:
        now = datetime.now(timezone.utc)
        existing = registry.load(self.settings.registry_dir, self.dataset_id)
        record = PreparedDataset(
            dataset_id=self.dataset_id,
            cache_dir=str(self.cache_dir),
            description=self.info.description,
            num_examples=self.info.splits.total_num_examples,
            dataset_size=self.info.dataset_size,
            download_size=self.info.download_size,
            splits={name: s.num_examples for name, s in self.info.splits.items()},
            files=files,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        registry.save(self.settings.registry_dir, record)

    # -- reading -------------------------------------------------------------

    def as_dataset(self, split: str | None = None) -> Dataset | DatasetDict:
        """Open the prepared dataset.

        Args:
            split: ``None`` for a :class:`DatasetDict` of every split, or a
                split expression such as ``"train"``, ``"train[:10%]"`` or
                ``"train+test"``.

        Raises:
            DatasetNotPreparedError: If :meth:`download_and_prepare` never ran.
            SplitNotFoundError: If a requested split does not exist.
        """
        if not self.is_prepared:
            raise DatasetNotPreparedError(
                f"Dataset {self.name} is not prepared in {self.cache_dir}. Call download_and_prepare() first."
            )
        info = DatasetInfo.from_directory(self.cache_dir)
        if split is None:
            return DatasetDict(
                {name: Dataset.from_split_dir(self.cache_dir, name, info) for name in info.splits}
            )

        slices = parse_split_expression(str(split))
        check_splits_exist(slices, list(info.splits))
        parts = []
        for s in slices:
            ds = Dataset.from_split_dir(self.cache_dir, s.name, info)
            start, stop = s.resolve(len(ds))
            if (start, stop) != (0, len(ds)):
                ds = ds.select(range(start, stop))
            parts.append(ds)
        return parts[0] if len(parts) == 1 else concatenate_datasets(parts)


class GeneratorBasedBuilder(DatasetBuilder):
    """Builder whose splits come from a ``_generate_examples`` generator."""

    @abc.abstractmethod
    def _generate_examples(self, **kwargs: Any) -> Iterator[tuple[Any, dict[str, Any]]]:
        """Yield ``(key, example)`` pairs; keys must be unique within a split."""

    def _prepare_split(self, split_generator: SplitGenerator, target_dir: Path, max_shard_size: int) -> SplitInfo:
        with ShardedWriter(
            target_dir,
            split_generator.name,
            features=self.info.features,
            writer_batch_size=self._writer_batch_size,
            max_shard_size=max_shard_size,
        ) as writer:
            for key, example in self._generate_examples(**split_generator.gen_kwargs):
                writer.write(example, key)
            num_examples, num_bytes, shard_lengths = writer.finalize()
        if self.info.features is None and writer.features is not None:
            self.info.features = writer.features
        return SplitInfo(
            name=split_generator.name,
            num_bytes=num_bytes,
            num_examples=num_examples,
            shard_lengths=shard_lengths,
        )
