"""Entry points: resolve a *path* to a builder and load its dataset.

*path* may be

* a packaged module name (``"csv"``, ``"json"``, ``"text"``) used with
  ``data_files`` or ``data_dir``;
* a builder script ``foo.py``, or a directory containing ``<dirname>.py``;
* a directory of data files, optionally described by a ``README.md`` card
  with ``configs``.
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

from tabds.config import Settings
from tabds.ds.builder import DatasetBuilder
from tabds.ds.card import CARD_FILENAME, DatasetCard
from tabds.ds.data_files import DataFilesDict, DataFilesPatterns, infer_splits
from tabds.ds.dataset import Dataset, DatasetDict
from tabds.ds.download import DownloadConfig
from tabds.ds.features import Features
from tabds.ds.packaged import (
    SUPPORTED_EXTENSIONS,
    get_packaged_builder,
    infer_module_for_data_files,
    is_packaged_module,
)
from tabds.ds.types import DataFilesNotFoundError, DownloadMode, VerificationMode

logger = logging.getLogger(__name__)


def _script_for(path: Path) -> Path | None:
    if path.is_file() and path.suffix == ".py":
        return path
    if path.is_dir():
        candidate = path / f"{path.name}.py"
        if candidate.is_file():
            return candidate
    return None


def _import_script(script: Path) -> ModuleType:
    resolved = script.resolve()
    digest = hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:8]
    module_name = f"tabds_script_{resolved.stem}_{digest}"
    spec = importlib.util.spec_from_file_location(module_name, resolved)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import builder script {resolved}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def builder_class_from_script(script: str | Path) -> type[DatasetBuilder]:
    """The single concrete :class:`DatasetBuilder` subclass defined in *script*.

    Raises:
        ValueError: If the script defines none or several.
    """
    module = _import_script(Path(script))
    found = [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, DatasetBuilder)
        and obj.__module__ == module.__name__
        and not inspect.isabstract(obj)
    ]
    if not found:
        raise ValueError(f"No DatasetBuilder subclass found in {script}")
    if len(found) > 1:
        raise ValueError(
            f"Several DatasetBuilder subclasses found in {script}: {sorted(c.__name__ for c in found)}"
        )
    return found[0]


def _load_card(directory: Path) -> DatasetCard | None:
    if (directory / CARD_FILENAME).is_file():
        return DatasetCard.load(directory)
    return None


def load_dataset_builder(
    path: str | Path,
    name: str | None = None,
    data_dir: str | None = None,
    data_files: DataFilesPatterns | None = None,
    cache_dir: str | Path | None = None,
    features: Features | None = None,
    settings: Settings | None = None,
    **config_kwargs: Any,
) -> DatasetBuilder:
    """Instantiate the builder for *path* without preparing anything.

    Raises:
        DataFilesNotFoundError: Packaged module without data files, or a
            directory with no supported file.
        FileNotFoundError: *path* is neither a module, a script nor a directory.
        ValueError: Bad config name or builder options.
    """
    common: dict[str, Any] = {"cache_dir": cache_dir, "features": features, "settings": settings}
    spath = str(path)

    if is_packaged_module(spath):
        if data_files is None:
            if data_dir is None:
                raise DataFilesNotFoundError(
                    f"At least one data file must be specified for the '{spath}' builder "
                    "(pass data_files or data_dir)"
                )
            data_files = infer_splits(data_dir, SUPPORTED_EXTENSIONS)
        return get_packaged_builder(spath)(
            dataset_name=spath,
            config_name=name,
            data_dir=data_dir,
            data_files=data_files,
            **common,
            **config_kwargs,
        )

    p = Path(path).expanduser()
    script = _script_for(p)
    if script is not None:
        builder_cls = builder_class_from_script(script)
        logger.debug("Using builder %s from %s", builder_cls.__name__, script)
        return builder_cls(
            dataset_name=script.stem,
            config_name=name,
            data_dir=data_dir,
            data_files=data_files,
            base_path=script.parent,
            **common,
            **config_kwargs,
        )

    if p.is_dir():
        return _builder_for_directory(p, name, data_dir, data_files, common, config_kwargs)

    raise FileNotFoundError(f"Couldn't find a dataset script or data files at {path}")


def _builder_for_directory(
    directory: Path,
    name: str | None,
    data_dir: str | None,
    data_files: DataFilesPatterns | None,
    common: dict[str, Any],
    config_kwargs: dict[str, Any],
) -> DatasetBuilder:
    card = _load_card(directory)
    if card is not None and card.configs and data_files is None:
        card_kwargs = card.get_config(name)
        name = card_kwargs.pop("config_name")
        data_files = card_kwargs.pop("data_files", None)
        card_data_dir = card_kwargs.pop("data_dir", None)
        data_dir = data_dir or card_data_dir
        config_kwargs = {**card_kwargs, **config_kwargs}

    base = directory / data_dir if data_dir else directory
    if data_files is None:
        resolved = infer_splits(base, SUPPORTED_EXTENSIONS)
    else:
        resolved = DataFilesDict.from_patterns(data_files, base)
    module = infer_module_for_data_files(resolved)
    logger.debug("Loading %s with the %s builder", directory, module)
    return get_packaged_builder(module)(
        dataset_name=directory.resolve().name,
        config_name=name,
        data_dir=data_dir,
        data_files=resolved,
        base_path=directory,
        **common,
        **config_kwargs,
    )


def load_dataset(
    path: str | Path,
    name: str | None = None,
    data_dir: str | None = None,
    data_files: DataFilesPatterns | None = None,
    split: str | None = None,
    cache_dir: str | Path | None = None,
    features: Features | None = None,
    download_config: DownloadConfig | None = None,
    download_mode: DownloadMode | str | None = None,
    verification_mode: VerificationMode | str | None = None,
    settings: Settings | None = None,
    **config_kwargs: Any,
) -> Dataset | DatasetDict:
    """Prepare (or reuse) the dataset at *path* and open it.

    Returns a :class:`DatasetDict` when *split* is ``None``, else the
    :class:`Dataset` selected by the split expression.
    """
    builder = load_dataset_builder(
        path,
        name=name,
        data_dir=data_dir,
        data_files=data_files,
        cache_dir=cache_dir,
        features=features,
        settings=settings,
        **config_kwargs,
    )
    builder.download_and_prepare(
        download_config=download_config,
        download_mode=download_mode,
        verification_mode=verification_mode,
    )
    return builder.as_dataset(split=split)


def get_dataset_config_names(path: str | Path) -> list[str]:
    """Config names available for *path*; ``["default"]`` when it defines none."""
    if is_packaged_module(str(path)):
        return ["default"]
    p = Path(path).expanduser()
    script = _script_for(p)
    if script is not None:
        names = [c.name for c in builder_class_from_script(script).BUILDER_CONFIGS]
        return names or ["default"]
    if p.is_dir():
        card = _load_card(p)
        if card is not None and card.configs:
            return card.config_names
        return ["default"]
    raise FileNotFoundError(f"Couldn't find a dataset script or data files at {path}")


def get_dataset_split_names(path: str | Path, name: str | None = None, **kwargs: Any) -> list[str]:
    """Split names of one config, preparing the dataset only when nothing else tells."""
    builder = load_dataset_builder(path, name=name, **kwargs)
    if builder.info.splits:
        return list(builder.info.splits)
    if isinstance(builder.config.data_files, dict) and builder.config.data_files:
        return list(builder.config.data_files)
    builder.download_and_prepare()
    return list(builder.info.splits)
