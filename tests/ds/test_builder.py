"""Tests for ds.builder: config selection, cache layout and prepare/read lifecycle."""

from __future__ import annotations

from unittest import mock

import pytest

from tabds.ds import registry
from tabds.ds.builder import BuilderConfig, GeneratorBasedBuilder, camelcase_to_snakecase
from tabds.ds.dataset import Dataset, DatasetDict
from tabds.ds.features import Features, Value
from tabds.ds.info import DatasetInfo
from tabds.ds.load import builder_class_from_script
from tabds.ds.splits import SplitDict, SplitGenerator, SplitInfo
from tabds.ds.types import (
    DatasetNotPreparedError,
    DuplicatedKeysError,
    NonMatchingSplitsSizesError,
    SplitNotFoundError,
)
from tabds.ds.version import Version


class Numbers(GeneratorBasedBuilder):
    """No configs, no VERSION, features inferred from the examples."""

    def _info(self):
        return DatasetInfo(description="plain numbers")

    def _split_generators(self, dl_manager):
        return [SplitGenerator("train", gen_kwargs={"n": 6})]

    def _generate_examples(self, n):
        for i in range(n):
            yield i, {"i": i, "half": i / 2}


class DuplicateKeys(Numbers):
    def _generate_examples(self, n):
        for i in range(n):
            yield i // 2, {"i": i, "half": i / 2}


class DeclaredSizes(Numbers):
    def _info(self):
        splits = SplitDict()
        splits.add(SplitInfo("train", num_examples=100))
        return DatasetInfo(features=Features({"i": Value("int64"), "half": Value("float64")}), splits=splits)


class TwiceTrain(Numbers):
    def _split_generators(self, dl_manager):
        return [SplitGenerator("train", {"n": 1}), SplitGenerator("train", {"n": 2})]


class NoDefault(Numbers):
    BUILDER_CONFIGS = [BuilderConfig(name="a"), BuilderConfig(name="b")]


class Clashing(Numbers):
    BUILDER_CONFIGS = [BuilderConfig(name="a"), BuilderConfig(name="a")]


@pytest.fixture()
def squares_cls(script_path):
    return builder_class_from_script(script_path)


@pytest.fixture()
def prepared(squares_cls, settings):
    builder = squares_cls(dataset_name="squares", settings=settings)
    builder.download_and_prepare()
    return builder


class TestNames:
    @pytest.mark.parametrize(
        "name, expected",
        [("Numbers", "numbers"), ("MyCSVBuilder", "my_csv_builder"), ("Squares2D", "squares2_d")],
    )
    def test_camelcase_to_snakecase(self, name, expected):
        assert camelcase_to_snakecase(name) == expected

    def test_invalid_config_name(self):
        with pytest.raises(ValueError, match="Bad characters"):
            BuilderConfig(name="a/b")

    def test_version_coerced(self):
        assert isinstance(BuilderConfig(version="1.0.0").version, Version)


class TestConfigSelection:
    def test_default_config(self, squares_cls, settings):
        builder = squares_cls(dataset_name="squares", settings=settings)
        assert builder.config.name == "small"
        assert builder.config.version == "1.2.0"
        assert builder.config_id == "small"
        assert builder.dataset_id == "squares/small/1.2.0"
        assert builder.cache_dir == settings.cache_root / "squares" / "small" / "1.2.0"
        assert builder.info.description == "Numbers and their squares"

    def test_named_config(self, squares_cls, settings):
        builder = squares_cls(dataset_name="squares", config_name="large", settings=settings)
        assert builder.config.description == "hundred squares"
        assert builder.info.config_name == "large"

    def test_unknown_config(self, squares_cls, settings):
        with pytest.raises(ValueError, match="'medium' not found"):
            squares_cls(config_name="medium", settings=settings)

    def test_unknown_option(self, squares_cls, settings):
        with pytest.raises(ValueError, match="doesn't have a 'sep' key"):
            squares_cls(settings=settings, sep=";")

    def test_custom_option_changes_config_id(self, squares_cls, settings):
        a = squares_cls(settings=settings, description="custom")
        b = squares_cls(settings=settings, description="custom")
        c = squares_cls(settings=settings, description="other")
        assert a.config_id.startswith("small-")
        assert len(a.config_id) == len("small-") + 16
        assert a.config_id == b.config_id != c.config_id

    def test_custom_option_does_not_leak_into_class_configs(self, squares_cls, settings):
        squares_cls(settings=settings, description="custom")
        assert squares_cls.BUILDER_CONFIGS[0].description == "ten squares"

    def test_custom_features_change_config_id(self, squares_cls, settings):
        features = Features({"n": Value("int32"), "square": Value("int64"), "parity": Value("string")})
        builder = squares_cls(settings=settings, features=features)
        assert builder.config_id != "small"
        assert builder.info.features == features

    def test_missing_config_name(self, settings):
        with pytest.raises(ValueError, match="Config name is missing"):
            NoDefault(settings=settings)

    def test_duplicate_config_names(self, settings):
        with pytest.raises(ValueError, match="must not be duplicated"):
            Clashing(settings=settings)

    def test_no_configs(self, settings):
        builder = Numbers(settings=settings)
        assert builder.name == "numbers"
        assert builder.config.name == "default"
        assert builder.config.version == "0.0.0"
        assert builder.dataset_id == "numbers/default/0.0.0"

    def test_cache_dir_argument(self, settings, tmp_path):
        builder = Numbers(cache_dir=tmp_path / "elsewhere", settings=settings)
        assert builder.cache_dir.is_relative_to(tmp_path / "elsewhere")
        assert builder.settings.db_path == tmp_path / "elsewhere" / "index.db"


class TestDownloadAndPrepare:
    def test_prepare_and_read(self, prepared, settings):
        assert prepared.is_prepared
        dd = prepared.as_dataset()
        assert isinstance(dd, DatasetDict)
        assert dd.num_rows == {"train": 10, "test": 2}
        assert dd["train"][3] == {"n": 3, "square": 9, "parity": 1}
        assert dd["test"]["n"] == [10, 11]

    def test_info_is_filled(self, prepared):
        info = DatasetInfo.from_directory(prepared.cache_dir)
        assert info.builder_name == "squares"
        assert info.version == "1.2.0"
        assert info.splits["train"].num_examples == 10
        assert info.dataset_size > 0
        assert info.size_in_bytes == info.dataset_size + info.download_size

    def test_registered_in_yaml(self, prepared, settings):
        record = registry.load(settings.registry_dir, "squares/small/1.2.0")
        assert record is not None
        assert record.splits == {"train": 10, "test": 2}
        assert record.num_examples == 12
        assert record.cache_dir == str(prepared.cache_dir)
        assert all(e.path.startswith("train-") for e in record.files["train"])
        assert (settings.registry_dir / "squares.yaml").is_file()

    def test_no_incomplete_dir_left(self, prepared):
        assert not prepared.cache_dir.with_name("1.2.0.incomplete").exists()

    def test_reuses_prepared_dataset(self, prepared, squares_cls, settings):
        again = squares_cls(dataset_name="squares", settings=settings)
        assert again.is_prepared
        with mock.patch.object(squares_cls, "_generate_examples", side_effect=AssertionError("regenerated")):
            again.download_and_prepare()
        assert again.info.splits["train"].num_examples == 10

    def test_force_redownload_keeps_created_at(self, prepared, squares_cls, settings):
        first = registry.load(settings.registry_dir, prepared.dataset_id)
        again = squares_cls(dataset_name="squares", settings=settings)
        again.download_and_prepare(download_mode="force_redownload")
        second = registry.load(settings.registry_dir, prepared.dataset_id)
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_inferred_features(self, settings):
        builder = Numbers(settings=settings)
        builder.download_and_prepare()
        assert builder.info.features == Features({"i": Value("int64"), "half": Value("float64")})
        assert builder.as_dataset("train")[5] == {"i": 5, "half": 2.5}

    def test_duplicate_keys(self, settings):
        builder = DuplicateKeys(settings=settings)
        with pytest.raises(DuplicatedKeysError):
            builder.download_and_prepare()
        assert not builder.is_prepared
        assert not builder.cache_dir.with_name("0.0.0.incomplete").exists()

    def test_split_size_verification(self, settings):
        builder = DeclaredSizes(settings=settings)
        with pytest.raises(NonMatchingSplitsSizesError):
            builder.download_and_prepare()
        assert not builder.is_prepared

    def test_no_checks(self, settings):
        builder = DeclaredSizes(settings=settings)
        builder.download_and_prepare(verification_mode="no_checks")
        assert builder.info.splits["train"].num_examples == 6

    def test_split_generated_twice(self, settings):
        with pytest.raises(ValueError, match="more than once"):
            TwiceTrain(settings=settings).download_and_prepare()


class TestAsDataset:
    def test_not_prepared(self, squares_cls, settings):
        with pytest.raises(DatasetNotPreparedError, match="download_and_prepare"):
            squares_cls(settings=settings).as_dataset()

    def test_single_split(self, prepared):
        ds = prepared.as_dataset("test")
        assert isinstance(ds, Dataset)
        assert len(ds) == 2

    def test_split_expression(self, prepared):
        ds = prepared.as_dataset("train[:50%]+test")
        assert ds["n"] == [0, 1, 2, 3, 4, 10, 11]

    def test_absolute_slice(self, prepared):
        assert prepared.as_dataset("train[-2:]")["n"] == [8, 9]

    def test_unknown_split(self, prepared):
        with pytest.raises(SplitNotFoundError, match="validation"):
            prepared.as_dataset("validation")
