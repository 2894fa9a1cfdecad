"""Tests for ds.card: README.md metadata and per-config builder options."""

from __future__ import annotations

import pytest

from tabds.ds.card import CARD_FILENAME, DatasetCard
from tabds.ds.features import Features, Value
from tabds.ds.info import DatasetInfo
from tabds.ds.splits import SplitDict, SplitInfo
from tabds.ds.types import DatasetCardError

CARD = """---
license: mit
configs:
- config_name: full
  default: true
  data_files:
  - split: train
    path: data/train-*.csv
  - split: test
    path: data/test.csv
- config_name: semicolon
  data_dir: raw
  data_files: "*.csv"
  sep: ";"
---
# Scores

Exam scores.
"""


@pytest.fixture()
def card():
    return DatasetCard.parse(CARD)


def _info(config_name="full", n=4):
    splits = SplitDict()
    splits.add(SplitInfo("train", num_bytes=10, num_examples=n, shard_lengths=[n]))
    return DatasetInfo(
        description="Exam scores.",
        license="mit",
        features=Features({"name": Value("string")}),
        builder_name="scores",
        config_name=config_name,
        splits=splits,
    )


class TestParse:
    def test_metadata_and_text(self, card):
        assert card.data["license"] == "mit"
        assert card.text.startswith("# Scores")

    def test_no_front_matter(self):
        card = DatasetCard.parse("# Just text\n")
        assert card.data == {}
        assert card.configs == []
        assert str(card) == "# Just text\n"

    def test_invalid_yaml(self):
        with pytest.raises(DatasetCardError, match="Invalid YAML"):
            DatasetCard.parse("---\nconfigs: [\n---\n")

    def test_metadata_not_a_mapping(self):
        with pytest.raises(DatasetCardError, match="must be a mapping"):
            DatasetCard.parse("---\n- a\n- b\n---\n")

    def test_load_from_directory(self, tmp_path):
        (tmp_path / CARD_FILENAME).write_text(CARD, encoding="utf-8")
        assert DatasetCard.load(tmp_path).config_names == ["full", "semicolon"]


class TestConfigs:
    def test_default_config(self, card):
        assert card.default_config_name == "full"
        assert card.get_config() == {
            "config_name": "full",
            "data_files": {"train": "data/train-*.csv", "test": "data/test.csv"},
        }

    def test_extra_keys_become_builder_options(self, card):
        assert card.get_config("semicolon") == {
            "config_name": "semicolon",
            "data_files": "*.csv",
            "data_dir": "raw",
            "sep": ";",
        }

    def test_unknown_config(self, card):
        with pytest.raises(ValueError, match="'other' not found"):
            card.get_config("other")

    def test_single_config_is_default(self):
        card = DatasetCard.parse("---\nconfigs:\n- config_name: only\n---\n")
        assert card.default_config_name == "only"

    def test_no_default_among_several(self):
        card = DatasetCard.parse("---\nconfigs:\n- config_name: a\n- config_name: b\n---\n")
        assert card.default_config_name is None
        with pytest.raises(ValueError, match="Config name is missing"):
            card.get_config()

    def test_several_defaults(self):
        card = DatasetCard.parse(
            "---\nconfigs:\n- config_name: a\n  default: true\n- config_name: b\n  default: true\n---\n"
        )
        with pytest.raises(DatasetCardError, match="Several configs"):
            card.default_config_name

    def test_config_without_name(self):
        card = DatasetCard.parse("---\nconfigs:\n- data_files: a.csv\n---\n")
        with pytest.raises(DatasetCardError, match="config_name"):
            card.configs

    def test_bad_data_files_entry(self):
        card = DatasetCard.parse("---\nconfigs:\n- config_name: a\n  data_files:\n  - split: train\n---\n")
        with pytest.raises(DatasetCardError, match="data_files entries"):
            card.get_config("a")


class TestWrite:
    def test_from_info(self, tmp_path):
        card = DatasetCard.from_info(_info())
        assert card.data["license"] == "mit"
        assert card.data["dataset_info"]["config_name"] == "full"
        assert card.data["dataset_info"]["splits"][0]["num_examples"] == 4
        assert card.text == "# scores\n\nExam scores.\n"

        path = card.save(tmp_path)
        assert path == tmp_path / CARD_FILENAME
        reloaded = DatasetCard.load(path)
        assert reloaded.data == card.data
        assert reloaded.text == card.text

    def test_set_dataset_info_per_config(self, card):
        card.set_dataset_info(_info("full", 4))
        card.set_dataset_info(_info("semicolon", 2))
        card.set_dataset_info(_info("full", 5))
        entries = card.data["dataset_info"]
        assert [e["config_name"] for e in entries] == ["semicolon", "full"]
        assert entries[1]["splits"][0]["num_examples"] == 5
        assert card.config_names == ["full", "semicolon"]
