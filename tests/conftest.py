"""Shared fixtures: isolated cache root, settings and sample data files."""

from __future__ import annotations

import pytest

from tabds.comm import db as core_db
from tabds.config import Settings

SCRIPT = '''
from tabds.ds.builder import BuilderConfig, GeneratorBasedBuilder
from tabds.ds.features import ClassLabel, Features, Value
from tabds.ds.info import DatasetInfo
from tabds.ds.splits import Split, SplitGenerator


class Squares(GeneratorBasedBuilder):
    VERSION = "1.2.0"
    BUILDER_CONFIGS = [
        BuilderConfig(name="small", description="ten squares"),
        BuilderConfig(name="large", description="hundred squares"),
    ]
    DEFAULT_CONFIG_NAME = "small"

    def _info(self):
        return DatasetInfo(
            description="Numbers and their squares",
            features=Features({
                "n": Value("int64"),
                "square": Value("int64"),
                "parity": ClassLabel(names=["even", "odd"]),
            }),
        )

    def _split_generators(self, dl_manager):
        size = 10 if self.config.name == "small" else 100
        return [
            SplitGenerator(Split.TRAIN, gen_kwargs={"start": 0, "stop": size}),
            SplitGenerator(Split.TEST, gen_kwargs={"start": size, "stop": size + size // 5}),
        ]

    def _generate_examples(self, start, stop):
        for n in range(start, stop):
            yield n, {"n": n, "square": n * n, "parity": "odd" if n % 2 else "even"}
'''


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Run every test in its own cwd, without TABDS_* env vars or an open index."""
    for var in ("TABDS_CACHE", "TABDS_DB_PATH", "TABDS_WRITER_BATCH_SIZE", "TABDS_MAX_SHARD_SIZE", "TABDS_OFFLINE"):
        monkeypatch.delenv(var, raising=False)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    core_db.reset()
    yield
    core_db.reset()


@pytest.fixture()
def settings(tmp_path):
    """Settings rooted in a temporary cache directory."""
    return Settings(cache_root=tmp_path / "cache")


@pytest.fixture()
def csv_dir(tmp_path):
    """A directory with ``train.csv`` (4 rows) and ``test.csv`` (2 rows)."""
    d = tmp_path / "scores"
    d.mkdir()
    (d / "train.csv").write_text(
        "name,score,passed\n"
        "alice,90,true\n"
        "bob,72,true\n"
        "carol,45,false\n"
        "dave,,false\n",
        encoding="utf-8",
    )
    (d / "test.csv").write_text(
        "name,score,passed\n"
        "erin,88,true\n"
        "frank,30,false\n",
        encoding="utf-8",
    )
    return d


@pytest.fixture()
def script_path(tmp_path):
    """A builder script defining one ``Squares`` builder with two configs."""
    d = tmp_path / "squares"
    d.mkdir()
    p = d / "squares.py"
    p.write_text(SCRIPT, encoding="utf-8")
    return p
