"""Shared fixtures for dataset tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tabds.comm.db import get_session, init_db
from tabds.ds.types import FileEntry, PreparedDataset


@pytest.fixture()
def tmp_db(tmp_path):
    db_path = tmp_path / "test.db"
    init_db(db_path)
    return db_path


@pytest.fixture()
def session(tmp_db):
    s = get_session()
    yield s
    s.close()


@pytest.fixture()
def registry_dir(tmp_path):
    d = tmp_path / "registry"
    d.mkdir()
    return d


@pytest.fixture()
def sample_record():
    now = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
    return PreparedDataset(
        dataset_id="scores/default/0.0.0",
        cache_dir="/tmp/cache/scores/default/0.0.0",
        description="exam scores",
        num_examples=6,
        dataset_size=512,
        download_size=128,
        splits={"train": 4, "test": 2},
        files={
            "train": [
                FileEntry(path="train-00000/name.data.npy", size=200, checksum="sha256:aaa"),
                FileEntry(path="train-00000/score.npy", size=160, checksum="sha256:bbb"),
            ],
            "test": [
                FileEntry(path="test-00000/name.data.npy", size=152, checksum="sha256:ccc"),
            ],
        },
        created_at=now,
        updated_at=now,
    )
