"""Shared fixtures for web tests."""

from __future__ import annotations

import pytest

from tabds.config import Settings
from tabds.ds.packaged.csv import Csv
from tabds.web.app import create_app


@pytest.fixture()
def prepared_builder(tmp_path, csv_dir):
    """The ``scores`` csv dataset prepared in ``tmp_path / "cache"``."""
    builder = Csv(
        dataset_name="scores",
        data_files={"train": str(csv_dir / "train.csv"), "test": str(csv_dir / "test.csv")},
        settings=Settings(cache_root=tmp_path / "cache"),
    )
    builder.download_and_prepare()
    return builder


@pytest.fixture()
def app(tmp_path, prepared_builder):
    """Flask test app over the cache holding the prepared dataset."""
    app = create_app(
        config={
            "TESTING": True,
            "TABDS_CACHE_DIR": str(tmp_path / "cache"),
            "TABDS_DB_PATH": str(tmp_path / "test.db"),
            "ROWS_MAX_LENGTH": 3,
        }
    )
    yield app


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def dataset_id(prepared_builder):
    return prepared_builder.dataset_id
