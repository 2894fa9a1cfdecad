"""Tests for tabds.config: settings precedence and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from tabds.config import DEFAULT_CACHE_ROOT, Settings, load_settings
from tabds.ds.types import ConfigError


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.cache_root == DEFAULT_CACHE_ROOT
        assert s.db_path == DEFAULT_CACHE_ROOT / "index.db"
        assert s.writer_batch_size == 1000
        assert s.max_shard_size == 500 * 1024 * 1024
        assert not s.offline

    def test_derived_dirs(self, tmp_path):
        s = Settings(cache_root=tmp_path)
        assert s.downloads_dir == tmp_path / "downloads"
        assert s.registry_dir == tmp_path / "registry"


class TestLoadSettings:
    def test_no_file(self):
        assert load_settings().cache_root == DEFAULT_CACHE_ROOT

    def test_yaml_in_cwd(self, tmp_path):
        Path("tabds.yaml").write_text(
            f"cache_root: {tmp_path / 'c'}\n"
            "writer_batch_size: 50\n"
            "offline: yes\n"
            "remotes:\n"
            "  lab:\n"
            "    host: data.example.com\n"
            "    user: ci\n"
            "    auth:\n"
            "      key_file: ~/.ssh/id_rsa\n"
        )
        s = load_settings()
        assert s.cache_root == tmp_path / "c"
        assert s.db_path == tmp_path / "c" / "index.db"
        assert s.writer_batch_size == 50
        assert s.offline is True
        assert s.remotes["lab"].host == "data.example.com"
        assert s.remotes["lab"].port == 22
        assert s.remotes["lab"].key_file == "~/.ssh/id_rsa"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        cfg = tmp_path / "custom.yaml"
        cfg.write_text(f"cache_root: {tmp_path / 'from_file'}\nmax_shard_size: 10\n")
        monkeypatch.setenv("TABDS_CACHE", str(tmp_path / "from_env"))
        monkeypatch.setenv("TABDS_OFFLINE", "1")
        s = load_settings(cfg)
        assert s.cache_root == tmp_path / "from_env"
        assert s.max_shard_size == 10
        assert s.offline is True

    def test_overrides_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TABDS_CACHE", str(tmp_path / "from_env"))
        s = load_settings(cache_root=tmp_path / "explicit", db_path=None)
        assert s.cache_root == tmp_path / "explicit"
        assert s.db_path == tmp_path / "explicit" / "index.db"

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("TABDS_WRITER_BATCH_SIZE", "lots")
        with pytest.raises(ConfigError, match="TABDS_WRITER_BATCH_SIZE"):
            load_settings()

    def test_non_positive_batch_size(self):
        with pytest.raises(ConfigError, match="writer_batch_size"):
            load_settings(writer_batch_size=0)

    def test_invalid_yaml(self, tmp_path):
        cfg = tmp_path / "bad.yaml"
        cfg.write_text("cache_root: [unclosed\n")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_settings(cfg)

    def test_yaml_not_mapping(self, tmp_path):
        cfg = tmp_path / "list.yaml"
        cfg.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_settings(cfg)

    def test_remote_requires_host_and_user(self, tmp_path):
        cfg = tmp_path / "remotes.yaml"
        cfg.write_text("remotes:\n  lab:\n    host: h\n")
        with pytest.raises(ConfigError, match="requires 'host' and 'user'"):
            load_settings(cfg)
