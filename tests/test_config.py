"""
Unit tests for codegraph_indexer.config
"""

from __future__ import annotations

import os

import pytest


_ENV_KEYS = [
    "KNOWLEDGE_STORE_API_KEY",
    "KNOWLEDGE_STORE_URL",
    "KNOWLEDGE_STORE_MAX_RETRIES",
    "CODEGRAPH_INCLUDE_TESTS",
    "CODEGRAPH_PUBLISH_DELAY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    from codegraph_indexer.config import Config
    cfg = Config()
    assert cfg.API_KEY == ""
    assert cfg.BASE_URL == "https://memory.papr.ai"
    assert cfg.MAX_RETRIES == 3
    assert cfg.INCLUDE_TESTS is False
    assert cfg.INCLUDE_SOURCE is True
    assert cfg.MANIFEST_DIR == ".codegraph"
    assert cfg.EXTRA_IGNORE_DIRS == []


def test_yaml_overrides_defaults():
    from codegraph_indexer.config import Config
    cfg = Config({
        "store": {"api_key": "yaml-key", "base_url": "https://store.local/"},
        "max_retries": 5,
        "include_tests": True,
        "extra_ignore_dirs": ["fixtures"],
    })
    assert cfg.API_KEY == "yaml-key"
    assert cfg.BASE_URL == "https://store.local"
    assert cfg.MAX_RETRIES == 5
    assert cfg.INCLUDE_TESTS is True
    assert cfg.EXTRA_IGNORE_DIRS == ["fixtures"]


def test_env_overrides_yaml(monkeypatch):
    from codegraph_indexer.config import Config
    monkeypatch.setenv("KNOWLEDGE_STORE_API_KEY", "env-key")
    monkeypatch.setenv("KNOWLEDGE_STORE_MAX_RETRIES", "7")
    monkeypatch.setenv("CODEGRAPH_INCLUDE_TESTS", "false")
    monkeypatch.setenv("CODEGRAPH_PUBLISH_DELAY", "0")
    cfg = Config({"store": {"api_key": "yaml-key"}, "max_retries": 5, "include_tests": True})
    assert cfg.API_KEY == "env-key"
    assert cfg.MAX_RETRIES == 7
    assert cfg.INCLUDE_TESTS is False
    assert cfg.PUBLISH_DELAY == 0.0


def test_bad_extra_ignore_dirs_ignored():
    from codegraph_indexer.config import Config
    assert Config({"extra_ignore_dirs": "vendor"}).EXTRA_IGNORE_DIRS == []


def test_require_credentials():
    from codegraph_indexer.config import Config
    from codegraph_indexer.errors import ConfigurationError
    with pytest.raises(ConfigurationError, match="KNOWLEDGE_STORE_API_KEY"):
        Config().require_credentials()
    Config({"store": {"api_key": "k"}}).require_credentials()


def test_load_from_explicit_file(tmp_path):
    from codegraph_indexer.config import Config
    path = tmp_path / ".codegraph.yaml"
    path.write_text("store:\n  api_key: file-key\nmax_errors: 3\n", encoding="utf-8")
    cfg = Config.load(str(path))
    assert cfg.API_KEY == "file-key"
    assert cfg.MAX_ERRORS == 3


def test_load_missing_or_broken_file(tmp_path):
    from codegraph_indexer.config import Config
    assert Config.load(str(tmp_path / "absent.yaml")).MAX_ERRORS == 50
    broken = tmp_path / "broken.yaml"
    broken.write_text("store: [unclosed\n", encoding="utf-8")
    assert Config.load(str(broken)).API_KEY == ""


def test_schema_cache_path_is_expanded():
    from codegraph_indexer.config import Config
    assert not Config().SCHEMA_CACHE_FILE.startswith("~")
    assert os.path.basename(Config().SCHEMA_CACHE_FILE) == "schema-cache.json"
