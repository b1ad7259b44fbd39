"""
Tests for configuration loading.
"""

from pathlib import Path

import pytest

from frontlink.utils.config import default_store_path, load_config, resolve_store_path
from frontlink.utils.config_models import AppConfig


def test_load_config_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config == AppConfig()
    assert config.similarity.max_related == 3
    assert config.similarity.min_similarity == 0.4
    assert config.chunker.config["chunk_size"] == 2000
    assert config.embedding.prepend_title is False


def test_load_config_from_default_file(tmp_path, monkeypatch):
    (tmp_path / "frontlink.yaml").write_text("similarity:\n  max_related: 5\n")
    monkeypatch.chdir(tmp_path)
    assert load_config().similarity.max_related == 5


def test_load_config_explicit_file(tmp_path):
    config_file = tmp_path / "custom.yaml"
    config_file.write_text(
        "source:\n  path: ./posts\n"
        "embedder:\n  type: sentence_transformer\n  config:\n    model_name: all-MiniLM-L6-v2\n"
        "service:\n  batch_size: 64\n"
    )
    config = load_config(str(config_file))
    assert config.source.path == "./posts"
    assert config.embedder.type == "sentence_transformer"
    assert config.service.batch_size == 64
    assert config.service.max_workers == 4


def test_load_config_missing_explicit_file_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        load_config(str(tmp_path / "nope.yaml"))
    assert excinfo.value.code == 1


def test_load_config_invalid_values_exit(tmp_path):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text("similarity:\n  min_similarity: 3.5\n")
    with pytest.raises(SystemExit):
        load_config(str(config_file))


def test_load_config_invalid_yaml_exits(tmp_path):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text("similarity: [unclosed\n")
    with pytest.raises(SystemExit):
        load_config(str(config_file))


def test_resolve_store_path_precedence(tmp_path):
    config = AppConfig()
    assert resolve_store_path(config) == default_store_path()
    assert default_store_path().parts[-2:] == ("frontlink", "frontlink.db")

    config.store.path = str(tmp_path / "from-config.db")
    assert resolve_store_path(config) == tmp_path / "from-config.db"
    assert resolve_store_path(config, str(tmp_path / "flag.db")) == Path(tmp_path / "flag.db")
