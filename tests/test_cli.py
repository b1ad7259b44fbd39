"""
Tests for the command-line interface.
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from frontlink.cli import app
from frontlink.core import factory
from frontlink.utils.config import load_config
from frontlink.utils.front_matter import split_document

runner = CliRunner()

CONFIG = """
embedder:
  type: fake
  config:
    vectors:
      alpha: [1.0, 0.0]
      alpha too: [0.99, 0.05]
summarizer:
  type: fake
service:
  requests_per_minute: null
  retry_delay: 0
similarity:
  min_similarity: 0.5
"""


@pytest.fixture
def project(tmp_path, embedder_class, summarizer_class):
    docs = tmp_path / "posts"
    docs.mkdir()
    (docs / "a.md").write_text("---\ntitle: A\n---\nalpha\n", encoding="utf-8")
    (docs / "b.md").write_text("---\ntitle: B\n---\nalpha too\n", encoding="utf-8")
    config = tmp_path / "frontlink.yaml"
    config.write_text(CONFIG, encoding="utf-8")
    db = tmp_path / "state" / "frontlink.db"

    with patch.dict(factory.EMBEDDER_REGISTRY, {"fake": embedder_class}), patch.dict(
        factory.SUMMARIZER_REGISTRY, {"fake": summarizer_class}
    ):
        yield SimpleNamespace(docs=docs, config=config, db=db)


def _invoke(project, *args):
    return runner.invoke(app, ["--db-path", str(project.db), "-c", str(project.config), *args])


def test_full_flow(project):
    assert _invoke(project, "scan", str(project.docs)).exit_code == 0
    assert _invoke(project, "embed").exit_code == 0
    assert _invoke(project, "calc").exit_code == 0

    dry = _invoke(project, "write", str(project.docs), "--dry-run")
    assert dry.exit_code == 0
    assert "related:\n- b.md\n" in dry.stdout
    assert (project.docs / "a.md").read_text(encoding="utf-8") == "---\ntitle: A\n---\nalpha\n"

    result = _invoke(project, "write", str(project.docs), "--no-backup")
    assert result.exit_code == 0
    header = split_document((project.docs / "a.md").read_text(encoding="utf-8")).parse()
    assert header == {"title": "A", "related": ["b.md"]}
    assert not list(project.docs.glob("*.BAK"))

    status = _invoke(project, "status")
    assert status.exit_code == 0
    assert "Documents: 2" in status.stdout
    assert "fake/embedder: 2" in status.stdout


def test_write_threshold_flag(project):
    _invoke(project, "scan", str(project.docs))
    _invoke(project, "embed")
    _invoke(project, "calc", "--min-similarity", "0.0")

    result = _invoke(project, "write", str(project.docs), "--min-similarity", "0.9999")

    assert result.exit_code == 0
    header = split_document((project.docs / "a.md").read_text(encoding="utf-8")).parse()
    assert "related" not in header


def test_scan_missing_directory(project, tmp_path):
    result = _invoke(project, "scan", str(tmp_path / "missing"))
    assert result.exit_code == 1


def test_scan_without_directory_or_source_path(project):
    assert _invoke(project, "scan").exit_code == 1


def test_invalid_config_exits(project, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("similarity:\n  max_related: 0\n")
    result = runner.invoke(app, ["-c", str(bad), "calc"])
    assert result.exit_code == 1


def test_interrupt_exits_130(project, embedder_class):
    with patch.dict(
        factory.EMBEDDER_REGISTRY,
        {"fake": lambda **config: embedder_class(errors={"alpha": KeyboardInterrupt()})},
    ):
        _invoke(project, "scan", str(project.docs))
        result = _invoke(project, "embed", "--batch-size", "1")
    assert result.exit_code == 130


def test_summarize_with_model_choice(project, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    (project.docs / "long.md").write_text("---\ntitle: L\n---\n" + "text " * 300, encoding="utf-8")
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="I wrote a lot."))]
    )

    with patch("frontlink.components.summarizers.OpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create.return_value = response
        result = _invoke(project, "summarize", str(project.docs), "--model", "gpt-4o-mini")

    assert result.exit_code == 0
    kwargs = mock_openai.return_value.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    header = split_document((project.docs / "long.md").read_text(encoding="utf-8")).parse()
    assert header["synopsis"] == "I wrote a lot."
    assert (project.docs / "long.md.BAK").exists()


def test_tagline(project):
    (project.docs / "long.md").write_text("---\ntitle: L\n---\n" + "text " * 300, encoding="utf-8")
    result = _invoke(project, "tagline", str(project.docs), "--no-backup")
    assert result.exit_code == 0
    header = split_document((project.docs / "long.md").read_text(encoding="utf-8")).parse()
    assert header["tagline"] == "A short summary."


def test_init_creates_loadable_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    config = load_config("frontlink.yaml")
    assert config.source.path == "./content/posts"
    assert config.similarity.max_related == 3


def test_clean_removes_store(project):
    _invoke(project, "scan", str(project.docs))
    assert project.db.exists()
    (project.docs / "a.md.BAK").write_text("old")

    result = _invoke(project, "clean", "--yes", "--backups", str(project.docs))

    assert result.exit_code == 0
    assert not project.db.exists()
    assert not (project.docs / "a.md.BAK").exists()
    assert (project.docs / "a.md").exists()


def test_status_without_store(project):
    result = _invoke(project, "status")
    assert result.exit_code == 0


def test_list_components():
    result = runner.invoke(app, ["list-components"])
    assert result.exit_code == 0
    for name in ("recursive_character", "paragraph", "openai", "sentence_transformer", "claude"):
        assert name in result.stdout
    assert "claude-3-haiku" in result.stdout
