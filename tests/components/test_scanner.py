"""
Tests for the document scanner.
"""

import pytest

from frontlink.components.chunkers import ParagraphChunker
from frontlink.components.scanner import Scanner, parse_document
from frontlink.utils.data_models import StageReport
from frontlink.utils.errors import HeaderParseError


@pytest.fixture
def scanner(store):
    return Scanner(store, ParagraphChunker(chunk_size=2000))


@pytest.fixture
def corpus(write_doc):
    write_doc("a.md", "---\ntitle: A\n---\nFirst post.\n")
    write_doc("posts/b.md", "---\ntitle: B\n---\nSecond post.\n\nMore text.\n")
    write_doc("draft.md", "---\ntitle: D\ndraft: true\n---\nNot yet.\n")
    write_doc("notes.txt", "ignored")


def test_parse_document_without_header():
    doc = parse_document("plain.md", b"No header here.\n")
    assert doc.header == {}
    assert doc.body == "No header here.\n"


def test_parse_document_strips_bom():
    doc = parse_document("bom.md", "\ufeff---\ntitle: X\n---\nBody".encode("utf-8"))
    assert doc.title == "X"


def test_parse_document_malformed_header():
    with pytest.raises(HeaderParseError):
        parse_document("bad.md", b"---\ntitle: [oops\n---\nBody\n")


def test_scan_loads_documents(scanner, store, corpus, tmp_path):
    report = scanner.scan(tmp_path)

    assert report.processed == 3
    assert report.skipped == 0
    paths = [d.path for d in store.list_documents()]
    assert paths == ["a.md", "draft.md", "posts/b.md"]
    assert [d.path for d in store.list_documents(include_drafts=False)] == ["a.md", "posts/b.md"]
    assert store.stats()["chunks"] == 3


def test_scan_twice_is_a_no_op(scanner, store, corpus, tmp_path):
    scanner.scan(tmp_path)
    hashes = {d.path: d.content_hash for d in store.list_documents()}
    chunk_ids = [c.id for c in store.chunks_missing_embedding("m", include_drafts=True)]

    report = scanner.scan(tmp_path)

    assert report.processed == 0
    assert report.unchanged == 3
    assert {d.path: d.content_hash for d in store.list_documents()} == hashes
    assert [c.id for c in store.chunks_missing_embedding("m", include_drafts=True)] == chunk_ids


def test_rescan_replaces_only_changed_document(scanner, store, corpus, write_doc, tmp_path):
    scanner.scan(tmp_path)
    untouched = {c.document_path: c.id for c in store.chunks_missing_embedding("m")}
    store.add_embedding(untouched["a.md"], "m", [1.0, 2.0])

    write_doc("posts/b.md", "---\ntitle: B\n---\nRewritten entirely.\n")
    report = scanner.scan(tmp_path)

    assert report.processed == 1
    assert report.unchanged == 2
    assert store.get_embedding(untouched["a.md"], "m") is not None
    remaining = {c.document_path: c for c in store.chunks_missing_embedding("m")}
    assert remaining["posts/b.md"].text == "Rewritten entirely."
    assert remaining["posts/b.md"].id != untouched["posts/b.md"]


def test_scan_skips_bad_files_and_continues(scanner, store, write_doc, tmp_path):
    write_doc("good.md", "Fine.\n")
    write_doc("bad.md", "---\ntitle: [oops\n---\nBody\n")
    write_doc("open.md", "---\ntitle: never closed\nBody\n")
    (tmp_path / "binary.md").write_bytes(b"---\ntitle: \xff\xfe\n---\n")

    report = scanner.scan(tmp_path)

    assert report.processed == 1
    assert report.skipped == 3
    assert sorted(identity for identity, _ in report.issues) == ["bad.md", "binary.md", "open.md"]
    assert [d.path for d in store.list_documents()] == ["good.md"]


def test_scan_ignores_backups(store, write_doc, tmp_path):
    write_doc("a.md", "Post.\n")
    write_doc("a.md.BAK", "Old post.\n")
    scanner = Scanner(store, ParagraphChunker(), glob_patterns=["**/*"])
    scanner.scan(tmp_path)
    assert [d.path for d in store.list_documents()] == ["a.md"]


def test_scan_prunes_deleted_documents(scanner, store, corpus, tmp_path):
    scanner.scan(tmp_path)
    (tmp_path / "a.md").unlink()

    report = scanner.scan(tmp_path)

    assert report.removed == 1
    assert "a.md" not in [d.path for d in store.list_documents()]


def test_scan_without_prune_keeps_deleted_documents(store, corpus, tmp_path):
    scanner = Scanner(store, ParagraphChunker(), prune=False)
    scanner.scan(tmp_path)
    (tmp_path / "a.md").unlink()
    scanner.scan(tmp_path)
    assert "a.md" in [d.path for d in store.list_documents()]


def test_scan_missing_root(scanner, tmp_path):
    with pytest.raises(FileNotFoundError):
        scanner.scan(tmp_path / "missing")


def test_iter_documents_does_not_touch_store(store, corpus, tmp_path):
    scanner = Scanner(store, chunker=None)
    report = StageReport(stage="test")
    documents = list(scanner.iter_documents(tmp_path, report))
    assert [d.path for d in documents] == ["a.md", "draft.md", "posts/b.md"]
    assert documents[1].is_draft
    assert store.list_documents() == []
