"""
Tests for the similarity helpers and engine.
"""

import numpy as np
import pytest

from frontlink.core.similarity import (
    SimilarityEngine,
    cosine_similarity,
    document_signature,
    select_top_k,
)
from frontlink.utils.data_models import Document

MODEL = "fake/embedder"


def _add(store, path, vectors, draft=False):
    header = {"title": path, "draft": True} if draft else {"title": path}
    doc_id, _ = store.save_document(
        Document(path=path, content_hash=path, header=header),
        [f"{path}-{i}" for i in range(len(vectors))],
    )
    for chunk, vector in zip(store.get_chunks(doc_id), vectors):
        store.add_embedding(chunk.id, MODEL, vector)
    return doc_id


def test_cosine_similarity_bounds():
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert 0.0 <= cosine_similarity([0.1, 0.2, 0.3], [0.1, 0.2, 0.3]) <= 1.0


def test_cosine_similarity_value():
    assert cosine_similarity([1.0, 1.0], [1.0, 0.0]) == pytest.approx(1 / np.sqrt(2))


def test_document_signature_is_mean():
    signature = document_signature([[1.0, 2.0], [3.0, 4.0]])
    np.testing.assert_allclose(signature, [2.0, 3.0])
    assert signature.dtype == np.float64


def test_document_signature_needs_vectors():
    with pytest.raises(ValueError):
        document_signature([])


def test_select_top_k_breaks_ties_by_path():
    candidates = [("c.md", 0.7), ("b.md", 0.9), ("a.md", 0.7), ("d.md", 0.2)]
    assert select_top_k(candidates, 3, 0.5) == [("b.md", 0.9), ("a.md", 0.7), ("c.md", 0.7)]
    assert select_top_k(candidates, 2, 0.5) == [("b.md", 0.9), ("a.md", 0.7)]
    assert select_top_k(candidates, 3, 0.95) == []


def test_engine_links_similar_documents(store):
    """A and B are near-identical, C is unrelated to both."""
    a = _add(store, "a.md", [[1.0, 0.0, 0.0]])
    b = _add(store, "b.md", [[0.99, 0.05, 0.0]])
    c = _add(store, "c.md", [[0.0, 0.0, 1.0]])

    report = SimilarityEngine(store, MODEL, max_related=3, min_similarity=0.5).run()

    assert report.processed == 3
    assert [path for path, _ in store.related_documents(a, MODEL, 3, 0.5)] == ["b.md"]
    assert [path for path, _ in store.related_documents(b, MODEL, 3, 0.5)] == ["a.md"]
    assert store.related_documents(c, MODEL, 3, 0.5) == []


def test_engine_uses_mean_of_chunks(store):
    a = _add(store, "a.md", [[1.0, 0.0], [0.0, 1.0]])
    b = _add(store, "b.md", [[1.0, 1.0]])
    SimilarityEngine(store, MODEL, min_similarity=0.0).run()
    related = store.related_documents(a, MODEL, 3, 0.0)
    assert related[0][0] == "b.md"
    assert related[0][1] == pytest.approx(1.0)
    assert store.related_documents(b, MODEL, 3, 0.0)[0][0] == "a.md"


def test_engine_is_deterministic(store):
    ids = [_add(store, f"{name}.md", [[1.0, 1.0]]) for name in "dcba"]
    engine = SimilarityEngine(store, MODEL, max_related=2, min_similarity=0.1)

    engine.run()
    first = [store.related_documents(i, MODEL, 2, 0.1) for i in ids]
    engine.run()
    second = [store.related_documents(i, MODEL, 2, 0.1) for i in ids]

    assert first == second
    # All scores tie, so the two alphabetically first other documents win.
    assert [path for path, _ in first[0]] == ["a.md", "b.md"]
    assert [path for path, _ in first[3]] == ["b.md", "c.md"]


def test_engine_scores_are_clamped(store):
    a = _add(store, "a.md", [[1.0, 0.0]])
    _add(store, "b.md", [[-1.0, 0.0]])
    SimilarityEngine(store, MODEL, min_similarity=0.0).run()
    for _, score in store.related_documents(a, MODEL, 3, 0.0):
        assert 0.0 <= score <= 1.0


def test_engine_excludes_bad_signatures(store):
    a = _add(store, "a.md", [[1.0, 0.0, 0.0]])
    _add(store, "b.md", [[1.0, 0.1, 0.0]])
    _add(store, "zero.md", [[0.0, 0.0, 0.0]])
    _add(store, "short.md", [[1.0, 0.0]])

    report = SimilarityEngine(store, MODEL, min_similarity=0.0).run()

    assert report.processed == 2
    assert sorted(identity for identity, _ in report.issues) == ["short.md", "zero.md"]
    assert [path for path, _ in store.related_documents(a, MODEL, 3, 0.0)] == ["b.md"]


def test_engine_ignores_drafts(store):
    a = _add(store, "a.md", [[1.0, 0.0]])
    _add(store, "draft.md", [[1.0, 0.0]], draft=True)
    SimilarityEngine(store, MODEL, min_similarity=0.0).run()
    assert store.related_documents(a, MODEL, 3, 0.0) == []


def test_engine_replaces_previous_edges(store):
    a = _add(store, "a.md", [[1.0, 0.0]])
    _add(store, "b.md", [[1.0, 0.1]])
    SimilarityEngine(store, MODEL, min_similarity=0.0).run()
    assert store.stats()["edges"] == {MODEL: 2}

    SimilarityEngine(store, MODEL, min_similarity=0.999).run()
    assert store.stats()["edges"] == {}
    assert store.related_documents(a, MODEL, 3, 0.0) == []


def test_engine_rejects_bad_arguments(store):
    with pytest.raises(ValueError):
        SimilarityEngine(store, MODEL, max_related=0)
    with pytest.raises(ValueError):
        SimilarityEngine(store, MODEL, min_similarity=1.5)
