"""
Configuration file for pytest.

This file adds the project's root directory to the Python path so that
pytest can find the 'frontlink' package without needing to install it, and
provides deterministic stand-ins for the external services.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add the project root directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from frontlink.components.embedders import BaseEmbedder  # noqa: E402
from frontlink.components.summarizers import BaseSummarizer  # noqa: E402
from frontlink.utils.store import SQLiteStore  # noqa: E402


class FakeEmbedder(BaseEmbedder):
    """
    Maps each chunk to a fixed vector.

    Texts found in `vectors` get that vector; anything else gets a vector
    derived from its length. `errors` maps a text to an exception raised
    whenever a request contains it.
    """

    def __init__(self, vectors=None, errors=None, tag="fake/embedder", dim=3):
        self.vectors = vectors or {}
        self.errors = errors or {}
        self.tag = tag
        self.dim = dim
        self.calls = []

    @staticmethod
    def tag_for(tag="fake/embedder", **_):
        return tag

    @property
    def model_tag(self) -> str:
        return self.tag

    def embed(self, chunks):
        self.calls.append(list(chunks))
        for text in chunks:
            if text in self.errors:
                raise self.errors[text]
        rows = []
        for text in chunks:
            if text in self.vectors:
                rows.append(self.vectors[text])
            else:
                rows.append([float(len(text))] + [1.0] * (self.dim - 1))
        return np.array(rows, dtype=float)


class FakeSummarizer(BaseSummarizer):
    def __init__(self, answer="A short summary.", error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    @property
    def model_tag(self) -> str:
        return "fake/summarizer"

    def summarize(self, text, prompts=None):
        self.calls.append((text, prompts))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def store():
    with SQLiteStore(":memory:") as s:
        yield s


@pytest.fixture
def write_doc(tmp_path):
    """Writes a document beneath tmp_path and returns its path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(text.encode("utf-8"))
        return path

    return _write


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer()


@pytest.fixture
def embedder_class():
    return FakeEmbedder


@pytest.fixture
def summarizer_class():
    return FakeSummarizer
