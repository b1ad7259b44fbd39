"""
Text chunking components for the frontlink pipeline.

This module provides strategies for splitting a document body into bounded
pieces before they are embedded. Both strategies prefer paragraph boundaries
and are deterministic: the same body always yields the same chunks.
"""

from abc import ABC, abstractmethod
import logging
import re
from typing import Iterator, List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..utils.data_models import Document

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n[ \t]*(?:\r?\n[ \t]*)+")
WHITESPACE = re.compile(r"\s")


class BaseChunker(ABC):
    """Abstract base class for all chunker components."""

    @abstractmethod
    def chunk(self, document: Document) -> List[str]:
        """
        Splits a document's body into chunk texts.

        Args:
            document (Document): The document to be chunked.

        Returns:
            List[str]: Chunk texts in body order.
        """
        pass


class RecursiveCharacterChunker(BaseChunker):
    """
    A chunker that splits text recursively by a list of separators.

    Paragraph breaks are tried first, then line breaks, then spaces, so a
    paragraph is only cut when it alone exceeds `chunk_size`.
    """

    def __init__(self, chunk_size: int = 2000, chunk_overlap: int = 0):
        """
        Args:
            chunk_size (int): The maximum size of each chunk in characters.
            chunk_overlap (int): The number of characters to overlap between chunks.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap}"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            separators=["\n\n", "\n", " ", ""],
        )
        logger.debug(
            f"Initialized RecursiveCharacterChunker with size={chunk_size}, overlap={chunk_overlap}"
        )

    def chunk(self, document: Document) -> List[str]:
        if not document.body or not document.body.strip():
            logger.warning(f"Document '{document.path}' has an empty body. Skipping chunking.")
            return []

        chunks = self._text_splitter.split_text(document.body)
        logger.debug(f"Created {len(chunks)} chunks from '{document.path}'")
        return chunks


class ParagraphChunker(BaseChunker):
    """
    A chunker that packs whole paragraphs greedily up to `chunk_size`.

    A paragraph longer than `chunk_size` is cut at the first whitespace at or
    after `chunk_size` characters, so words are never split.
    """

    def __init__(self, chunk_size: int = 2000):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        logger.debug(f"Initialized ParagraphChunker with size={chunk_size}")

    def _pieces(self, paragraph: str) -> Iterator[str]:
        rest = paragraph
        while len(rest) > self.chunk_size:
            match = WHITESPACE.search(rest, self.chunk_size)
            if match is None:
                break
            yield rest[: match.start()]
            rest = rest[match.start() :].lstrip()
        if rest:
            yield rest

    def chunk(self, document: Document) -> List[str]:
        if not document.body or not document.body.strip():
            logger.warning(f"Document '{document.path}' has an empty body. Skipping chunking.")
            return []

        chunks: List[str] = []
        current = ""
        for paragraph in PARAGRAPH_BREAK.split(document.body):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            for piece in self._pieces(paragraph):
                if current and len(current) + 2 + len(piece) > self.chunk_size:
                    chunks.append(current)
                    current = piece
                else:
                    current = f"{current}\n\n{piece}" if current else piece
        if current:
            chunks.append(current)

        logger.debug(f"Created {len(chunks)} chunks from '{document.path}'")
        return chunks
