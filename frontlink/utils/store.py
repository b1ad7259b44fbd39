"""
Persistent state for the frontlink pipeline.

The store holds documents, their chunks, chunk embeddings, similarity edges
and generated synopses. Every stage reads its input from here and writes its
output back, so any stage can be re-run on its own. Content hashes recorded
for documents and chunks are what let the scanner and embedder skip work that
has already been done.
"""

import hashlib
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .data_models import Chunk, Document, SimilarityEdge, Synopsis
from .errors import StoreError, StoreOpenError

logger = logging.getLogger(__name__)

# Vectors are stored as little-endian float64 blobs.
VECTOR_DTYPE = np.dtype("<f8")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS document (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL UNIQUE,
        content_hash TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        is_draft INTEGER NOT NULL DEFAULT 0,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunk (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id INTEGER NOT NULL REFERENCES document (id) ON DELETE CASCADE,
        seq INTEGER NOT NULL,
        text TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        UNIQUE (document_id, seq)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding (
        chunk_id INTEGER NOT NULL REFERENCES chunk (id) ON DELETE CASCADE,
        model TEXT NOT NULL,
        dim INTEGER NOT NULL,
        vector BLOB NOT NULL,
        created_at REAL NOT NULL,
        PRIMARY KEY (chunk_id, model)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_embedding_model ON embedding (model)",
    """
    CREATE TABLE IF NOT EXISTS similarity (
        model TEXT NOT NULL,
        source_id INTEGER NOT NULL REFERENCES document (id) ON DELETE CASCADE,
        target_id INTEGER NOT NULL REFERENCES document (id) ON DELETE CASCADE,
        score REAL NOT NULL,
        rank INTEGER NOT NULL,
        PRIMARY KEY (model, source_id, target_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS synopsis (
        path TEXT NOT NULL,
        field TEXT NOT NULL,
        text TEXT NOT NULL,
        source_hash TEXT NOT NULL,
        model TEXT NOT NULL DEFAULT '',
        updated_at REAL NOT NULL,
        PRIMARY KEY (path, field)
    )
    """,
]


def compute_hash(data: Union[bytes, str]) -> str:
    """Returns the sha256 hex digest of `data` (str is hashed as UTF-8)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


class BaseStore(ABC):
    """
    An abstract base class for the pipeline's persistent store.

    Implementations must apply each mutating call as a single transaction:
    either all of it is visible afterwards or none of it is.
    """

    @abstractmethod
    def get_document_hash(self, path: str) -> Optional[str]:
        """Returns the stored content hash for `path`, or None if unknown."""
        pass

    @abstractmethod
    def save_document(self, document: Document, chunk_texts: Sequence[str]) -> Tuple[int, int]:
        """
        Upserts a document and replaces its chunks.

        Chunks whose sequence index and text are unchanged keep their row, and
        with it their embeddings. All other chunks of the document are replaced.

        Returns:
            Tuple[int, int]: The document id and the number of chunk rows written.
        """
        pass

    @abstractmethod
    def list_documents(self, include_drafts: bool = True) -> List[Document]:
        pass

    @abstractmethod
    def delete_documents(self, paths: Sequence[str]) -> int:
        """Deletes documents with their chunks, embeddings and edges."""
        pass

    @abstractmethod
    def get_chunks(self, document_id: int) -> List[Chunk]:
        pass

    @abstractmethod
    def chunks_missing_embedding(self, model: str, include_drafts: bool = False) -> List[Chunk]:
        """Returns chunks with no embedding under `model`, ordered by path and seq."""
        pass

    @abstractmethod
    def add_embedding(self, chunk_id: int, model: str, vector: Sequence[float]) -> bool:
        """
        Stores a vector for a chunk. Existing embeddings are never overwritten.

        Returns:
            bool: True if a new row was written.
        """
        pass

    @abstractmethod
    def get_embedding(self, chunk_id: int, model: str) -> Optional[np.ndarray]:
        pass

    @abstractmethod
    def document_vectors(
        self, model: str, include_drafts: bool = False
    ) -> List[Tuple[int, str, List[np.ndarray]]]:
        """Returns (document id, path, chunk vectors) for every document with
        at least one embedding under `model`, ordered by path."""
        pass

    @abstractmethod
    def replace_similarity_edges(self, model: str, edges: Sequence[SimilarityEdge]):
        """Replaces the whole edge set for `model`."""
        pass

    @abstractmethod
    def related_documents(
        self, document_id: int, model: str, limit: int, min_score: float
    ) -> List[Tuple[str, float]]:
        """Returns (path, score) of the best non-draft targets of a document."""
        pass

    @abstractmethod
    def get_synopsis(self, path: str, field: str) -> Optional[Synopsis]:
        pass

    @abstractmethod
    def save_synopsis(self, synopsis: Synopsis):
        pass

    @abstractmethod
    def stats(self) -> Dict[str, object]:
        pass

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SQLiteStore(BaseStore):
    """
    A store backed by a single SQLite database file.

    The connection runs in autocommit mode and every mutating method opens
    its own explicit transaction. It is meant to be used from one thread;
    worker threads hand their results back to the caller for persisting.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            for statement in SCHEMA:
                self._conn.execute(statement)
        except (sqlite3.Error, OSError) as e:
            raise StoreOpenError(f"Could not open store at '{self.path}': {e}") from e
        logger.debug(f"Opened store at '{self.path}'")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"Could not start transaction: {e}") from e
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._conn.execute("ROLLBACK")
            raise StoreError(f"Transaction rolled back: {e}") from e
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Query failed: {e}") from e

    def get_document_hash(self, path: str) -> Optional[str]:
        rows = self._query("SELECT content_hash FROM document WHERE path = ?", (path,))
        return rows[0]["content_hash"] if rows else None

    def save_document(self, document: Document, chunk_texts: Sequence[str]) -> Tuple[int, int]:
        written = 0
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO document (path, content_hash, title, is_draft, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (path) DO UPDATE SET
                    content_hash = excluded.content_hash,
                    title = excluded.title,
                    is_draft = excluded.is_draft,
                    updated_at = excluded.updated_at
                """,
                (
                    document.path,
                    document.content_hash,
                    document.title,
                    int(document.is_draft),
                    time.time(),
                ),
            )
            document_id = conn.execute(
                "SELECT id FROM document WHERE path = ?", (document.path,)
            ).fetchone()["id"]

            existing = {
                row["seq"]: (row["id"], row["content_hash"])
                for row in conn.execute(
                    "SELECT id, seq, content_hash FROM chunk WHERE document_id = ?",
                    (document_id,),
                )
            }
            for seq, text in enumerate(chunk_texts):
                text_hash = compute_hash(text)
                old = existing.pop(seq, None)
                if old is not None and old[1] == text_hash:
                    continue
                if old is not None:
                    conn.execute("DELETE FROM chunk WHERE id = ?", (old[0],))
                conn.execute(
                    "INSERT INTO chunk (document_id, seq, text, content_hash) VALUES (?, ?, ?, ?)",
                    (document_id, seq, text, text_hash),
                )
                written += 1
            for chunk_id, _ in existing.values():
                conn.execute("DELETE FROM chunk WHERE id = ?", (chunk_id,))

        document.id = document_id
        logger.debug(
            f"Saved document '{document.path}' (id={document_id}), {written} chunk rows written"
        )
        return document_id, written

    def list_documents(self, include_drafts: bool = True) -> List[Document]:
        rows = self._query(
            "SELECT id, path, content_hash, title, is_draft FROM document "
            "WHERE ? OR is_draft = 0 ORDER BY path",
            (int(include_drafts),),
        )
        documents = []
        for row in rows:
            header = {"title": row["title"]}
            if row["is_draft"]:
                header["draft"] = True
            documents.append(
                Document(
                    path=row["path"],
                    content_hash=row["content_hash"],
                    header=header,
                    id=row["id"],
                )
            )
        return documents

    def delete_documents(self, paths: Sequence[str]) -> int:
        deleted = 0
        with self._transaction() as conn:
            for path in paths:
                cursor = conn.execute("DELETE FROM document WHERE path = ?", (path,))
                conn.execute("DELETE FROM synopsis WHERE path = ?", (path,))
                deleted += cursor.rowcount
        return deleted

    def get_chunks(self, document_id: int) -> List[Chunk]:
        rows = self._query(
            "SELECT c.id, c.document_id, c.seq, c.text, c.content_hash, d.path, d.title "
            "FROM chunk c JOIN document d ON d.id = c.document_id "
            "WHERE c.document_id = ? ORDER BY c.seq",
            (document_id,),
        )
        return [self._row_to_chunk(row) for row in rows]

    def chunks_missing_embedding(self, model: str, include_drafts: bool = False) -> List[Chunk]:
        rows = self._query(
            """
            SELECT c.id, c.document_id, c.seq, c.text, c.content_hash, d.path, d.title
            FROM chunk c
            JOIN document d ON d.id = c.document_id
            LEFT JOIN embedding e ON e.chunk_id = c.id AND e.model = ?
            WHERE e.chunk_id IS NULL AND (? OR d.is_draft = 0)
            ORDER BY d.path, c.seq
            """,
            (model, int(include_drafts)),
        )
        return [self._row_to_chunk(row) for row in rows]

    def add_embedding(self, chunk_id: int, model: str, vector: Sequence[float]) -> bool:
        array = np.asarray(vector, dtype=VECTOR_DTYPE)
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO embedding (chunk_id, model, dim, vector, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (chunk_id, model, int(array.shape[0]), array.tobytes(), time.time()),
            )
        return cursor.rowcount == 1

    def get_embedding(self, chunk_id: int, model: str) -> Optional[np.ndarray]:
        rows = self._query(
            "SELECT vector FROM embedding WHERE chunk_id = ? AND model = ?",
            (chunk_id, model),
        )
        if not rows:
            return None
        return np.frombuffer(rows[0]["vector"], dtype=VECTOR_DTYPE)

    def document_vectors(
        self, model: str, include_drafts: bool = False
    ) -> List[Tuple[int, str, List[np.ndarray]]]:
        rows = self._query(
            """
            SELECT d.id AS document_id, d.path, e.vector
            FROM embedding e
            JOIN chunk c ON c.id = e.chunk_id
            JOIN document d ON d.id = c.document_id
            WHERE e.model = ? AND (? OR d.is_draft = 0)
            ORDER BY d.path, c.seq
            """,
            (model, int(include_drafts)),
        )
        grouped: Dict[int, Tuple[int, str, List[np.ndarray]]] = {}
        for row in rows:
            entry = grouped.setdefault(row["document_id"], (row["document_id"], row["path"], []))
            entry[2].append(np.frombuffer(row["vector"], dtype=VECTOR_DTYPE))
        return list(grouped.values())

    def replace_similarity_edges(self, model: str, edges: Sequence[SimilarityEdge]):
        with self._transaction() as conn:
            conn.execute("DELETE FROM similarity WHERE model = ?", (model,))
            conn.executemany(
                "INSERT INTO similarity (model, source_id, target_id, score, rank) "
                "VALUES (?, ?, ?, ?, ?)",
                [(model, e.source_id, e.target_id, e.score, e.rank) for e in edges],
            )
        logger.debug(f"Replaced similarity edges for '{model}' with {len(edges)} edges")

    def related_documents(
        self, document_id: int, model: str, limit: int, min_score: float
    ) -> List[Tuple[str, float]]:
        rows = self._query(
            """
            SELECT d.path, s.score
            FROM similarity s
            JOIN document d ON d.id = s.target_id
            WHERE s.source_id = ? AND s.model = ? AND s.score >= ? AND d.is_draft = 0
            ORDER BY s.score DESC, d.path ASC
            LIMIT ?
            """,
            (document_id, model, min_score, limit),
        )
        return [(row["path"], row["score"]) for row in rows]

    def get_synopsis(self, path: str, field: str) -> Optional[Synopsis]:
        rows = self._query(
            "SELECT path, field, text, source_hash, model FROM synopsis "
            "WHERE path = ? AND field = ?",
            (path, field),
        )
        if not rows:
            return None
        row = rows[0]
        return Synopsis(
            path=row["path"],
            field=row["field"],
            text=row["text"],
            source_hash=row["source_hash"],
            model=row["model"],
        )

    def save_synopsis(self, synopsis: Synopsis):
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO synopsis (path, field, text, source_hash, model, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (path, field) DO UPDATE SET
                    text = excluded.text,
                    source_hash = excluded.source_hash,
                    model = excluded.model,
                    updated_at = excluded.updated_at
                """,
                (
                    synopsis.path,
                    synopsis.field,
                    synopsis.text,
                    synopsis.source_hash,
                    synopsis.model,
                    time.time(),
                ),
            )

    def stats(self) -> Dict[str, object]:
        def scalar(sql: str) -> int:
            return self._query(sql)[0][0]

        embeddings = {
            row["model"]: row["n"]
            for row in self._query(
                "SELECT model, COUNT(*) AS n FROM embedding GROUP BY model ORDER BY model"
            )
        }
        edges = {
            row["model"]: row["n"]
            for row in self._query(
                "SELECT model, COUNT(*) AS n FROM similarity GROUP BY model ORDER BY model"
            )
        }
        return {
            "documents": scalar("SELECT COUNT(*) FROM document"),
            "drafts": scalar("SELECT COUNT(*) FROM document WHERE is_draft = 1"),
            "chunks": scalar("SELECT COUNT(*) FROM chunk"),
            "embeddings": embeddings,
            "edges": edges,
            "synopses": scalar("SELECT COUNT(*) FROM synopsis"),
        }

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            document_id=row["document_id"],
            seq=row["seq"],
            text=row["text"],
            content_hash=row["content_hash"],
            document_path=row["path"],
            document_title=row["title"],
        )
