"""
Core data models for the frontlink pipeline.

These are the working copies that stages pass around during a single run.
Persistent state lives in the store; nothing here outlives an invocation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class Document:
    """
    One source file.

    Attributes:
        path (str): POSIX path relative to the scanned root. Stable identity.
        content_hash (str): sha256 of the file bytes.
        header (Dict[str, Any]): Parsed front matter, in file order.
        body (str): Everything after the front matter.
        id (Optional[int]): Store row id, once persisted.
    """

    path: str
    content_hash: str
    header: Dict[str, Any] = field(default_factory=dict)
    body: str = ""
    id: Optional[int] = None

    @property
    def title(self) -> str:
        return str(self.header.get("title") or "")

    @property
    def is_draft(self) -> bool:
        return self.header.get("draft") is True


@dataclass
class Chunk:
    """A bounded slice of a document's body."""

    document_id: int
    seq: int
    text: str
    content_hash: str
    id: Optional[int] = None
    document_path: Optional[str] = None
    document_title: Optional[str] = None


@dataclass
class Embedding:
    chunk_id: int
    model: str
    vector: List[float]


@dataclass
class SimilarityEdge:
    """A directed, scored relation between two documents."""

    source_id: int
    target_id: int
    score: float
    rank: int = 0


@dataclass
class Synopsis:
    """A generated text for one front-matter field of one document."""

    path: str
    field: str
    text: str
    source_hash: str
    model: str = ""


@dataclass
class StageReport:
    """
    Outcome of one stage run.

    Every skipped, failed or deferred item is recorded in `issues` together
    with the path or chunk id needed to find it again.
    """

    stage: str
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    removed: int = 0
    unchanged: int = 0
    interrupted: bool = False
    issues: List[Tuple[str, str]] = field(default_factory=list)

    def skip(self, identity: str, reason: str):
        self.skipped += 1
        self.issues.append((identity, reason))
        logger.warning(f"[{self.stage}] Skipped {identity}: {reason}")

    def fail(self, identity: str, reason: str):
        self.failed += 1
        self.issues.append((identity, reason))
        logger.error(f"[{self.stage}] Failed {identity}: {reason}")

    def defer(self, identity: str, reason: str):
        self.deferred += 1
        self.issues.append((identity, reason))
        logger.warning(f"[{self.stage}] Deferred {identity} to next run: {reason}")

    def summary(self) -> str:
        text = (
            f"{self.stage}: {self.processed} processed, {self.skipped} skipped, "
            f"{self.failed} failed, {self.deferred} deferred"
        )
        if self.unchanged:
            text += f", {self.unchanged} unchanged"
        if self.removed:
            text += f", {self.removed} removed"
        if self.interrupted:
            text += " (interrupted)"
        return text
