"""
Document similarity ranking.

Each document is represented by the mean of its chunk embeddings. Documents
are compared pairwise by cosine similarity and each keeps its best matches
above a threshold. The whole edge set for a model is recomputed on every run.
"""

import logging
from collections import Counter
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from ..utils.data_models import SimilarityEdge, StageReport
from ..utils.errors import StoreError
from ..utils.store import BaseStore

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity clamped to [0, 1].

    Negative similarity is treated as unrelated, and rounding noise above 1 is
    cut off. A zero vector is similar to nothing.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / norm, 0.0, 1.0))


def document_signature(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Component-wise mean of a document's chunk vectors."""
    if len(vectors) == 0:
        raise ValueError("Cannot build a signature from zero vectors")
    return np.mean(np.vstack(vectors).astype(np.float64), axis=0)


def select_top_k(
    candidates: Iterable[Tuple[str, float]], k: int, min_similarity: float
) -> List[Tuple[str, float]]:
    """
    Picks the best `k` (path, score) candidates scoring at least `min_similarity`.

    Ties are broken by ascending path.
    """
    ranked = sorted(candidates, key=lambda candidate: (-candidate[1], candidate[0]))
    return [candidate for candidate in ranked if candidate[1] >= min_similarity][:k]


class SimilarityEngine:
    """Recomputes the similarity edges for one embedding model."""

    def __init__(
        self,
        store: BaseStore,
        model_tag: str,
        max_related: int = 3,
        min_similarity: float = 0.4,
    ):
        if max_related < 1:
            raise ValueError(f"max_related must be at least 1, got {max_related}")
        if not 0.0 <= min_similarity <= 1.0:
            raise ValueError(f"min_similarity must be in [0, 1], got {min_similarity}")
        self.store = store
        self.model_tag = model_tag
        self.max_related = max_related
        self.min_similarity = min_similarity

    def _signatures(self, report: StageReport) -> List[Tuple[int, str, np.ndarray]]:
        entries = self.store.document_vectors(self.model_tag)
        if not entries:
            return []

        dimensions = Counter(vector.shape[0] for _, _, vectors in entries for vector in vectors)
        dominant = dimensions.most_common(1)[0][0]
        if len(dimensions) > 1:
            logger.warning(
                f"Embeddings for '{self.model_tag}' have mixed dimensions {sorted(dimensions)}; "
                f"using {dominant}."
            )

        signatures = []
        for document_id, path, vectors in entries:
            if any(vector.shape[0] != dominant for vector in vectors):
                report.skip(path, f"embedding dimension differs from the corpus ({dominant})")
                continue
            signature = document_signature(vectors)
            norm = np.linalg.norm(signature)
            if norm == 0:
                report.skip(path, "signature has zero magnitude")
                continue
            signatures.append((document_id, path, signature / norm))
        return signatures

    def run(self) -> StageReport:
        report = StageReport(stage="calc")
        signatures = self._signatures(report)
        logger.info(f"Comparing {len(signatures)} documents using '{self.model_tag}'.")

        edges: List[SimilarityEdge] = []
        if signatures:
            matrix = np.vstack([signature for _, _, signature in signatures])
            scores = np.clip(matrix @ matrix.T, 0.0, 1.0)
            ids_by_path = {path: document_id for document_id, path, _ in signatures}
            paths = [path for _, path, _ in signatures]

            for i, (document_id, path, _) in enumerate(signatures):
                candidates = [
                    (paths[j], float(scores[i, j])) for j in range(len(paths)) if j != i
                ]
                top = select_top_k(candidates, self.max_related, self.min_similarity)
                for rank, (target_path, score) in enumerate(top):
                    edges.append(
                        SimilarityEdge(
                            source_id=document_id,
                            target_id=ids_by_path[target_path],
                            score=score,
                            rank=rank,
                        )
                    )
                report.processed += 1
                logger.debug(f"'{path}': {len(top)} related documents")
        else:
            logger.warning(f"No embeddings found for '{self.model_tag}'. Did you run 'embed'?")

        try:
            self.store.replace_similarity_edges(self.model_tag, edges)
        except StoreError as e:
            report.fail(f"similarity edges for '{self.model_tag}'", str(e))
            return report

        logger.info(f"Stored {len(edges)} similarity edges. {report.summary()}")
        return report
