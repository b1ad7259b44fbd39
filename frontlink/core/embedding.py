"""
The embedding stage.

Finds every chunk that has no embedding under the embedder's model tag,
requests vectors in batches from a small thread pool, and persists each
result as soon as its batch comes back. Chunks that already have an
embedding are never requested again, so an interrupted run simply resumes.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..components.embedders import BaseEmbedder
from ..utils.data_models import Chunk, StageReport
from ..utils.errors import PermanentServiceError, StoreError, TransientServiceError
from ..utils.retry import RateLimiter, RetryPolicy, ServiceCaller
from ..utils.store import BaseStore

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 2048


def chunk_identity(chunk: Chunk) -> str:
    return f"{chunk.document_path}#{chunk.seq} (chunk {chunk.id})"


@dataclass
class BatchResult:
    embedded: List[Tuple[Chunk, np.ndarray]] = field(default_factory=list)
    deferred: List[Tuple[Chunk, str]] = field(default_factory=list)
    failed: List[Tuple[Chunk, str]] = field(default_factory=list)


class EmbeddingStage:
    """
    Computes missing chunk embeddings.

    Network calls run on worker threads; every store write happens on the
    thread that called `run`.
    """

    def __init__(
        self,
        store: BaseStore,
        embedder: BaseEmbedder,
        batch_size: int = 16,
        max_workers: int = 4,
        retry: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        include_drafts: bool = False,
        prepend_title: bool = False,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.embedder = embedder
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.max_workers = max(1, max_workers)
        self.include_drafts = include_drafts
        self.prepend_title = prepend_title
        self.progress_callback = progress_callback
        self.caller = ServiceCaller(policy=retry, rate_limiter=rate_limiter, sleep=sleep)

    def _request_text(self, chunk: Chunk) -> str:
        if self.prepend_title and chunk.document_title:
            return f"{chunk.document_title}\n\n{chunk.text}"
        return chunk.text

    def _request(self, texts: List[str]) -> np.ndarray:
        vectors = self.caller.call(
            lambda: self.embedder.embed(texts), description=f"embed {len(texts)} chunks"
        )
        vectors = np.asarray(vectors, dtype=float)
        if vectors.ndim != 2 or vectors.shape[0] != len(texts):
            raise PermanentServiceError(
                f"Expected {len(texts)} vectors, got array of shape {vectors.shape}"
            )
        if vectors.shape[1] == 0:
            raise PermanentServiceError("Service returned empty vectors")
        return vectors

    def _embed_batch(self, batch: List[Chunk]) -> BatchResult:
        """Runs on a worker thread. Never touches the store."""
        result = BatchResult()
        try:
            vectors = self._request([self._request_text(chunk) for chunk in batch])
            result.embedded = list(zip(batch, vectors))
            return result
        except TransientServiceError as e:
            result.deferred = [(chunk, str(e)) for chunk in batch]
            return result
        except PermanentServiceError as e:
            if len(batch) == 1:
                result.failed.append((batch[0], str(e)))
                return result
            logger.warning(
                f"Batch of {len(batch)} chunks was rejected ({e}). Retrying one chunk at a time."
            )

        for chunk in batch:
            try:
                vectors = self._request([self._request_text(chunk)])
                result.embedded.append((chunk, vectors[0]))
            except TransientServiceError as e:
                result.deferred.append((chunk, str(e)))
            except PermanentServiceError as e:
                result.failed.append((chunk, str(e)))
        return result

    def _persist(self, result: BatchResult, report: StageReport):
        model = self.embedder.model_tag
        for chunk, vector in result.embedded:
            try:
                if self.store.add_embedding(chunk.id, model, vector):
                    report.processed += 1
                else:
                    report.unchanged += 1
            except StoreError as e:
                report.fail(chunk_identity(chunk), str(e))
        for chunk, reason in result.deferred:
            report.defer(chunk_identity(chunk), reason)
        for chunk, reason in result.failed:
            report.fail(chunk_identity(chunk), reason)

    def run(self) -> StageReport:
        report = StageReport(stage="embed")
        model = self.embedder.model_tag
        chunks = self.store.chunks_missing_embedding(model, include_drafts=self.include_drafts)
        if not chunks:
            logger.info(f"All chunks already have '{model}' embeddings. Nothing to do.")
            return report

        batches = [
            chunks[i : i + self.batch_size] for i in range(0, len(chunks), self.batch_size)
        ]
        logger.info(
            f"Embedding {len(chunks)} chunks with '{model}' in {len(batches)} batches "
            f"using {self.max_workers} workers."
        )

        done = 0
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        futures = {executor.submit(self._embed_batch, batch): batch for batch in batches}
        try:
            for future in as_completed(futures):
                batch = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Unexpected error embedding a batch: {e}", exc_info=True)
                    for chunk in batch:
                        report.fail(chunk_identity(chunk), f"unexpected error: {e}")
                else:
                    self._persist(result, report)

                done += len(batch)
                if self.progress_callback is not None:
                    self.progress_callback(done, len(chunks))
        except KeyboardInterrupt:
            report.interrupted = True
            for future in futures:
                future.cancel()
            logger.warning(
                f"Interrupted after {done} of {len(chunks)} chunks. "
                f"Embeddings saved so far are kept."
            )
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        logger.info(report.summary())
        return report
