"""
Core pipeline orchestration module.

One function per stage. Each builds the components it needs from the
validated AppConfig, runs the stage against an open store and returns the
stage's report. Stages never call each other; the caller decides the order.
"""

import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Union

from .embedding import EmbeddingStage
from .factory import (
    build_component,
    embedding_model_tag,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    SUMMARIZER_REGISTRY,
)
from .similarity import SimilarityEngine
from .summary import SummaryStage
from ..components.scanner import Scanner
from ..components.summarizers import SUMMARY_PROMPTS, Prompts
from ..components.writer import MetadataWriter, WriteOutcome
from ..utils.config_models import AppConfig
from ..utils.data_models import StageReport
from ..utils.errors import HeaderParseError
from ..utils.retry import RateLimiter, RetryPolicy
from ..utils.store import BaseStore

logger = logging.getLogger(__name__)


@contextmanager
def interruptible():
    """Turns SIGTERM into KeyboardInterrupt for the duration of a stage."""

    def _raise_interrupt(signum, frame):
        raise KeyboardInterrupt(f"Received signal {signum}")

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _retry_policy(config: AppConfig) -> RetryPolicy:
    service = config.service
    return RetryPolicy(
        max_retries=service.max_retries,
        delay=service.retry_delay,
        backoff_multiplier=service.backoff_multiplier,
        max_delay=service.max_delay,
    )


def _rate_limiter(config: AppConfig) -> Optional[RateLimiter]:
    if config.service.requests_per_minute is None:
        return None
    return RateLimiter(config.service.requests_per_minute)


def run_scan(config: AppConfig, store: BaseStore, root: Union[str, Path]) -> StageReport:
    """Loads new and changed documents beneath `root` into the store."""
    chunker = build_component(config.chunker.model_dump(), CHUNKER_REGISTRY)
    scanner = Scanner(
        store,
        chunker,
        glob_patterns=config.source.glob_patterns,
        prune=config.source.prune,
    )
    return scanner.scan(root)


def run_embed(
    config: AppConfig,
    store: BaseStore,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> StageReport:
    """Embeds every stored chunk that has no embedding for the configured model."""
    embedder = build_component(config.embedder.model_dump(), EMBEDDER_REGISTRY)
    stage = EmbeddingStage(
        store,
        embedder,
        batch_size=config.service.batch_size,
        max_workers=config.service.max_workers,
        retry=_retry_policy(config),
        rate_limiter=_rate_limiter(config),
        include_drafts=config.source.include_drafts,
        prepend_title=config.embedding.prepend_title,
        progress_callback=progress_callback,
    )
    return stage.run()


def run_calc(config: AppConfig, store: BaseStore) -> StageReport:
    """Recomputes similarity edges from the stored embeddings."""
    engine = SimilarityEngine(
        store,
        embedding_model_tag(config.embedder.model_dump()),
        max_related=config.similarity.max_related,
        min_similarity=config.similarity.min_similarity,
    )
    return engine.run()


def run_write(
    config: AppConfig,
    store: BaseStore,
    root: Union[str, Path],
    writer: MetadataWriter,
) -> StageReport:
    """Writes each published document's related list into its front matter."""
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Source path '{root}' is not a valid directory.")

    report = StageReport(stage="write")
    model = embedding_model_tag(config.embedder.model_dump())
    field = config.similarity.field

    for document in store.list_documents(include_drafts=False):
        related = store.related_documents(
            document.id,
            model,
            limit=config.similarity.max_related,
            min_score=config.similarity.min_similarity,
        )
        if not related:
            report.skip(document.path, "no related documents above the threshold")
            continue

        value = [path for path, _ in related]
        try:
            outcome = writer.apply(root / document.path, field, value)
        except HeaderParseError as e:
            report.skip(document.path, f"could not update header: {e}")
            continue
        except OSError as e:
            report.fail(document.path, f"could not write: {e}")
            continue

        if outcome in (WriteOutcome.WRITTEN, WriteOutcome.DRY_RUN):
            report.processed += 1
        else:
            report.unchanged += 1

    logger.info(report.summary())
    return report


def run_summarize(
    config: AppConfig,
    store: BaseStore,
    root: Union[str, Path],
    writer: MetadataWriter,
    field: str = "synopsis",
    prompts: Prompts = SUMMARY_PROMPTS,
    force: bool = False,
) -> StageReport:
    """Generates `field` for published documents that lack it."""
    summarizer = build_component(config.summarizer.model_dump(), SUMMARIZER_REGISTRY)
    stage = SummaryStage(
        store,
        summarizer,
        writer,
        field=field,
        prompts=prompts,
        min_length=config.summary.min_length,
        force=force,
        max_workers=config.service.max_workers,
        retry=_retry_policy(config),
        rate_limiter=_rate_limiter(config),
        glob_patterns=config.source.glob_patterns,
    )
    return stage.run(root)
