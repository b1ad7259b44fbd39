"""
The summary stage.

Generates a short text (a synopsis or a tagline) for every published document
that doesn't have one yet and writes it into the document's front matter.
Generated texts are kept in the store keyed by the body they were made from,
so a document is only sent to the service again when its body changes.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from ..components.scanner import Scanner
from ..components.summarizers import SUMMARY_PROMPTS, BaseSummarizer, Prompts
from ..components.writer import MetadataWriter, WriteOutcome
from ..utils.data_models import Document, StageReport, Synopsis
from ..utils.errors import (
    HeaderParseError,
    PermanentServiceError,
    StoreError,
    TransientServiceError,
)
from ..utils.retry import RateLimiter, RetryPolicy, ServiceCaller
from ..utils.store import BaseStore, compute_hash

logger = logging.getLogger(__name__)


class SummaryStage:
    """
    Fills one front-matter field with a generated text.

    Service calls run on worker threads; store writes and file writes happen
    on the calling thread, in path order.
    """

    def __init__(
        self,
        store: BaseStore,
        summarizer: BaseSummarizer,
        writer: MetadataWriter,
        field: str = "synopsis",
        prompts: Prompts = SUMMARY_PROMPTS,
        min_length: int = 1000,
        force: bool = False,
        max_workers: int = 4,
        retry: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        glob_patterns: Sequence[str] = ("**/*.md",),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.summarizer = summarizer
        self.writer = writer
        self.field = field
        self.prompts = prompts
        self.min_length = min_length
        self.force = force
        self.max_workers = max(1, max_workers)
        self.scanner = Scanner(store, chunker=None, glob_patterns=glob_patterns, prune=False)
        self.caller = ServiceCaller(policy=retry, rate_limiter=rate_limiter, sleep=sleep)

    def _select(
        self, root: Path, report: StageReport
    ) -> Tuple[List[Tuple[Document, str]], List[Tuple[Document, str]]]:
        """Splits documents into those with a cached text and those needing a request."""
        cached, pending = [], []
        for document in self.scanner.iter_documents(root, report):
            if document.is_draft:
                logger.debug(f"Skipping draft '{document.path}'")
                report.skipped += 1
                continue
            if len(document.body) < self.min_length:
                logger.debug(f"'{document.path}' is too short to summarize")
                report.skipped += 1
                continue
            if self.field in document.header and not self.force:
                report.unchanged += 1
                continue

            source_hash = compute_hash(document.body)
            stored = self.store.get_synopsis(document.path, self.field)
            if stored is not None and stored.source_hash == source_hash:
                logger.debug(f"Reusing stored {self.field} for '{document.path}'")
                cached.append((document, stored.text))
            else:
                pending.append((document, source_hash))
        return cached, pending

    def _summarize(self, document: Document) -> str:
        return self.caller.call(
            lambda: self.summarizer.summarize(document.body, self.prompts),
            description=f"{self.field} for '{document.path}'",
        )

    def _write(self, root: Path, document: Document, text: str, report: StageReport):
        try:
            outcome = self.writer.apply(root / document.path, self.field, text)
        except HeaderParseError as e:
            report.skip(document.path, f"could not update header: {e}")
            return
        except OSError as e:
            report.fail(document.path, f"could not write: {e}")
            return

        if outcome in (WriteOutcome.WRITTEN, WriteOutcome.DRY_RUN):
            report.processed += 1
        else:
            report.unchanged += 1

    def run(self, root: Union[str, Path]) -> StageReport:
        """
        Raises:
            FileNotFoundError: If `root` is not a directory.
        """
        root = Path(root)
        report = StageReport(stage=self.field)
        ready, pending = self._select(root, report)
        logger.info(
            f"{len(ready)} documents have a stored {self.field}, "
            f"{len(pending)} need one from '{self.summarizer.model_tag}'."
        )

        if pending:
            executor = ThreadPoolExecutor(max_workers=self.max_workers)
            futures = {
                executor.submit(self._summarize, document): (document, source_hash)
                for document, source_hash in pending
            }
            try:
                for future in as_completed(futures):
                    document, source_hash = futures[future]
                    try:
                        text = future.result()
                    except TransientServiceError as e:
                        report.defer(document.path, str(e))
                        continue
                    except PermanentServiceError as e:
                        report.fail(document.path, str(e))
                        continue
                    except Exception as e:
                        logger.error(
                            f"Unexpected error summarizing '{document.path}': {e}", exc_info=True
                        )
                        report.fail(document.path, f"unexpected error: {e}")
                        continue

                    try:
                        self.store.save_synopsis(
                            Synopsis(
                                path=document.path,
                                field=self.field,
                                text=text,
                                source_hash=source_hash,
                                model=self.summarizer.model_tag,
                            )
                        )
                    except StoreError as e:
                        logger.warning(f"Could not store {self.field} for '{document.path}': {e}")
                    ready.append((document, text))
            except KeyboardInterrupt:
                report.interrupted = True
                for future in futures:
                    future.cancel()
                logger.warning(
                    "Interrupted. Generated texts are stored and will be written on the next run."
                )
            finally:
                executor.shutdown(wait=True, cancel_futures=True)

        if report.interrupted:
            return report

        for document, text in sorted(ready, key=lambda item: item[0].path):
            self._write(root, document, text, report)

        logger.info(report.summary())
        return report
