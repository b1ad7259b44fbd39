"""
Document scanning for the frontlink pipeline.

The scanner walks a directory tree, hashes every matching file, and for new
or changed files parses the front matter, chunks the body and saves both to
the store. Files whose hash matches the stored one are skipped, which makes
re-running a scan on an unchanged tree a no-op.
"""

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from .chunkers import BaseChunker
from ..utils.data_models import Document, StageReport
from ..utils.errors import HeaderParseError, StoreError
from ..utils.front_matter import split_document
from ..utils.store import BaseStore, compute_hash

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".BAK"


def parse_document(path: str, data: bytes) -> Document:
    """
    Builds a Document from raw file bytes.

    Raises:
        UnicodeDecodeError: If the file is not UTF-8.
        HeaderParseError: If the front matter is malformed.
    """
    text = data.decode("utf-8-sig")
    front_matter = split_document(text)
    return Document(
        path=path,
        content_hash=compute_hash(data),
        header=front_matter.parse(),
        body=front_matter.body,
    )


class Scanner:
    """
    Loads documents from a local directory tree into the store.

    `chunker` may be None when only `iter_documents` is used.
    """

    def __init__(
        self,
        store: BaseStore,
        chunker: Optional[BaseChunker],
        glob_patterns: Sequence[str] = ("**/*.md",),
        prune: bool = True,
    ):
        self.store = store
        self.chunker = chunker
        self.glob_patterns = list(glob_patterns)
        self.prune = prune
        logger.debug(
            f"Initialized Scanner with patterns={self.glob_patterns}, prune={prune}"
        )

    def discover(self, root: Path) -> List[Path]:
        """Returns matching files beneath `root`, sorted by path, backups excluded."""
        found = set()
        for pattern in self.glob_patterns:
            for file_path in root.glob(pattern):
                if file_path.is_file() and not file_path.name.endswith(BACKUP_SUFFIX):
                    found.add(file_path)
        return sorted(found)

    @staticmethod
    def relative_path(root: Path, file_path: Path) -> str:
        return file_path.relative_to(root).as_posix()

    def iter_documents(self, root: Union[str, Path], report: StageReport) -> Iterator[Document]:
        """
        Parses every matching file without touching the store.

        Unreadable files and malformed headers are recorded on `report` and
        skipped.
        """
        root = self._check_root(root)
        for file_path in self.discover(root):
            path = self.relative_path(root, file_path)
            try:
                yield parse_document(path, file_path.read_bytes())
            except OSError as e:
                report.skip(path, f"unreadable: {e}")
            except UnicodeDecodeError as e:
                report.skip(path, f"not valid UTF-8: {e}")
            except HeaderParseError as e:
                report.skip(path, f"malformed header: {e}")

    def scan(self, root: Union[str, Path]) -> StageReport:
        """
        Brings the store up to date with the files beneath `root`.

        Each changed document is saved in its own transaction, so an
        interrupted scan leaves the store consistent per document.

        Raises:
            FileNotFoundError: If `root` is not a directory.
        """
        if self.chunker is None:
            raise ValueError("Scanner needs a chunker to scan into the store.")
        root = self._check_root(root)
        report = StageReport(stage="scan")
        logger.info(f"Scanning '{root}' with patterns {self.glob_patterns}")

        files = self.discover(root)
        seen = set()
        for file_path in files:
            path = self.relative_path(root, file_path)
            seen.add(path)
            try:
                data = file_path.read_bytes()
            except OSError as e:
                report.skip(path, f"unreadable: {e}")
                continue

            if self.store.get_document_hash(path) == compute_hash(data):
                report.unchanged += 1
                continue

            try:
                document = parse_document(path, data)
            except UnicodeDecodeError as e:
                report.skip(path, f"not valid UTF-8: {e}")
                continue
            except HeaderParseError as e:
                report.skip(path, f"malformed header: {e}")
                continue

            chunks = self.chunker.chunk(document)
            try:
                _, written = self.store.save_document(document, chunks)
            except StoreError as e:
                report.fail(path, str(e))
                continue

            report.processed += 1
            logger.info(f"Scanned '{path}': {len(chunks)} chunks, {written} new or changed")

        if self.prune:
            stale = [
                document.path
                for document in self.store.list_documents()
                if document.path not in seen
            ]
            if stale:
                try:
                    report.removed = self.store.delete_documents(stale)
                    logger.info(f"Removed {report.removed} documents no longer on disk: {stale}")
                except StoreError as e:
                    report.fail(", ".join(stale), f"could not remove: {e}")

        logger.info(f"Found {len(files)} files. {report.summary()}")
        return report

    @staticmethod
    def _check_root(root: Union[str, Path]) -> Path:
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Source path '{root}' is not a valid directory.")
        return root
