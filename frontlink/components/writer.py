"""
Metadata write-back for the frontlink pipeline.

The writer is the only component that modifies document files. It patches a
single front-matter field, keeps everything else byte-for-byte, and replaces
the file atomically so a crash never leaves a half-written document behind.
"""

import enum
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, TextIO, Union

from ..utils.errors import HeaderParseError
from ..utils.front_matter import split_document

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".BAK"
BOM = "\ufeff"


class WriteOutcome(enum.Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"
    KEPT = "kept"
    DRY_RUN = "dry_run"


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def atomic_write(path: Path, text: str):
    """
    Replaces `path` with `text` through a temporary file in the same directory.

    The original file is untouched if anything fails before the final rename.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class MetadataWriter:
    """
    Sets front-matter fields on documents on disk.

    Attributes:
        backup (bool): Copy the original to `<name>.BAK` before replacing it.
        dry_run (bool): Print the merged document to `output` instead of writing.
        output (TextIO): Destination for dry-run output.
        overwrite (bool): Replace a field that already has a different value.
            When False, documents that already have the field are kept as is.
    """

    def __init__(
        self,
        backup: bool = True,
        dry_run: bool = False,
        output: TextIO = None,
        overwrite: bool = True,
    ):
        self.backup = backup
        self.dry_run = dry_run
        self.output = output or sys.stdout
        self.overwrite = overwrite

    def apply(self, path: Union[str, Path], field: str, value: Any) -> WriteOutcome:
        """
        Sets `field` to `value` in the front matter of the file at `path`.

        Raises:
            HeaderParseError: If the file is not UTF-8 or its front matter cannot
                be parsed or patched. The file is left untouched.
            OSError: If the file cannot be read, backed up or replaced.
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                text = f.read()
        except UnicodeDecodeError as e:
            raise HeaderParseError(f"'{path}' is not valid UTF-8: {e}") from e

        bom = ""
        if text.startswith(BOM):
            bom, text = BOM, text[len(BOM) :]

        front_matter = split_document(text)
        header = front_matter.parse()
        if field in header:
            if header[field] == value:
                logger.debug(f"'{path}' already has the current '{field}'")
                return WriteOutcome.UNCHANGED
            if not self.overwrite:
                logger.info(f"Keeping existing '{field}' in '{path}'")
                return WriteOutcome.KEPT

        new_text = bom + front_matter.with_field(field, value).render()

        if self.dry_run:
            logger.info(f"[dry-run] Would set '{field}' in '{path}'")
            self.output.write(new_text)
            self.output.flush()
            return WriteOutcome.DRY_RUN

        if self.backup:
            shutil.copy2(path, backup_path(path))
            logger.debug(f"Backed up '{path}' to '{backup_path(path)}'")
        atomic_write(path, new_text)
        logger.info(f"Set '{field}' in '{path}'")
        return WriteOutcome.WRITTEN
