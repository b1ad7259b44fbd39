"""
Front matter handling for Markdown documents.

A document is an optional YAML header between two `---` lines followed by a
body. This module splits the two apart, parses the header into an ordered
mapping and patches single top-level fields in place.

Patching works on the header text rather than re-serialising the whole
mapping, so every byte outside the patched field (other fields, comments,
quoting style, blank lines, line endings and the body) is left as it was.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

import yaml

from .errors import HeaderParseError

logger = logging.getLogger(__name__)

DELIMITER = "---"


def _split_lines(text: str) -> List[str]:
    """Splits on '\\n' only, keeping line endings (so '\\r\\n' stays intact)."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _is_delimiter(line: str) -> bool:
    return line.rstrip("\r\n").rstrip() == DELIMITER


@dataclass
class FrontMatter:
    """
    A document split into its header and body.

    Attributes:
        opening (str): The opening delimiter line, including its line ending.
            Empty when the document has no front matter.
        lines (Optional[List[str]]): Header lines between the delimiters, each
            with its line ending. None when the document has no front matter.
        closing (str): The closing delimiter line, including its line ending.
        body (str): Everything after the closing delimiter, untouched.
    """

    opening: str
    lines: Optional[List[str]]
    closing: str
    body: str

    @property
    def present(self) -> bool:
        return self.lines is not None

    @property
    def header_text(self) -> str:
        return "".join(self.lines or [])

    @property
    def newline(self) -> str:
        return "\r\n" if self.opening.endswith("\r\n") else "\n"

    def parse(self) -> Dict[str, Any]:
        """Parses the header into an ordered mapping."""
        if not self.present:
            return {}
        return parse_header(self.header_text)

    def render(self) -> str:
        return self.opening + self.header_text + self.closing + self.body

    def with_field(self, field: str, value: Any) -> "FrontMatter":
        """
        Returns a copy with one top-level field set to `value`.

        The field's existing block (key line plus its continuation lines) is
        replaced, or a new block is appended at the end of the header. The
        patched header is parsed again and must hold `value` and every other
        field unchanged.

        Raises:
            HeaderParseError: If the header is malformed, the field appears
                more than once, or the patch does not round-trip.
        """
        before = self.parse()

        if not self.present:
            block = _dump_field(field, value, "\n")
            patched = replace(
                self, opening=DELIMITER + "\n", lines=block, closing=DELIMITER + "\n"
            )
        else:
            block = _dump_field(field, value, self.newline)
            lines = list(self.lines)
            span = _find_field_block(lines, field)
            if span is None:
                insert_at = len(lines)
                while insert_at > 0 and not lines[insert_at - 1].strip():
                    insert_at -= 1
                lines[insert_at:insert_at] = block
            else:
                start, end = span
                lines[start:end] = block
            patched = replace(self, lines=lines)

        after = patched.parse()
        if after.get(field) != value:
            raise HeaderParseError(
                f"Setting '{field}' did not round-trip: got {after.get(field)!r}"
            )
        untouched_before = {k: v for k, v in before.items() if k != field}
        untouched_after = {k: v for k, v in after.items() if k != field}
        if untouched_before != untouched_after:
            raise HeaderParseError(f"Setting '{field}' disturbed other header fields")
        return patched


def split_document(text: str) -> FrontMatter:
    """
    Splits document text into front matter and body.

    A document that does not start with a `---` line has no front matter and
    its whole text is the body.

    Raises:
        HeaderParseError: If the opening delimiter is never closed.
    """
    lines = _split_lines(text)
    if not lines or not _is_delimiter(lines[0]):
        return FrontMatter(opening="", lines=None, closing="", body=text)

    for idx in range(1, len(lines)):
        if _is_delimiter(lines[idx]):
            return FrontMatter(
                opening=lines[0],
                lines=lines[1:idx],
                closing=lines[idx],
                body="".join(lines[idx + 1 :]),
            )
    raise HeaderParseError("Front matter is not terminated by a '---' line")


def parse_header(header_text: str) -> Dict[str, Any]:
    """
    Parses YAML header text into a dict (insertion ordered).

    Raises:
        HeaderParseError: If the text is not valid YAML or not a mapping.
    """
    try:
        data = yaml.safe_load(header_text)
    except yaml.YAMLError as e:
        raise HeaderParseError(f"Invalid YAML in front matter: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise HeaderParseError(
            f"Front matter must be a mapping, got {type(data).__name__}"
        )
    return data


def _dump_field(field: str, value: Any, newline: str) -> List[str]:
    text = yaml.safe_dump(
        {field: value}, sort_keys=False, allow_unicode=True, default_flow_style=False
    )
    return [line.rstrip("\n") + newline for line in _split_lines(text)]


def _key_pattern(field: str) -> re.Pattern:
    escaped = re.escape(field)
    return re.compile(rf"^(?:{escaped}|'{escaped}'|\"{escaped}\")[ \t]*:(?:\s|$)")


def _starts_top_level_entry(line: str) -> bool:
    """True for lines that begin a new top-level key, or a comment at column 0."""
    if not line.strip():
        return False
    if line[0] in " \t":
        return False
    return not line.startswith("-")


def _find_field_block(lines: List[str], field: str) -> Optional[tuple]:
    """
    Locates the lines making up a top-level field.

    Returns:
        A (start, end) slice over `lines`, or None if the field is absent.
        Trailing blank lines are not part of the block.
    """
    pattern = _key_pattern(field)
    starts = [idx for idx, line in enumerate(lines) if pattern.match(line)]
    if not starts:
        return None
    if len(starts) > 1:
        raise HeaderParseError(f"Field '{field}' appears more than once")

    start = starts[0]
    end = start + 1
    while end < len(lines) and not _starts_top_level_entry(lines[end]):
        end += 1
    while end > start + 1 and not lines[end - 1].strip():
        end -= 1
    logger.debug(f"Field '{field}' occupies header lines {start}-{end}")
    return start, end


def set_field(text: str, field: str, value: Any) -> str:
    """Returns `text` with one top-level front-matter field set to `value`."""
    return split_document(text).with_field(field, value).render()
