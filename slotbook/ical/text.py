"""
Low-level helpers for iCalendar (RFC 5545) content lines.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from ..domain.models import as_pendulum

CRLF = "\r\n"
MAX_LINE_OCTETS = 75

UTC_FORMAT = "YYYYMMDD[T]HHmmss[Z]"


def escape_text(text: Optional[str]) -> str:
    """
    Escape text for iCalendar format.
    Escapes backslashes, semicolons, commas and newlines.
    """
    if text is None:
        return ""

    # Backslashes first, before other replacements add new ones
    text = text.replace("\\", "\\\\")
    text = text.replace(";", "\\;")
    text = text.replace(",", "\\,")
    # Any line break, including a bare CR, becomes an escaped newline
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.replace("\n", "\\n")


def unescape_text(text: str) -> str:
    """Reverse :func:`escape_text`."""
    result: List[str] = []
    chars = iter(text)

    for char in chars:
        if char != "\\":
            result.append(char)
            continue

        escaped = next(chars, "")
        if escaped in ("n", "N"):
            result.append("\n")
        else:
            result.append(escaped)

    return "".join(result)


def quote_param(value: str) -> str:
    """Double-quote a parameter value when it contains ``:``, ``;`` or ``,``."""
    value = value.replace('"', "")
    if any(char in value for char in ":;,"):
        return f'"{value}"'
    return value


def format_utc(value: datetime) -> str:
    """Format a datetime as UTC, e.g. ``20240115T093000Z``."""
    return as_pendulum(value).in_timezone("UTC").format(UTC_FORMAT)


def fold_line(line: str) -> List[str]:
    """
    Fold a content line to at most 75 octets per physical line.
    Continuation lines start with a single space.
    """
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return [line]

    folded: List[str] = []
    current = ""

    for char in line:
        if len((current + char).encode("utf-8")) > MAX_LINE_OCTETS:
            folded.append(current)
            current = " "
        current += char

    folded.append(current)
    return folded


def join_lines(lines: Iterable[str]) -> str:
    """Fold and join content lines with CRLF, including a trailing CRLF."""
    physical: List[str] = []
    for line in lines:
        physical.extend(fold_line(line))
    return CRLF.join(physical) + CRLF


def unfold_lines(text: str) -> List[str]:
    """Split raw text into logical content lines, undoing line folding."""
    logical: List[str] = []

    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if raw[:1] in (" ", "\t") and logical:
            logical[-1] += raw[1:]
        else:
            logical.append(raw)

    return logical


def split_content_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Split ``NAME;PARAMS:VALUE`` on the first colon outside double quotes.

    Returns None when the line carries no colon.
    """
    in_quotes = False
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            return line[:index], line[index + 1:]
    return None
