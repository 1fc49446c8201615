# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Entry codec for the cache file.

Each entry is one Org-compatible span:

    * CONTEXT <heading_id>
    :VARIANT: files
    :HEADING: Projects / Backend / Storage
    #+BEGIN_FINGERPRINTS
    {'/abs/path/a.txt': '1700000000:1234'}
    #+END_FINGERPRINTS
    #+BEGIN_CONTEXT
    <escaped payload>
    #+END_CONTEXT

Payload escaping follows Org's comma convention: a line starting with any
number of commas followed by "*" or "#+" gets one more comma on write and
loses exactly one on read. No escaped payload line can start with "*" or
"#+", so payloads never collide with identity lines or block delimiters.

The fingerprint map is a Python literal read back with ast.literal_eval,
which keeps arbitrary path characters intact on one line.
"""

import ast
import logging
import re
from typing import Dict, List, Sequence

from outline_context.models import CacheEntry, HeadingPath, Variant

logger = logging.getLogger(__name__)

ENTRY_LINE_RE = re.compile(r"^\* CONTEXT (\S+)[ \t]*$", re.MULTILINE)

HEADING_SEPARATOR = " / "
CONTEXT_BEGIN = "#+BEGIN_CONTEXT"
CONTEXT_END = "#+END_CONTEXT"
FINGERPRINTS_BEGIN = "#+BEGIN_FINGERPRINTS"
FINGERPRINTS_END = "#+END_FINGERPRINTS"

_ESCAPE_RE = re.compile(r"^(,*)(\*|#\+)", re.MULTILINE)
_UNESCAPE_RE = re.compile(r"^,(,*)(\*|#\+)", re.MULTILINE)

_HEADER_RE = re.compile(
    r"\* CONTEXT (?P<id>\S+)[ \t]*\n"
    r":VARIANT:[ \t]*(?P<variant>[^\n]*?)[ \t]*\n"
    r":HEADING:(?: (?P<heading>[^\n]*))?\n"
    + re.escape(FINGERPRINTS_BEGIN)
    + r"\n(?P<hashes>.*?)\n"
    + re.escape(FINGERPRINTS_END)
    + r"\n"
    + re.escape(CONTEXT_BEGIN)
    + r"\n",
    re.DOTALL,
)


class CodecError(ValueError):
    """Raised when a stored entry span cannot be decoded."""

    pass


def escape_payload(text: str) -> str:
    """Make payload text safe to embed between the context delimiters."""
    return _ESCAPE_RE.sub(r",\1\2", text)


def unescape_payload(text: str) -> str:
    """Exact inverse of escape_payload."""
    return _UNESCAPE_RE.sub(r"\1\2", text)


def format_heading_path(heading_path: Sequence[str]) -> str:
    """Human-readable heading path that still parses back exactly."""
    escaped = [
        title.replace("\\", "\\\\").replace("/", "\\/").replace("\n", "\\n")
        for title in heading_path
    ]
    return HEADING_SEPARATOR.join(escaped)


def parse_heading_path(display: str) -> HeadingPath:
    """Inverse of format_heading_path.

    An empty display line is a path of one empty title; entries never have an
    empty heading path.
    """
    titles: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(display):
        char = display[i]
        if char == "\\" and i + 1 < len(display):
            nxt = display[i + 1]
            current.append("\n" if nxt == "n" else nxt)
            i += 2
            continue
        if char == "/":
            # Unescaped slash only appears inside the " / " separator
            if current and current[-1] == " ":
                current.pop()
            titles.append("".join(current))
            current = []
            i += 1
            if i < len(display) and display[i] == " ":
                i += 1
            continue
        current.append(char)
        i += 1
    titles.append("".join(current))
    return tuple(titles)


def encode_entry(entry: CacheEntry) -> str:
    """Serialize an entry into a span. The result has no trailing newline."""
    hashes = {str(path): str(fp) for path, fp in entry.file_hashes.items()}
    return "\n".join(
        [
            f"* CONTEXT {entry.heading_id}",
            f":VARIANT: {entry.variant.value}",
            f":HEADING: {format_heading_path(entry.heading_path)}",
            FINGERPRINTS_BEGIN,
            repr(hashes),
            FINGERPRINTS_END,
            CONTEXT_BEGIN,
            escape_payload(entry.content),
            CONTEXT_END,
        ]
    )


def decode_entry(span: str) -> CacheEntry:
    """Parse a span produced by encode_entry.

    Trailing blank lines after the closing delimiter are allowed.

    Raises:
        CodecError: If the span is malformed.
    """
    header = _HEADER_RE.match(span)
    if header is None:
        raise CodecError("Entry header is malformed")

    try:
        variant = Variant.parse(header.group("variant"))
    except ValueError as e:
        raise CodecError(str(e)) from None

    file_hashes = _parse_fingerprints(header.group("hashes"))

    body_start = header.end()
    body_end = span.find("\n" + CONTEXT_END, body_start - 1)
    if body_end < body_start - 1:
        raise CodecError("Context block is not terminated")
    # Hand-edited spans may close the block right after the begin line
    body = span[body_start:body_end] if body_end >= body_start else ""

    trailer = span[body_end + 1 + len(CONTEXT_END) :]
    if trailer.strip():
        raise CodecError("Unexpected text after context block")

    return CacheEntry(
        heading_id=header.group("id"),
        variant=variant,
        heading_path=parse_heading_path(header.group("heading") or ""),
        file_hashes=file_hashes,
        content=unescape_payload(body),
    )


def _parse_fingerprints(literal: str) -> Dict[str, str]:
    try:
        value = ast.literal_eval(literal.strip())
    except (ValueError, SyntaxError) as e:
        raise CodecError(f"Fingerprint map is malformed: {e}") from None

    if not isinstance(value, dict):
        raise CodecError(f"Fingerprint map must be a dict, got {type(value).__name__}")
    for path, fingerprint in value.items():
        if not isinstance(path, str) or not isinstance(fingerprint, str):
            raise CodecError(f"Invalid fingerprint record: {path!r} -> {fingerprint!r}")
    return value
