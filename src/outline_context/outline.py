# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Outline document model.

Parses Org-style outlines into a tree of sections. This is the host
document access the cache engine consumes:
- The section at a cursor line
- A section's own text (heading line plus body, excluding sub-sections)
- Moving to the parent section
- Tags visible at a section (own, inherited and #+FILETAGS)

Only the heading structure matters here; everything else in a section body
is treated as opaque text.
"""

import logging
import re
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from outline_context.models import HeadingPath

logger = logging.getLogger(__name__)

# "** Title   :tag1:tag2:"
_HEADING_RE = re.compile(r"^(\*+)[ \t]+(.*?)(?:[ \t]+(:(?:[\w@#%]+:)+))?[ \t]*$")
_EMPTY_HEADING_RE = re.compile(r"^(\*+)[ \t]*$")
_FILETAGS_RE = re.compile(r"^#\+FILETAGS:[ \t]*(.*)$", re.IGNORECASE)


def _split_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [tag for tag in raw.strip().strip(":").split(":") if tag]


class Section:
    """A heading and the region it owns.

    ``start_line`` and ``end_line`` are 1-based and inclusive. The own region
    runs from the heading line up to (not including) the next heading of any
    level, so nested sub-sections are excluded.
    """

    def __init__(
        self,
        level: int,
        title: str,
        tags: List[str],
        start_line: int,
        parent: Optional["Section"] = None,
    ) -> None:
        self.level = level
        self.title = title
        self.tags = tags
        self.start_line = start_line
        self.end_line = start_line
        self.own_text = ""
        self.parent = parent
        self.children: List["Section"] = []

    def ancestors(self) -> Iterator["Section"]:
        """Yield parent, grandparent, ... up to the top-level heading."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    @property
    def heading_path(self) -> HeadingPath:
        """Titles from the document root down to this section."""
        titles = [self.title] + [a.title for a in self.ancestors()]
        return tuple(reversed(titles))

    def inherited_tags(self) -> List[str]:
        """Own tags followed by ancestor tags, de-duplicated."""
        seen: List[str] = []
        for node in [self, *self.ancestors()]:
            for tag in node.tags:
                if tag not in seen:
                    seen.append(tag)
        return seen

    def __repr__(self) -> str:
        return f"Section(level={self.level}, title={self.title!r}, line={self.start_line})"


class OutlineDocument:
    """A parsed outline document.

    Usage:
        doc = OutlineDocument.load(Path("notes.org"))
        section = doc.section_at(42)
        path = section.heading_path
    """

    def __init__(
        self,
        path: Optional[Path],
        preamble: str,
        sections: List[Section],
        file_tags: List[str],
    ) -> None:
        self.path = path
        self.preamble = preamble
        self.sections = sections  # document order
        self.file_tags = file_tags

    @property
    def directory(self) -> Path:
        """Directory relative links resolve against."""
        if self.path is None:
            return Path.cwd()
        return self.path.parent

    @classmethod
    def load(cls, path: Path) -> "OutlineDocument":
        """Read and parse an outline file.

        Raises:
            FileNotFoundError: If the document doesn't exist.
        """
        path = Path(path).expanduser().resolve()
        text = path.read_text(encoding="utf-8")
        return cls.parse(text, path)

    @classmethod
    def parse(cls, text: str, path: Optional[Path] = None) -> "OutlineDocument":
        """Parse outline text into sections."""
        lines = text.splitlines(keepends=True)
        sections: List[Section] = []
        stack: List[Section] = []
        preamble_lines: List[str] = []
        file_tags: List[str] = []
        current: Optional[Section] = None
        current_lines: List[str] = []

        def close(section: Optional[Section], own: List[str], last_line: int) -> None:
            if section is not None:
                section.own_text = "".join(own)
                section.end_line = last_line

        for number, line in enumerate(lines, start=1):
            bare = line.rstrip("\r\n")
            heading = _HEADING_RE.match(bare) or _EMPTY_HEADING_RE.match(bare)
            if heading is None:
                if current is None:
                    preamble_lines.append(line)
                    tags_match = _FILETAGS_RE.match(bare)
                    if tags_match:
                        file_tags.extend(_split_tags(tags_match.group(1)))
                else:
                    current_lines.append(line)
                continue

            close(current, current_lines, number - 1)

            level = len(heading.group(1))
            if heading.re is _HEADING_RE:
                title = heading.group(2).strip()
                tags = _split_tags(heading.group(3))
            else:
                title, tags = "", []

            while stack and stack[-1].level >= level:
                stack.pop()
            parent = stack[-1] if stack else None

            current = Section(level, title, tags, number, parent)
            if parent is not None:
                parent.children.append(current)
            stack.append(current)
            sections.append(current)
            current_lines = [line]

        close(current, current_lines, len(lines))

        logger.debug(f"Parsed outline {path}: {len(sections)} sections")
        return cls(path, "".join(preamble_lines), sections, file_tags)

    def section_at(self, line: int) -> Optional[Section]:
        """Section whose own region contains a 1-based line, or None in the preamble."""
        found: Optional[Section] = None
        for section in self.sections:
            if section.start_line > line:
                break
            found = section
        return found

    def find_section(self, heading_path: Sequence[str]) -> Optional[Section]:
        """First section whose heading path equals ``heading_path``."""
        wanted = tuple(heading_path)
        for section in self.sections:
            if section.heading_path == wanted:
                return section
        return None
