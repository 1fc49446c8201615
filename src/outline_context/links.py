# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Link extraction from section text.

Recognized forms:
- [[file:PATH]] and [[file:PATH][description]]
- [[attachment:PATH]] and [[attachment:PATH][description]]

A "::" suffix on PATH (search option or description) is discarded. Paths are
expanded to absolute canonical form and kept only when they name an existing,
readable, non-directory file. Anything else is skipped without error.
"""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

LINK_RE = re.compile(r"\[\[(file|attachment):([^\]]+)\](?:\[[^\]]*\])?\]")


def unique_in_order(paths: Iterable[str]) -> List[str]:
    """Drop duplicates, keeping the first occurrence of each path."""
    seen = set()
    result: List[str] = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            result.append(path)
    return result


class LinkExtractor:
    """Pulls normalized file paths out of raw section text.

    Args:
        base_dir: Directory relative ``file:`` links resolve against.
        attachment_dir: Directory relative ``attachment:`` links resolve
            against. Defaults to ``base_dir``.
    """

    def __init__(self, base_dir: Path, attachment_dir: Optional[Path] = None) -> None:
        self.base_dir = Path(base_dir)
        self.attachment_dir = Path(attachment_dir) if attachment_dir is not None else self.base_dir

    def extract(self, text: str) -> List[str]:
        """Return readable file paths linked from ``text``, first-seen order."""
        found: List[str] = []
        for match in LINK_RE.finditer(text):
            kind, target = match.group(1), match.group(2)
            resolved = self._resolve(kind, target)
            if resolved is not None:
                found.append(resolved)
        return unique_in_order(found)

    def _resolve(self, kind: str, target: str) -> Optional[str]:
        raw = target.split("::", 1)[0].strip()
        if not raw:
            return None

        path = Path(raw).expanduser()
        if not path.is_absolute():
            base = self.attachment_dir if kind == "attachment" else self.base_dir
            path = base / path

        try:
            path = path.resolve()
            if not path.is_file() or not os.access(path, os.R_OK):
                logger.debug(f"Skipping link target {raw!r}: not a readable file")
                return None
        except OSError as e:
            logger.debug(f"Skipping link target {raw!r}: {e}")
            return None

        return str(path)
