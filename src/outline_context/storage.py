# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Storage for cached context entries.

Components:
- ContextStore: Abstract interface for entry storage backends
- OrgFileStore: One Org-formatted cache file per source document

The file store keeps no index: every operation reads the whole file, scans
for the identity line, and writes the whole file back. Entry counts per
document are bounded by outline depth times two variants, so a scan is
cheap. Writes go through a temporary file and os.replace so readers never
see a partially written cache file.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from outline_context.codec import ENTRY_LINE_RE, CodecError, decode_entry, encode_entry
from outline_context.models import CacheEntry, Variant

logger = logging.getLogger(__name__)

HEADER_TEMPLATE = (
    "#+TITLE: Context cache for {source}\n"
    "#+SOURCE: {source}\n"
    "# Generated file. Entries are replaced in place when a section is rebuilt.\n"
)

# (heading_id, start offset, end offset)
Span = Tuple[str, int, int]


class ContextStore(ABC):
    """Abstract storage interface for cache entries.

    At most one entry per heading id exists at any time.
    """

    @abstractmethod
    def ensure(self) -> bool:
        """Create the backing resource if absent.

        Returns:
            True if the resource was created by this call.
        """
        pass

    @abstractmethod
    def find(self, heading_id: str, variant: Optional[Variant] = None) -> Optional[CacheEntry]:
        """Look up an entry by id.

        Args:
            heading_id: Identity of the entry.
            variant: If given, the stored variant must match or the lookup
                is treated as not found.

        Returns:
            The decoded entry, or None if absent or unreadable.
        """
        pass

    @abstractmethod
    def write(self, entry: CacheEntry) -> None:
        """Replace the entry with the same id in place, or append it."""
        pass

    @abstractmethod
    def delete(self, heading_id: str, variant: Optional[Variant] = None) -> bool:
        """Remove an entry.

        Returns:
            True if an entry was removed, False if there was nothing to remove.
        """
        pass

    @abstractmethod
    def list_entries(self) -> List[CacheEntry]:
        """All readable entries in storage order."""
        pass


class OrgFileStore(ContextStore):
    """Cache entries persisted in a single Org file.

    NOT thread-safe: a single writer per cache file is assumed.

    Usage:
        store = OrgFileStore(Path("notes.context-cache.org"), source_name="notes.org")
        store.write(entry)
        entry = store.find(entry.heading_id, Variant.FILES)
    """

    def __init__(self, path: Path, source_name: Optional[str] = None) -> None:
        self.path = Path(path)
        self.source_name = source_name or self.path.name

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def ensure(self) -> bool:
        if self.path.exists():
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_text(HEADER_TEMPLATE.format(source=self.source_name))
        logger.info(f"Created context cache file {self.path}")
        return True

    def find(self, heading_id: str, variant: Optional[Variant] = None) -> Optional[CacheEntry]:
        text = self._read_text()
        for span_id, start, end in self._spans(text):
            if span_id != heading_id:
                continue
            try:
                entry = decode_entry(text[start:end])
            except CodecError as e:
                logger.warning(f"Unreadable cache entry {heading_id} in {self.path}: {e}")
                return None
            if variant is not None and entry.variant is not variant:
                logger.debug(
                    f"Cache entry {heading_id} has variant {entry.variant.value}, "
                    f"expected {variant.value}"
                )
                return None
            return entry
        return None

    def write(self, entry: CacheEntry) -> None:
        self.ensure()
        text = self._read_text()
        encoded = encode_entry(entry)

        matches = [span for span in self._spans(text) if span[0] == entry.heading_id]
        if not matches:
            new_text = text.rstrip("\n") + "\n\n" + encoded + "\n"
            logger.debug(f"Appended cache entry {entry.heading_id} to {self.path}")
        else:
            # Later duplicates can only come from hand edits; drop them
            for _, start, end in reversed(matches[1:]):
                text = self._cut(text, start, end)
            _, start, end = matches[0]
            span = text[start:end]
            body = span.rstrip("\n")
            new_text = text[:start] + encoded + span[len(body) :] + text[end:]
            logger.debug(f"Replaced cache entry {entry.heading_id} in {self.path}")

        self._write_text(new_text)

    def delete(self, heading_id: str, variant: Optional[Variant] = None) -> bool:
        text = self._read_text()
        for span_id, start, end in self._spans(text):
            if span_id != heading_id:
                continue
            if variant is not None:
                try:
                    stored_variant = decode_entry(text[start:end]).variant
                except CodecError:
                    stored_variant = variant  # unreadable entries are still removable
                if stored_variant is not variant:
                    return False
            self._write_text(self._cut(text, start, end))
            logger.debug(f"Deleted cache entry {heading_id} from {self.path}")
            return True
        return False

    def list_entries(self) -> List[CacheEntry]:
        text = self._read_text()
        entries: List[CacheEntry] = []
        for span_id, start, end in self._spans(text):
            try:
                entries.append(decode_entry(text[start:end]))
            except CodecError as e:
                logger.warning(f"Skipping unreadable cache entry {span_id} in {self.path}: {e}")
        return entries

    @staticmethod
    def _spans(text: str) -> List[Span]:
        """Entry spans. Each runs from its identity line to the next one or EOF."""
        matches = list(ENTRY_LINE_RE.finditer(text))
        spans: List[Span] = []
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            spans.append((match.group(1), match.start(), end))
        return spans

    @staticmethod
    def _cut(text: str, start: int, end: int) -> str:
        if end >= len(text):
            return text[:start].rstrip("\n") + "\n"
        return text[:start] + text[end:]

    def _read_text(self) -> str:
        if not self.path.exists():
            return ""
        # newline="" keeps payload bytes (including lone \r) exactly as written
        with open(self.path, encoding="utf-8", newline="") as f:
            return f.read()

    def _write_text(self, text: str) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(tmp, self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
