# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core data models for the outline context cache.

This module defines the data structures shared by every layer:
- Variant: Which flavour of context an entry holds (files or summary)
- TypePreference: Which variants a resolution is allowed to return
- CacheEntry: One persisted context record for a (heading path, variant) pair
- ContextUnit: Text, links and heading path gathered for a section
- BuildStatus / BuildResult: Outcome of a build command
- EntryStatus: Per-variant status report for a section

Entries use JSON-compatible primitives so they can be logged and returned
from MCP tools without further conversion.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

HeadingPath = Tuple[str, ...]


class Variant(Enum):
    """Cache variants. Orthogonal to the heading path."""

    FILES = "files"  # Verbatim content of the linked files
    SUMMARY = "summary"  # Externally generated condensed content

    @classmethod
    def parse(cls, value: str) -> "Variant":
        """Parse a variant name, raising ValueError for unknown names."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown cache variant: {value!r}") from None


class TypePreference(Enum):
    """Variant preference derived from section tags.

    Computed once per resolution call and threaded through as a parameter.
    """

    SUMMARY_ONLY = "summary_only"
    FILES_ONLY = "files_only"
    NO_PREFERENCE = "no_preference"

    def candidate_order(self) -> List[Variant]:
        """Variants to try, in order. Summary wins when there is no preference."""
        if self is TypePreference.SUMMARY_ONLY:
            return [Variant.SUMMARY]
        if self is TypePreference.FILES_ONLY:
            return [Variant.FILES]
        return [Variant.SUMMARY, Variant.FILES]


@dataclass
class CacheEntry:
    """A persisted context record.

    The fingerprint map reflects exactly the file set used to produce
    ``content`` at the time of the last successful build.
    """

    heading_id: str
    variant: Variant
    heading_path: HeadingPath
    file_hashes: Dict[str, str]  # absolute path -> fingerprint at build time
    content: str

    def __post_init__(self) -> None:
        self.heading_path = tuple(self.heading_path)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "heading_id": self.heading_id,
            "variant": self.variant.value,
            "heading_path": list(self.heading_path),
            "file_hashes": dict(self.file_hashes),
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Deserialize from JSON-compatible dict.

        Raises:
            KeyError: If required fields are missing from data dict.
        """
        return cls(
            heading_id=data["heading_id"],
            variant=Variant(data["variant"]),
            heading_path=tuple(data["heading_path"]),
            file_hashes=dict(data["file_hashes"]),
            content=data["content"],
        )


@dataclass
class ContextUnit:
    """One logical unit per heading path, produced by the ancestor collector."""

    content: str
    files: List[str]
    heading_path: HeadingPath
    tags: List[str] = field(default_factory=list)


class BuildStatus(Enum):
    """Outcome of a build command."""

    BUILT = "built"
    NO_LINKS = "no_links"  # Nothing to cache; a notice, not an error
    NO_SECTION = "no_section"  # Target is outside any heading
    FAILED = "failed"  # Summarization failed; nothing was written


@dataclass
class BuildResult:
    """Result of building (or attempting to build) a cache entry."""

    status: BuildStatus
    variant: Variant
    heading_path: HeadingPath = ()
    heading_id: Optional[str] = None
    entry: Optional[CacheEntry] = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is BuildStatus.BUILT

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for MCP response."""
        result: Dict[str, Any] = {
            "status": self.status.value,
            "variant": self.variant.value,
            "heading_path": list(self.heading_path),
            "message": self.message,
        }
        if self.heading_id is not None:
            result["heading_id"] = self.heading_id
        if self.entry is not None:
            result["files"] = sorted(self.entry.file_hashes)
        return result


@dataclass
class EntryStatus:
    """Status of one variant's entry for a section."""

    variant: Variant
    heading_id: str
    present: bool
    valid: bool = False
    stale_files: List[str] = field(default_factory=list)
    file_count: int = 0
    token_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for MCP response."""
        return {
            "variant": self.variant.value,
            "heading_id": self.heading_id,
            "present": self.present,
            "valid": self.valid,
            "stale_files": list(self.stale_files),
            "file_count": self.file_count,
            "token_count": self.token_count,
        }
