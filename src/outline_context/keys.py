# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Cache identities and cache file locations."""

import hashlib
from pathlib import Path
from typing import Sequence

from outline_context.models import Variant

DEFAULT_CACHE_SUFFIX = ".context-cache"


def heading_id(heading_path: Sequence[str], variant: Variant) -> str:
    """Stable identity for a (heading path, variant) pair.

    Independent of content, so rebuilding the same section replaces its
    entry in place. Titles are joined with a bare "/", so a title containing
    "/" shares its identity with the deeper path it spells: ("a/b",) and
    ("a", "b") map to the same entry.
    """
    key_input = "/".join(heading_path) + ":" + variant.value
    return hashlib.sha256(key_input.encode("utf-8")).hexdigest()


def default_locate(source_path: Path, suffix: str = DEFAULT_CACHE_SUFFIX) -> Path:
    """Cache file for a source document: notes.org -> notes.context-cache.org"""
    source_path = Path(source_path)
    return source_path.with_name(f"{source_path.stem}{suffix}{source_path.suffix}")
