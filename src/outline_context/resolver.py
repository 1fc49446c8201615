# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Hierarchical resolution of cached context.

Answers "which cached context applies to this section" by walking the
heading path upwards:

1. Try each candidate variant at the exact heading path. An entry is valid
   when every file currently linked from the section still matches its
   stored fingerprint.
2. If the exact entry is stale and auto-update is on, rebuild it
   synchronously and return the fresh entry.
3. Otherwise drop the last title and try again. Entries found at an ancestor
   are validated with subset staleness: only files the ancestor's entry was
   built from are checked, and they are never rebuilt from here.
4. Give up when the path is empty.

Files introduced only at a descendant section are not checked against an
inherited entry and are simply absent from the returned context.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from outline_context.keys import heading_id
from outline_context.models import CacheEntry, HeadingPath, TypePreference, Variant
from outline_context.staleness import staleness, subset_staleness
from outline_context.storage import ContextStore

logger = logging.getLogger(__name__)

# Rebuilds the exact section's entry for a variant; writes to the store itself
RebuildFn = Callable[[Variant], None]


@dataclass
class Resolution:
    """A valid cached context for a section."""

    entry: CacheEntry
    heading_path: HeadingPath  # path the entry was found at
    exact: bool
    rebuilt: bool = False

    @property
    def content(self) -> str:
        return self.entry.content

    @property
    def variant(self) -> Variant:
        return self.entry.variant


class HierarchicalResolver:
    """Resolves a section's context with ancestor fallback.

    The resolver holds no state beyond its store and rebuild callback, so one
    instance can serve any number of resolutions.

    Usage:
        resolver = HierarchicalResolver(store, rebuild=rebuild_fn)
        resolution = resolver.resolve(path, files, TypePreference.NO_PREFERENCE, True)
    """

    def __init__(self, store: ContextStore, rebuild: Optional[RebuildFn] = None) -> None:
        self.store = store
        self.rebuild = rebuild

    def resolve(
        self,
        heading_path: Sequence[str],
        files: Sequence[str],
        preference: TypePreference,
        auto_update: bool,
    ) -> Optional[Resolution]:
        """Find a valid entry for ``heading_path`` or one of its ancestors.

        Args:
            heading_path: Titles from root to the current section.
            files: Files currently linked from the section and its ancestors.
            preference: Which variants may be returned.
            auto_update: Whether a stale exact entry is rebuilt on read.

        Returns:
            The first valid entry found, or None if the chain is exhausted.
        """
        path = tuple(heading_path)
        exact = True

        while path:
            for variant in preference.candidate_order():
                resolution = self._try_variant(path, variant, files, exact, auto_update)
                if resolution is not None:
                    return resolution
            path = path[:-1]
            exact = False

        logger.debug(f"No cached context for {' / '.join(heading_path)}")
        return None

    def _try_variant(
        self,
        path: HeadingPath,
        variant: Variant,
        files: Sequence[str],
        exact: bool,
        auto_update: bool,
    ) -> Optional[Resolution]:
        entry_id = heading_id(path, variant)
        entry = self.store.find(entry_id, variant)
        if entry is None:
            return None

        if exact:
            stale = staleness(files, entry.file_hashes)
        else:
            stale = subset_staleness(entry.file_hashes)
        if not stale:
            logger.debug(
                f"Using {variant.value} context from {' / '.join(path)} "
                f"({'exact' if exact else 'inherited'})"
            )
            return Resolution(entry=entry, heading_path=path, exact=exact)

        if not (exact and auto_update and self.rebuild is not None):
            logger.debug(
                f"Skipping stale {variant.value} context at {' / '.join(path)}: "
                f"{len(stale)} changed files"
            )
            return None

        logger.info(
            f"Rebuilding stale {variant.value} context for {' / '.join(path)} "
            f"({len(stale)} changed files)"
        )
        try:
            self.rebuild(variant)
        except Exception as e:
            logger.warning(f"Rebuild of {variant.value} context for {' / '.join(path)} failed: {e}")
            return None

        fresh = self.store.find(entry_id, variant)
        if fresh is None:
            return None
        return Resolution(entry=fresh, heading_path=path, exact=True, rebuilt=True)
