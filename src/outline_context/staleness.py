# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Fingerprint-based staleness detection.

A fingerprint is "<mtime seconds>:<size>". It is a cheap proxy for file
identity, not a content hash: a change that keeps both the size and the
modification second is missed, which is an accepted limitation.

Two checks are provided:
- staleness(): exact check for a section's own entry. Every file currently
  linked from the section must match the stored fingerprint; a file missing
  from the stored map counts as changed.
- subset_staleness(): relaxed check for an inherited ancestor entry. Only the
  files the entry was built from are re-fingerprinted.
"""

import logging
import os
from typing import Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)


def fingerprint(path: str) -> Optional[str]:
    """Fingerprint of a file, or None if it cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    return f"{int(st.st_mtime)}:{st.st_size}"


def fingerprint_files(paths: Iterable[str]) -> Dict[str, str]:
    """Fingerprints for every path that currently exists."""
    result: Dict[str, str] = {}
    for path in paths:
        fp = fingerprint(path)
        if fp is None:
            logger.debug(f"Not fingerprinting missing file {path}")
            continue
        result[path] = fp
    return result


def staleness(current_files: Iterable[str], stored: Mapping[str, str]) -> List[str]:
    """Current files whose live fingerprint differs from the stored one."""
    changed = [path for path in current_files if fingerprint(path) != stored.get(path)]
    if changed:
        logger.debug(f"Stale files: {changed}")
    return changed


def subset_staleness(stored: Mapping[str, str]) -> List[str]:
    """Stored files whose live fingerprint no longer matches.

    Files linked from the live section but absent from ``stored`` are ignored.
    """
    changed = [path for path, fp in stored.items() if fingerprint(path) != fp]
    if changed:
        logger.debug(f"Stale inherited files: {changed}")
    return changed
