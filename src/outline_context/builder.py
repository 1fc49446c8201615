# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Building cache entries from collected context units.

- assemble_raw_context(): concatenates the readable text files of a unit
- ContextBuilder.build_files(): stores the raw concatenation
- ContextBuilder.build_summary(): sends the raw concatenation to the
  summarizer and stores the result

Fingerprints are captured before any file is read, so a file modified while
a build is running shows up as stale on the next read.

Entries are replaced only on success: a failed or timed-out summarization
leaves the previous entry untouched.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from outline_context.keys import heading_id
from outline_context.models import BuildResult, BuildStatus, CacheEntry, ContextUnit, Variant
from outline_context.staleness import fingerprint_files
from outline_context.storage import ContextStore
from outline_context.summarizer import SummarizationError, Summarizer

logger = logging.getLogger(__name__)

DEFAULT_BINARY_PROBE_BYTES = 1024
DEFAULT_MAX_FILE_BYTES = 1024 * 1024

BuildCallback = Callable[[BuildResult], None]


def is_binary(path: str, probe_bytes: int = DEFAULT_BINARY_PROBE_BYTES) -> bool:
    """True if a null byte appears in the first ``probe_bytes`` of the file."""
    with open(path, "rb") as f:
        return b"\0" in f.read(probe_bytes)


def assemble_raw_context(
    files: Sequence[str],
    probe_bytes: int = DEFAULT_BINARY_PROBE_BYTES,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> Tuple[str, List[str]]:
    """Concatenate the text of ``files``.

    Missing, unreadable, binary and oversized files are skipped.

    Returns:
        (raw context, files actually included)
    """
    parts: List[str] = []
    included: List[str] = []

    for path in files:
        try:
            size = Path(path).stat().st_size
            if size > max_file_bytes:
                logger.warning(f"Skipping {path}: {size}B exceeds {max_file_bytes}B limit")
                continue
            if is_binary(path, probe_bytes):
                logger.debug(f"Skipping binary file {path}")
                continue
            with open(path, encoding="utf-8", errors="replace") as f:
                text = f.read()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {path}: {e}")
            continue

        if not text.endswith("\n"):
            text += "\n"
        parts.append(f"==> {path} <==\n{text}")
        included.append(path)

    return "\n".join(parts), included


class ContextBuilder:
    """Builds and stores entries for context units.

    Args:
        store: Store that receives the built entries.
        summarizer: Summarizer for the summary variant. May be None when only
            file entries are built.
        system_prompt: System prompt sent with every summarization.
        timeout_seconds: Upper bound on one summarization call.
        probe_bytes: Size of the binary-detection window.
        max_file_bytes: Files larger than this are left out of the content.
    """

    def __init__(
        self,
        store: ContextStore,
        summarizer: Optional[Summarizer] = None,
        system_prompt: str = "",
        timeout_seconds: float = 120.0,
        probe_bytes: int = DEFAULT_BINARY_PROBE_BYTES,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> None:
        self.store = store
        self.summarizer = summarizer
        self.system_prompt = system_prompt
        self.timeout_seconds = timeout_seconds
        self.probe_bytes = probe_bytes
        self.max_file_bytes = max_file_bytes

    def build_files(self, unit: ContextUnit) -> BuildResult:
        """Store the verbatim content of the unit's files."""
        result = self._precheck(unit, Variant.FILES)
        if result is not None:
            return result

        file_hashes = fingerprint_files(unit.files)
        raw, included = assemble_raw_context(unit.files, self.probe_bytes, self.max_file_bytes)
        entry = CacheEntry(
            heading_id=heading_id(unit.heading_path, Variant.FILES),
            variant=Variant.FILES,
            heading_path=unit.heading_path,
            file_hashes=file_hashes,
            content=raw,
        )
        self.store.write(entry)

        logger.info(
            f"Built files context for {' / '.join(unit.heading_path)}: "
            f"{len(included)}/{len(unit.files)} files included"
        )
        return BuildResult(
            status=BuildStatus.BUILT,
            variant=Variant.FILES,
            heading_path=unit.heading_path,
            heading_id=entry.heading_id,
            entry=entry,
            message=f"Cached {len(included)} of {len(unit.files)} linked files",
        )

    async def build_summary(
        self, unit: ContextUnit, on_complete: Optional[BuildCallback] = None
    ) -> BuildResult:
        """Summarize the unit's files and store the summary.

        ``on_complete`` is called with the result whether or not the build
        succeeded.
        """
        result = self._precheck(unit, Variant.SUMMARY)
        if result is None:
            result = await self._summarize(unit)
        if on_complete is not None:
            on_complete(result)
        return result

    async def _summarize(self, unit: ContextUnit) -> BuildResult:
        entry_id = heading_id(unit.heading_path, Variant.SUMMARY)
        label = " / ".join(unit.heading_path)

        def failed(message: str) -> BuildResult:
            logger.warning(f"No summary produced for {label}: {message}")
            return BuildResult(
                status=BuildStatus.FAILED,
                variant=Variant.SUMMARY,
                heading_path=unit.heading_path,
                heading_id=entry_id,
                message=message,
            )

        if self.summarizer is None:
            return failed("No summarizer configured")

        file_hashes = fingerprint_files(unit.files)
        raw, included = assemble_raw_context(unit.files, self.probe_bytes, self.max_file_bytes)
        if not included:
            return failed("None of the linked files contain readable text")

        try:
            summary = await asyncio.wait_for(
                self.summarizer.summarize(raw, self.system_prompt),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return failed(f"Summarization timed out after {self.timeout_seconds}s")
        except SummarizationError as e:
            return failed(str(e))
        except Exception as e:
            logger.exception(f"Summarizer raised unexpectedly for {label}")
            return failed(f"Summarizer error: {e}")

        if not summary or not summary.strip():
            return failed("Summarizer returned empty text")

        entry = CacheEntry(
            heading_id=entry_id,
            variant=Variant.SUMMARY,
            heading_path=unit.heading_path,
            file_hashes=file_hashes,
            content=summary,
        )
        self.store.write(entry)

        logger.info(f"Built summary context for {label} from {len(included)} files")
        return BuildResult(
            status=BuildStatus.BUILT,
            variant=Variant.SUMMARY,
            heading_path=unit.heading_path,
            heading_id=entry_id,
            entry=entry,
            message=f"Summarized {len(included)} of {len(unit.files)} linked files",
        )

    def _precheck(self, unit: ContextUnit, variant: Variant) -> Optional[BuildResult]:
        if not unit.heading_path:
            return BuildResult(
                status=BuildStatus.NO_SECTION,
                variant=variant,
                message="Not inside a section; nothing to cache",
            )
        if not unit.files:
            logger.info(f"No file links found for {' / '.join(unit.heading_path)}")
            return BuildResult(
                status=BuildStatus.NO_LINKS,
                variant=variant,
                heading_path=unit.heading_path,
                heading_id=heading_id(unit.heading_path, variant),
                message="No file links found in this section or its ancestors",
            )
        return None
