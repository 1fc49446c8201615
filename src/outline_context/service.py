# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""OutlineContextService - Business logic layer for the outline context cache.

Owns the engine components and implements every command operation:
- build_files / build_summary: populate the cache for a section
- invalidate: delete a section's entries
- status: report presence and validity of a section's entries
- get_context / resolve: read with ancestor fallback and rebuild-on-read
- enable_injection / disable_injection: hook the read path into outgoing
  requests through the process-wide transform registry

Every operation addresses a section with a SectionTarget. The document is
re-parsed for every call; nothing about the document is cached in memory.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import anthropic
import tiktoken

from outline_context.builder import BuildCallback, ContextBuilder
from outline_context.collector import AncestorCollector, type_preference
from outline_context.config import Config
from outline_context.event_logger import (
    EVENT_BUILT,
    EVENT_INVALIDATED,
    EVENT_MISS,
    EVENT_RESOLVED,
    ContextEvent,
    ContextEventLogger,
    EventStatistics,
)
from outline_context.hooks import ContextRequest, register_transform, unregister_transform
from outline_context.keys import default_locate, heading_id
from outline_context.links import LinkExtractor
from outline_context.models import (
    BuildResult,
    BuildStatus,
    ContextUnit,
    EntryStatus,
    Variant,
)
from outline_context.outline import OutlineDocument, Section
from outline_context.resolver import HierarchicalResolver, RebuildFn, Resolution
from outline_context.staleness import staleness
from outline_context.storage import OrgFileStore
from outline_context.summarizer import AnthropicSummarizer, SummarizationError, Summarizer

logger = logging.getLogger(__name__)

LocateFn = Callable[[Path], Path]

INJECTION_HEADER = "Context from files linked in this section:"
INJECTION_SEPARATOR = "---"


class SectionNotFoundError(LookupError):
    """Raised when a target heading path does not exist in the document."""

    pass


@dataclass
class SectionTarget:
    """A section addressed by cursor line or by heading path.

    ``heading_path`` takes precedence when both are given. ``line`` is 1-based.
    """

    document_path: Path
    line: Optional[int] = None
    heading_path: Optional[Sequence[str]] = None

    def __post_init__(self) -> None:
        self.document_path = Path(self.document_path)
        if self.heading_path is not None:
            self.heading_path = tuple(self.heading_path)


class OutlineContextService:
    """Business logic coordinator for the outline context cache.

    Design Constraint: the service is store-agnostic in its algorithms; the
    resolver and builder only see the ContextStore interface. The default
    store is one OrgFileStore per source document, located by ``locate``.
    """

    def __init__(
        self,
        config: Config,
        summarizer: Optional[Summarizer] = None,
        event_logger: Optional[ContextEventLogger] = None,
        locate: Optional[LocateFn] = None,
        session_id: Optional[str] = None,
        data_root: Optional[Path] = None,
    ):
        """Initialize the service with its dependencies.

        Args:
            config: Configuration object
            summarizer: Summarizer for summary entries (default: an
                AnthropicSummarizer created on first use)
            event_logger: Context event logger (default: a new logger when
                event logging is enabled in config)
            locate: Maps a source document to its cache file
                (default: keys.default_locate with the configured suffix)
            session_id: Session ID for event log filenames
            data_root: Root directory for logs (default: ~/.outline_context/)
        """
        self.config = config
        self._summarizer = summarizer
        self._locate: LocateFn = locate or (
            lambda source: default_locate(source, config.cache_file_suffix)
        )

        if event_logger is None and config.enable_event_logging:
            event_logger = ContextEventLogger(session_id=session_id, data_root=data_root)
        self._event_logger = event_logger

        # Lazy initialization to avoid network calls in __init__
        self._token_encoder: Optional[tiktoken.Encoding] = None

        logger.info("OutlineContextService initialized")

    # ------------------------------------------------------------------
    # Command operations
    # ------------------------------------------------------------------

    def build_files(self, target: SectionTarget) -> BuildResult:
        """Build (or replace) the files entry for the target section.

        Raises:
            FileNotFoundError: If the document doesn't exist.
            SectionNotFoundError: If the target heading path doesn't exist.
        """
        document, section = self._resolve_target(target)
        unit = self._collect(document, section)
        store = self.store_for(document)
        existed = store.exists

        result = self._builder(store).build_files(unit)

        self._after_build(document, store.path, existed, result)
        return result

    async def build_summary(
        self, target: SectionTarget, on_complete: Optional[BuildCallback] = None
    ) -> BuildResult:
        """Build (or replace) the summary entry for the target section.

        A failed or timed-out summarization returns a FAILED result and leaves
        any previous entry untouched. ``on_complete`` receives the result in
        every case.

        Raises:
            FileNotFoundError: If the document doesn't exist.
            SectionNotFoundError: If the target heading path doesn't exist.
        """
        document, section = self._resolve_target(target)
        unit = self._collect(document, section)
        store = self.store_for(document)
        existed = store.exists

        builder = self._builder(store, self._get_summarizer())
        result = await builder.build_summary(unit, on_complete)

        self._after_build(document, store.path, existed, result)
        return result

    def invalidate(self, target: SectionTarget, variant: Optional[Variant] = None) -> List[Variant]:
        """Delete the target section's entry for ``variant``, or all variants.

        Returns:
            Variants whose entries were removed.

        Raises:
            FileNotFoundError: If the document doesn't exist.
            SectionNotFoundError: If the target heading path doesn't exist.
        """
        document, section = self._resolve_target(target)
        if section is None:
            return []

        store = self.store_for(document)
        if not store.exists:
            return []

        path = section.heading_path
        variants = [variant] if variant is not None else list(Variant)
        removed = [v for v in variants if store.delete(heading_id(path, v), v)]

        logger.info(
            f"Invalidated {[v.value for v in removed]} context for {' / '.join(path)} "
            f"in {store.path}"
        )
        for v in removed:
            self._log_event(
                EVENT_INVALIDATED,
                document,
                path,
                heading_id=heading_id(path, v),
                variant=v.value,
            )
        return removed

    def status(self, target: SectionTarget) -> List[EntryStatus]:
        """Report each variant's entry for the target section.

        Validity uses the exact staleness check against the files currently
        linked from the section and its ancestors.

        Raises:
            FileNotFoundError: If the document doesn't exist.
            SectionNotFoundError: If the target heading path doesn't exist.
        """
        document, section = self._resolve_target(target)
        if section is None:
            return []

        unit = self._collect(document, section)
        store = self.store_for(document)

        report: List[EntryStatus] = []
        for variant in Variant:
            entry_id = heading_id(unit.heading_path, variant)
            entry = store.find(entry_id, variant) if store.exists else None
            if entry is None:
                report.append(EntryStatus(variant=variant, heading_id=entry_id, present=False))
                continue

            stale = staleness(unit.files, entry.file_hashes)
            report.append(
                EntryStatus(
                    variant=variant,
                    heading_id=entry_id,
                    present=True,
                    valid=not stale,
                    stale_files=stale,
                    file_count=len(entry.file_hashes),
                    token_count=self._count_tokens(entry.content),
                )
            )
        return report

    def resolve(self, target: SectionTarget) -> Optional[Resolution]:
        """Find the context that applies to the target section.

        Falls back to ancestor entries; a stale entry at the section itself is
        rebuilt when auto_update is enabled.

        Raises:
            FileNotFoundError: If the document doesn't exist.
            SectionNotFoundError: If the target heading path doesn't exist.
        """
        document, section = self._resolve_target(target)
        if section is None:
            return None

        unit = self._collect(document, section)
        store = self.store_for(document)
        if not store.exists:
            self._log_event(EVENT_MISS, document, unit.heading_path, detail="no cache file")
            return None

        preference = type_preference(
            unit.tags, self.config.prefer_summary_tag, self.config.prefer_files_tag
        )
        resolver = HierarchicalResolver(store, rebuild=self._make_rebuild(document, unit, store))
        resolution = resolver.resolve(
            unit.heading_path, unit.files, preference, self.config.auto_update
        )

        if resolution is None:
            self._log_event(EVENT_MISS, document, unit.heading_path, detail=preference.value)
            return None

        self._log_event(
            EVENT_RESOLVED,
            document,
            unit.heading_path,
            heading_id=resolution.entry.heading_id,
            variant=resolution.variant.value,
            exact=resolution.exact,
            rebuilt=resolution.rebuilt,
            token_count=self._count_tokens(resolution.content),
            detail=" / ".join(resolution.heading_path),
        )
        return resolution

    def get_context(self, target: SectionTarget) -> Optional[str]:
        """Cached context for the target section, or None.

        Never raises: any failure is logged and treated as "no context".
        """
        try:
            resolution = self.resolve(target)
        except Exception:
            logger.exception(f"Failed to resolve context for {target}")
            return None
        return resolution.content if resolution is not None else None

    # ------------------------------------------------------------------
    # Injection
    # ------------------------------------------------------------------

    def inject_context(self, request: ContextRequest) -> ContextRequest:
        """Request transform: prepend the section's cached context to the prompt."""
        context = self.get_context(
            SectionTarget(request.document_path, request.line, request.heading_path)
        )
        if not context:
            return request

        prompt = (
            f"{INJECTION_HEADER}\n\n{context.rstrip()}\n"
            f"{INJECTION_SEPARATOR}\n\n{request.prompt}"
        )
        return dataclasses.replace(request, prompt=prompt)

    def enable_injection(self) -> None:
        """Register inject_context in the process-wide transform registry."""
        register_transform(self.inject_context)
        logger.info("Context injection enabled")

    def disable_injection(self) -> None:
        """Remove inject_context from the process-wide transform registry."""
        unregister_transform(self.inject_context)
        logger.info("Context injection disabled")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def store_for(self, document: OutlineDocument) -> OrgFileStore:
        """The cache store paired with a source document."""
        if document.path is None:
            raise ValueError("Document has no path; cannot locate its cache file")
        return OrgFileStore(self._locate(document.path), source_name=document.path.name)

    def _resolve_target(self, target: SectionTarget) -> Tuple[OutlineDocument, Optional[Section]]:
        document = OutlineDocument.load(target.document_path)

        if target.heading_path is not None:
            section = document.find_section(target.heading_path)
            if section is None:
                raise SectionNotFoundError(
                    f"No section {' / '.join(target.heading_path)!r} in {document.path}"
                )
            return document, section

        if target.line is None:
            raise ValueError("SectionTarget needs a line or a heading path")
        return document, document.section_at(target.line)

    def _collect(self, document: OutlineDocument, section: Optional[Section]) -> ContextUnit:
        if section is None:
            # Preamble has no heading path and therefore no cache identity
            return ContextUnit(content=document.preamble, files=[], heading_path=())

        extractor = LinkExtractor(
            document.directory, document.directory / self.config.attachment_dir
        )
        return AncestorCollector(document, extractor).collect(section)

    def _builder(
        self, store: OrgFileStore, summarizer: Optional[Summarizer] = None
    ) -> ContextBuilder:
        return ContextBuilder(
            store,
            summarizer=summarizer,
            system_prompt=self.config.summary_system_prompt,
            timeout_seconds=float(self.config.summary_timeout_seconds),
            probe_bytes=self.config.binary_probe_bytes,
            max_file_bytes=self.config.max_file_size_kb * 1024,
        )

    def _get_summarizer(self) -> Optional[Summarizer]:
        """Get or create the summarizer. None if the client can't be created."""
        if self._summarizer is None:
            try:
                self._summarizer = AnthropicSummarizer(
                    model=self.config.summary_model,
                    max_tokens=self.config.summary_max_tokens,
                )
            except anthropic.AnthropicError as e:
                logger.warning(f"Summarizer unavailable: {e}")
                return None
        return self._summarizer

    def _make_rebuild(
        self, document: OutlineDocument, unit: ContextUnit, store: OrgFileStore
    ) -> RebuildFn:
        """Rebuild callback for the resolver. Raises when nothing was written."""

        def rebuild(variant: Variant) -> None:
            if variant is Variant.FILES:
                result = self._builder(store).build_files(unit)
            else:
                try:
                    asyncio.get_running_loop()
                except RuntimeError:
                    builder = self._builder(store, self._get_summarizer())
                    result = asyncio.run(builder.build_summary(unit))
                else:
                    raise SummarizationError(
                        "Summary rebuild is not possible inside a running event loop"
                    )

            self._log_event(
                EVENT_BUILT,
                document,
                unit.heading_path,
                heading_id=result.heading_id,
                variant=variant.value,
                rebuilt=True,
                detail=result.status.value,
            )
            if not result.succeeded:
                raise RuntimeError(f"Rebuild wrote no {variant.value} entry: {result.message}")

        return rebuild

    def _after_build(
        self,
        document: OutlineDocument,
        cache_path: Path,
        existed: bool,
        result: BuildResult,
    ) -> None:
        if not existed and cache_path.exists() and self.config.update_gitignore:
            self._update_gitignore(cache_path)

        self._log_event(
            EVENT_BUILT,
            document,
            result.heading_path,
            heading_id=result.heading_id,
            variant=result.variant.value,
            token_count=self._count_tokens(result.entry.content) if result.entry else 0,
            detail=result.status.value,
        )
        if result.status is BuildStatus.FAILED:
            logger.warning(f"Build of {result.variant.value} context failed: {result.message}")

    @staticmethod
    def _update_gitignore(cache_path: Path) -> None:
        """Append the cache file name to a sibling .gitignore, once."""
        gitignore = cache_path.parent / ".gitignore"
        if not gitignore.is_file():
            return

        text = gitignore.read_text(encoding="utf-8")
        name = cache_path.name
        if name in text.splitlines() or f"/{name}" in text.splitlines():
            return

        prefix = "\n" if text and not text.endswith("\n") else ""
        with open(gitignore, "a", encoding="utf-8") as f:
            f.write(f"{prefix}{name}\n")
        logger.info(f"Added {name} to {gitignore}")

    def _log_event(
        self,
        event_type: str,
        document: Optional[OutlineDocument],
        heading_path: Sequence[str],
        **kwargs: Any,
    ) -> None:
        if self._event_logger is None:
            return
        document_name = str(document.path) if document is not None else ""
        try:
            self._event_logger.log_event(
                ContextEvent.create(event_type, document_name, heading_path, **kwargs)
            )
        except OSError as e:
            logger.warning(f"Failed to write context event: {e}")

    def get_event_statistics(self) -> Optional[EventStatistics]:
        """Statistics for this session's context events, if event logging is on."""
        if self._event_logger is None:
            return None
        return self._event_logger.get_statistics()

    def _get_token_encoder(self) -> Optional[tiktoken.Encoding]:
        """Get or initialize the tiktoken encoder.

        Returns:
            tiktoken.Encoding or None if unavailable.
        """
        if self._token_encoder is None:
            try:
                self._token_encoder = tiktoken.get_encoding("cl100k_base")
            except Exception as e:
                logger.warning(f"Failed to initialize tiktoken encoder: {e}")
                return None
        return self._token_encoder

    def _count_tokens(self, text: str) -> int:
        """Count tokens with cl100k_base, approximating from words if unavailable."""
        encoder = self._get_token_encoder()
        if encoder is not None:
            return len(encoder.encode(text))

        if not text:
            return 0
        # Rough approximation: ~1.3 tokens per word
        return int(len(text.split()) * 1.3)

    def shutdown(self) -> None:
        """Disable injection and close the event log."""
        logger.info("OutlineContextService shutting down...")
        self.disable_injection()
        if self._event_logger is not None:
            self._event_logger.close()
