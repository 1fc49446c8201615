# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for OutlineContextService."""

import asyncio
import os
from pathlib import Path
from typing import Iterator, List
from unittest.mock import Mock

import pytest

from outline_context import hooks
from outline_context.config import Config
from outline_context.hooks import ContextRequest, apply_transforms
from outline_context.keys import heading_id
from outline_context.models import BuildStatus, Variant
from outline_context.service import (
    INJECTION_HEADER,
    INJECTION_SEPARATOR,
    OutlineContextService,
    SectionNotFoundError,
    SectionTarget,
)
from outline_context.staleness import fingerprint
from outline_context.summarizer import Summarizer

NOTES = """#+TITLE: Notes
* Projects
[[file:docs/overview.txt]]
** Backend
[[file:docs/api.txt][API notes]]
*** Storage
[[file:docs/storage.txt]]
** Frontend  :ctx_summary:
[[file:docs/ui.txt]]
* Empty
No links here.
"""


class CountingSummarizer(Summarizer):
    """Summarizer that numbers its summaries."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def summarize(self, raw_context: str, system_prompt: str) -> str:
        self.calls.append(raw_context)
        return f"summary #{len(self.calls)}"


@pytest.fixture(autouse=True)
def clean_registry() -> Iterator[None]:
    saved = list(hooks._transforms)
    hooks._transforms.clear()
    yield
    hooks._transforms[:] = saved


@pytest.fixture
def notes(tmp_path: Path) -> Path:
    docs = tmp_path / "docs"
    docs.mkdir()
    for name in ("overview", "api", "storage", "ui"):
        (docs / f"{name}.txt").write_text(f"{name} details\n")
    path = tmp_path / "notes.org"
    path.write_text(NOTES, encoding="utf-8")
    return path


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(config_path=tmp_path / "missing.yml")


@pytest.fixture
def summarizer() -> CountingSummarizer:
    return CountingSummarizer()


@pytest.fixture
def service(
    tmp_path: Path, config: Config, summarizer: CountingSummarizer
) -> Iterator[OutlineContextService]:
    svc = OutlineContextService(
        config, summarizer=summarizer, session_id="test", data_root=tmp_path / "data"
    )
    yield svc
    svc.shutdown()


def cache_path(notes: Path) -> Path:
    return notes.with_name("notes.context-cache.org")


def touch_forward(path: Path) -> None:
    st = path.stat()
    os.utime(path, (st.st_atime, st.st_mtime + 10))


BACKEND = ("Projects", "Backend")
STORAGE = ("Projects", "Backend", "Storage")


class TestBuildFiles:
    """Tests for build_files."""

    def test_build_by_heading_path(self, service: OutlineContextService, notes: Path) -> None:
        result = service.build_files(SectionTarget(notes, heading_path=BACKEND))

        assert result.status is BuildStatus.BUILT
        assert cache_path(notes).exists()
        docs = notes.parent.resolve() / "docs"
        assert list(result.entry.file_hashes) == [
            str(docs / "overview.txt"),
            str(docs / "api.txt"),
        ]

    def test_build_by_line(self, service: OutlineContextService, notes: Path) -> None:
        result = service.build_files(SectionTarget(notes, line=7))

        assert result.heading_path == STORAGE
        assert len(result.entry.file_hashes) == 3

    def test_preamble_line(self, service: OutlineContextService, notes: Path) -> None:
        result = service.build_files(SectionTarget(notes, line=1))

        assert result.status is BuildStatus.NO_SECTION
        assert not cache_path(notes).exists()

    def test_section_without_links(self, service: OutlineContextService, notes: Path) -> None:
        result = service.build_files(SectionTarget(notes, heading_path=["Empty"]))

        assert result.status is BuildStatus.NO_LINKS
        assert not cache_path(notes).exists()

    def test_unknown_heading_path(self, service: OutlineContextService, notes: Path) -> None:
        with pytest.raises(SectionNotFoundError):
            service.build_files(SectionTarget(notes, heading_path=["Nope"]))

    def test_target_needs_line_or_path(self, service: OutlineContextService, notes: Path) -> None:
        with pytest.raises(ValueError):
            service.build_files(SectionTarget(notes))

    def test_missing_document(self, service: OutlineContextService, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            service.build_files(SectionTarget(tmp_path / "missing.org", line=1))

    def test_custom_locate(self, tmp_path: Path, config: Config, notes: Path) -> None:
        target_dir = tmp_path / "caches"
        svc = OutlineContextService(
            config,
            locate=lambda source: target_dir / f"{source.stem}.org",
            data_root=tmp_path / "data",
        )

        svc.build_files(SectionTarget(notes, heading_path=BACKEND))

        assert (target_dir / "notes.org").exists()
        assert not cache_path(notes).exists()
        svc.shutdown()


class TestBuildSummary:
    """Tests for build_summary."""

    @pytest.mark.asyncio
    async def test_builds_summary(
        self,
        service: OutlineContextService,
        notes: Path,
        summarizer: CountingSummarizer,
    ) -> None:
        callback = Mock()

        result = await service.build_summary(
            SectionTarget(notes, heading_path=BACKEND), on_complete=callback
        )

        assert result.status is BuildStatus.BUILT
        assert result.entry.content == "summary #1"
        callback.assert_called_once_with(result)
        assert "api details" in summarizer.calls[0]
        assert "==> " in summarizer.calls[0]


class TestGetContext:
    """Tests for get_context and resolve."""

    def test_exact_context(self, service: OutlineContextService, notes: Path) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))

        context = service.get_context(SectionTarget(notes, line=5))

        assert "overview details" in context
        assert "api details" in context

    def test_inherited_context(self, service: OutlineContextService, notes: Path) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))

        resolution = service.resolve(SectionTarget(notes, heading_path=STORAGE))

        assert resolution.heading_path == BACKEND
        assert resolution.exact is False
        assert "storage details" not in resolution.content

    def test_summary_preferred(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        service.build_files(target)
        asyncio.run(service.build_summary(target))

        assert service.get_context(target) == "summary #1"

    def test_summary_tag_excludes_files_entries(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        target = SectionTarget(notes, heading_path=["Projects", "Frontend"])
        service.build_files(target)

        assert service.get_context(target) is None

    def test_no_cache_file(self, service: OutlineContextService, notes: Path) -> None:
        assert service.get_context(SectionTarget(notes, heading_path=BACKEND)) is None
        assert not cache_path(notes).exists()

    def test_never_raises(self, service: OutlineContextService, tmp_path: Path) -> None:
        assert service.get_context(SectionTarget(tmp_path / "missing.org", line=3)) is None
        assert service.get_context(SectionTarget(tmp_path / "x.org")) is None

    def test_preamble_has_no_context(self, service: OutlineContextService, notes: Path) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))
        assert service.get_context(SectionTarget(notes, line=1)) is None

    def test_stale_files_entry_is_rebuilt(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        service.build_files(target)
        api = notes.parent / "docs" / "api.txt"
        api.write_text("api details, revised\n")

        resolution = service.resolve(target)

        assert resolution.rebuilt is True
        assert "revised" in resolution.content
        assert resolution.entry.file_hashes[str(api.resolve())] == fingerprint(str(api.resolve()))

    def test_auto_update_disabled(self, tmp_path: Path, notes: Path) -> None:
        config_path = tmp_path / "config.yml"
        config_path.write_text("auto_update: false\n")
        svc = OutlineContextService(Config(config_path), data_root=tmp_path / "data")
        target = SectionTarget(notes, heading_path=BACKEND)
        svc.build_files(target)
        touch_forward(notes.parent / "docs" / "api.txt")

        assert svc.get_context(target) is None
        svc.shutdown()

    def test_stale_summary_rebuilt_outside_event_loop(
        self,
        service: OutlineContextService,
        notes: Path,
        summarizer: CountingSummarizer,
    ) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        asyncio.run(service.build_summary(target))
        touch_forward(notes.parent / "docs" / "overview.txt")

        assert service.get_context(target) == "summary #2"
        assert len(summarizer.calls) == 2

    @pytest.mark.asyncio
    async def test_stale_summary_inside_event_loop_falls_back_to_files(
        self,
        service: OutlineContextService,
        notes: Path,
        summarizer: CountingSummarizer,
    ) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        await service.build_summary(target)
        touch_forward(notes.parent / "docs" / "api.txt")
        service.build_files(target)

        resolution = service.resolve(target)

        assert resolution.variant is Variant.FILES
        assert resolution.rebuilt is False
        assert len(summarizer.calls) == 1


class TestInvalidateAndStatus:
    """Tests for invalidate and status."""

    def test_invalidate_one_variant_then_all(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        service.build_files(target)
        asyncio.run(service.build_summary(target))

        assert service.invalidate(target, Variant.FILES) == [Variant.FILES]
        assert service.invalidate(target) == [Variant.SUMMARY]
        assert service.invalidate(target) == []
        assert cache_path(notes).exists()

    def test_invalidate_without_cache_file(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        assert service.invalidate(SectionTarget(notes, heading_path=BACKEND)) == []
        assert not cache_path(notes).exists()

    def test_invalidate_does_not_touch_ancestors(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))
        service.build_files(SectionTarget(notes, heading_path=STORAGE))

        service.invalidate(SectionTarget(notes, heading_path=STORAGE))

        resolution = service.resolve(SectionTarget(notes, heading_path=STORAGE))
        assert resolution.heading_path == BACKEND

    def test_status(self, service: OutlineContextService, notes: Path) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        service.build_files(target)

        files_status, summary_status = service.status(target)

        assert files_status.variant is Variant.FILES
        assert files_status.present and files_status.valid
        assert files_status.file_count == 2
        assert files_status.token_count > 0
        assert files_status.heading_id == heading_id(BACKEND, Variant.FILES)
        assert summary_status.variant is Variant.SUMMARY
        assert not summary_status.present

    def test_status_reports_stale_files(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        target = SectionTarget(notes, heading_path=BACKEND)
        service.build_files(target)
        api = notes.parent / "docs" / "api.txt"
        touch_forward(api)

        files_status = service.status(target)[0]

        assert files_status.valid is False
        assert files_status.stale_files == [str(api.resolve())]

    def test_status_in_preamble(self, service: OutlineContextService, notes: Path) -> None:
        assert service.status(SectionTarget(notes, line=1)) == []


class TestInjection:
    """Tests for the request transform."""

    def test_inject_context_prepends_header(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))

        request = service.inject_context(ContextRequest("Explain the API", notes, line=5))

        assert request.prompt.startswith(INJECTION_HEADER)
        assert f"\n{INJECTION_SEPARATOR}\n\nExplain the API" in request.prompt
        assert "api details" in request.prompt

    def test_no_context_leaves_request_alone(
        self, service: OutlineContextService, notes: Path
    ) -> None:
        request = ContextRequest("Explain", notes, line=5)
        assert service.inject_context(request) is request

    def test_enable_and_disable(self, service: OutlineContextService, notes: Path) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))
        request = ContextRequest("Explain", notes, heading_path=BACKEND)

        service.enable_injection()
        service.enable_injection()
        assert apply_transforms(request).prompt.startswith(INJECTION_HEADER)
        assert len(hooks.registered_transforms()) == 1

        service.disable_injection()
        assert apply_transforms(request).prompt == "Explain"


class TestGitignore:
    """Tests for .gitignore bookkeeping."""

    def make_service(self, tmp_path: Path, enabled: bool) -> OutlineContextService:
        config_path = tmp_path / "config.yml"
        config_path.write_text(f"update_gitignore: {'true' if enabled else 'false'}\n")
        return OutlineContextService(Config(config_path), data_root=tmp_path / "data")

    def test_cache_file_added_once(self, tmp_path: Path, notes: Path) -> None:
        gitignore = notes.parent / ".gitignore"
        gitignore.write_text("*.tmp")
        svc = self.make_service(tmp_path, enabled=True)

        svc.build_files(SectionTarget(notes, heading_path=BACKEND))
        svc.build_files(SectionTarget(notes, heading_path=STORAGE))

        assert gitignore.read_text() == "*.tmp\nnotes.context-cache.org\n"
        svc.shutdown()

    def test_existing_entry_not_duplicated(self, tmp_path: Path, notes: Path) -> None:
        gitignore = notes.parent / ".gitignore"
        gitignore.write_text("/notes.context-cache.org\n")
        svc = self.make_service(tmp_path, enabled=True)

        svc.build_files(SectionTarget(notes, heading_path=BACKEND))

        assert gitignore.read_text() == "/notes.context-cache.org\n"
        svc.shutdown()

    def test_disabled(self, tmp_path: Path, notes: Path) -> None:
        gitignore = notes.parent / ".gitignore"
        gitignore.write_text("*.tmp\n")
        svc = self.make_service(tmp_path, enabled=False)

        svc.build_files(SectionTarget(notes, heading_path=BACKEND))

        assert gitignore.read_text() == "*.tmp\n"
        svc.shutdown()

    def test_no_gitignore_is_not_created(self, tmp_path: Path, notes: Path) -> None:
        svc = self.make_service(tmp_path, enabled=True)
        svc.build_files(SectionTarget(notes, heading_path=BACKEND))
        assert not (notes.parent / ".gitignore").exists()
        svc.shutdown()


class TestEventLogging:
    """Tests for context event logging from the service."""

    def test_events_are_recorded(self, service: OutlineContextService, notes: Path) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))
        service.get_context(SectionTarget(notes, heading_path=BACKEND))
        service.get_context(SectionTarget(notes, heading_path=STORAGE))
        service.get_context(SectionTarget(notes, heading_path=["Empty"]))

        stats = service.get_event_statistics()

        assert stats.exact_hits == 1
        assert stats.inherited_hits == 1
        assert stats.misses == 1
        assert stats.by_event_type["context_built"] == 1

    def test_event_log_written_under_data_root(
        self, service: OutlineContextService, notes: Path, tmp_path: Path
    ) -> None:
        service.build_files(SectionTarget(notes, heading_path=BACKEND))
        assert list((tmp_path / "data" / "events").glob("*-test.jsonl"))

    def test_event_logging_disabled(self, tmp_path: Path, notes: Path) -> None:
        config_path = tmp_path / "config.yml"
        config_path.write_text("enable_event_logging: false\n")
        svc = OutlineContextService(Config(config_path), data_root=tmp_path / "data")

        svc.build_files(SectionTarget(notes, heading_path=BACKEND))

        assert svc.get_event_statistics() is None
        assert not (tmp_path / "data").exists()
        svc.shutdown()
