# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for hierarchical resolution with ancestor fallback."""

import os
from pathlib import Path
from typing import Dict, List
from unittest.mock import Mock

import pytest

from outline_context.keys import heading_id
from outline_context.models import CacheEntry, TypePreference, Variant
from outline_context.resolver import HierarchicalResolver
from outline_context.staleness import fingerprint_files
from outline_context.storage import OrgFileStore


@pytest.fixture
def store(tmp_path: Path) -> OrgFileStore:
    return OrgFileStore(tmp_path / "notes.context-cache.org")


@pytest.fixture
def files(tmp_path: Path) -> Dict[str, str]:
    paths = {}
    for name in ("a", "b", "c"):
        path = tmp_path / f"{name}.txt"
        path.write_text(f"{name} content\n")
        paths[name] = str(path)
    return paths


def put(
    store: OrgFileStore, path: List[str], variant: Variant, files: List[str], content: str
) -> CacheEntry:
    entry = CacheEntry(
        heading_id=heading_id(path, variant),
        variant=variant,
        heading_path=tuple(path),
        file_hashes=fingerprint_files(files),
        content=content,
    )
    store.write(entry)
    return entry


def touch_forward(path: str) -> None:
    st = os.stat(path)
    os.utime(path, (st.st_atime, st.st_mtime + 10))


class TestExactMatch:
    """Resolution at the requested heading path."""

    def test_valid_exact_entry(self, store: OrgFileStore, files: Dict[str, str]) -> None:
        entry = put(store, ["A"], Variant.FILES, [files["a"]], "A files")
        resolver = HierarchicalResolver(store)

        result = resolver.resolve(["A"], [files["a"]], TypePreference.NO_PREFERENCE, False)

        assert result is not None
        assert result.entry == entry
        assert result.content == "A files"
        assert result.exact is True
        assert result.rebuilt is False
        assert result.heading_path == ("A",)

    def test_nothing_cached(self, store: OrgFileStore, files: Dict[str, str]) -> None:
        resolver = HierarchicalResolver(store)
        assert resolver.resolve(["A"], [files["a"]], TypePreference.NO_PREFERENCE, True) is None

    def test_empty_heading_path(self, store: OrgFileStore) -> None:
        resolver = HierarchicalResolver(store)
        assert resolver.resolve([], [], TypePreference.NO_PREFERENCE, True) is None


class TestPreference:
    """Variant dispatch by type preference."""

    def test_no_preference_returns_summary_first(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "raw")
        put(store, ["A"], Variant.SUMMARY, [files["a"]], "short")

        result = HierarchicalResolver(store).resolve(
            ["A"], [files["a"]], TypePreference.NO_PREFERENCE, False
        )

        assert result.variant is Variant.SUMMARY
        assert result.content == "short"

    def test_files_only(self, store: OrgFileStore, files: Dict[str, str]) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "raw")
        put(store, ["A"], Variant.SUMMARY, [files["a"]], "short")

        result = HierarchicalResolver(store).resolve(
            ["A"], [files["a"]], TypePreference.FILES_ONLY, False
        )

        assert result.variant is Variant.FILES

    def test_summary_only_ignores_files_entries(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "raw")
        put(store, ["A", "B"], Variant.FILES, [files["a"]], "raw B")

        result = HierarchicalResolver(store).resolve(
            ["A", "B"], [files["a"]], TypePreference.SUMMARY_ONLY, False
        )

        assert result is None

    def test_stale_summary_falls_back_to_valid_files_entry(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.SUMMARY, [files["a"], files["b"]], "short")
        touch_forward(files["b"])
        put(store, ["A"], Variant.FILES, [files["a"], files["b"]], "raw")

        result = HierarchicalResolver(store).resolve(
            ["A"], [files["a"], files["b"]], TypePreference.NO_PREFERENCE, False
        )

        assert result.variant is Variant.FILES
        assert result.exact is True


class TestAncestorFallback:
    """Fallback from [A, B, C] to [A, B] and above."""

    def test_inherits_from_parent(self, store: OrgFileStore, files: Dict[str, str]) -> None:
        parent = put(store, ["A", "B"], Variant.FILES, [files["a"], files["b"]], "AB")

        result = HierarchicalResolver(store).resolve(
            ["A", "B", "C"],
            [files["a"], files["b"], files["c"]],
            TypePreference.NO_PREFERENCE,
            True,
        )

        assert result is not None
        assert result.entry == parent
        assert result.heading_path == ("A", "B")
        assert result.exact is False

    def test_descendant_only_files_are_ignored(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A", "B"], Variant.FILES, [files["a"]], "AB")
        touch_forward(files["c"])

        result = HierarchicalResolver(store).resolve(
            ["A", "B", "C"], [files["a"], files["c"]], TypePreference.NO_PREFERENCE, False
        )

        assert result is not None
        assert result.content == "AB"

    def test_stale_parent_is_skipped_for_grandparent(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "A")
        put(store, ["A", "B"], Variant.FILES, [files["a"], files["b"]], "AB")
        touch_forward(files["b"])

        rebuild = Mock()
        result = HierarchicalResolver(store, rebuild).resolve(
            ["A", "B", "C"],
            [files["a"], files["b"], files["c"]],
            TypePreference.NO_PREFERENCE,
            True,
        )

        assert result.heading_path == ("A",)
        assert result.content == "A"
        rebuild.assert_not_called()

    def test_all_stale(self, store: OrgFileStore, files: Dict[str, str]) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "A")
        touch_forward(files["a"])

        result = HierarchicalResolver(store).resolve(
            ["A", "B"], [files["a"]], TypePreference.NO_PREFERENCE, True
        )

        assert result is None


class TestRebuildOnRead:
    """Stale exact entries are rebuilt when auto-update is on."""

    def test_stale_exact_entry_is_rebuilt(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "old")
        touch_forward(files["a"])

        def rebuild(variant: Variant) -> None:
            put(store, ["A"], variant, [files["a"]], "fresh")

        spy = Mock(side_effect=rebuild)
        result = HierarchicalResolver(store, spy).resolve(
            ["A"], [files["a"]], TypePreference.NO_PREFERENCE, True
        )

        spy.assert_called_once_with(Variant.FILES)
        assert result.content == "fresh"
        assert result.rebuilt is True
        assert result.exact is True
        assert result.entry.file_hashes == fingerprint_files([files["a"]])

    def test_auto_update_off_falls_through(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "A")
        put(store, ["A", "B"], Variant.FILES, [files["a"], files["b"]], "AB")
        touch_forward(files["b"])

        rebuild = Mock()
        result = HierarchicalResolver(store, rebuild).resolve(
            ["A", "B"], [files["a"], files["b"]], TypePreference.NO_PREFERENCE, False
        )

        rebuild.assert_not_called()
        assert result.heading_path == ("A",)

    def test_failing_rebuild_falls_through(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        put(store, ["A"], Variant.FILES, [files["a"]], "A")
        put(store, ["A", "B"], Variant.FILES, [files["a"], files["b"]], "AB")
        touch_forward(files["b"])

        rebuild = Mock(side_effect=RuntimeError("summarizer down"))
        result = HierarchicalResolver(store, rebuild).resolve(
            ["A", "B"], [files["a"], files["b"]], TypePreference.NO_PREFERENCE, True
        )

        rebuild.assert_called_once_with(Variant.FILES)
        assert result.heading_path == ("A",)
        assert result.rebuilt is False

    def test_rebuild_that_deletes_entry_falls_through(
        self, store: OrgFileStore, files: Dict[str, str]
    ) -> None:
        stale = put(store, ["A"], Variant.FILES, [files["a"]], "A")
        touch_forward(files["a"])

        rebuild = Mock(side_effect=lambda variant: store.delete(stale.heading_id))
        result = HierarchicalResolver(store, rebuild).resolve(
            ["A"], [files["a"]], TypePreference.NO_PREFERENCE, True
        )

        assert result is None
