# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for integration tests.

Provides a representative outline project and a service wired to it.
"""

from pathlib import Path
from typing import Iterator, List

import pytest

from outline_context import hooks
from outline_context.config import Config
from outline_context.service import OutlineContextService
from outline_context.summarizer import Summarizer

RESEARCH_LOG = """#+TITLE: Research log
#+FILETAGS: :research:
Project conventions live in [[file:README.md]].
* Paper
[[file:paper/draft.md][Draft]]
** Methods
[[attachment:dataset.csv]] and [[attachment:figure.png][the figure]]
*** Sampling
[[file:paper/sampling.md::*Overview]]
*** Analysis  :ctx_files:
[[file:paper/analysis.md]]
** Results  :ctx_summary:
[[file:paper/results.md]]
* Scratch
[[file:missing.md]]
"""


class RecordingSummarizer(Summarizer):
    """Deterministic summarizer that records every request."""

    def __init__(self) -> None:
        self.requests: List[str] = []

    async def summarize(self, raw_context: str, system_prompt: str) -> str:
        self.requests.append(raw_context)
        return f"Summary {len(self.requests)}: {raw_context.count('==> ')} files"


@pytest.fixture
def outline_project(tmp_path: Path) -> Path:
    """Create an outline document with linked files.

    Layout:
    - research.org: the outline (see RESEARCH_LOG)
    - README.md: linked from the preamble, so every section sees it
    - paper/*.md: linked with file: links
    - data/dataset.csv, data/figure.png: attachment: links (figure is binary)

    Returns:
        Path to research.org
    """
    project = tmp_path / "project"
    (project / "paper").mkdir(parents=True)
    (project / "data").mkdir()

    (project / "README.md").write_text("# Conventions\nUse metric units.\n")
    (project / "paper" / "draft.md").write_text("Draft: sampling bias matters.\n")
    (project / "paper" / "sampling.md").write_text("* Overview\nStratified by region.\n")
    (project / "paper" / "analysis.md").write_text("Mixed effects model.\n")
    (project / "paper" / "results.md").write_text("Effect size 0.4.\n")
    (project / "data" / "dataset.csv").write_text("region,count\nnorth,12\nsouth,7\n")
    (project / "data" / "figure.png").write_bytes(b"\x89PNG\r\n\x1a\n\0\0\0\rIHDR")

    document = project / "research.org"
    document.write_text(RESEARCH_LOG, encoding="utf-8")
    return document


@pytest.fixture
def summarizer() -> RecordingSummarizer:
    return RecordingSummarizer()


@pytest.fixture
def service(tmp_path: Path, summarizer: RecordingSummarizer) -> Iterator[OutlineContextService]:
    """Service with default configuration and a recording summarizer."""
    saved = list(hooks._transforms)
    svc = OutlineContextService(
        Config(config_path=tmp_path / "missing.yml"),
        summarizer=summarizer,
        session_id="integration",
        data_root=tmp_path / "data_root",
    )
    yield svc
    svc.shutdown()
    hooks._transforms[:] = saved
