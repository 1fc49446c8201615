# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""External summarizer interface and the Anthropic-backed implementation.

The cache engine only needs ``await summarizer.summarize(raw, system_prompt)``
returning the summary text, or raising SummarizationError. Anything else the
client raises is also treated as a failed summarization by the builder.
"""

import logging
from typing import Any, Optional

import anthropic

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5-20251001"

DEFAULT_SYSTEM_PROMPT = """You condense reference material for later use as background context.
You receive the contents of several files linked from a section of a notes outline.
Write a dense summary that keeps:
1. The purpose of each file and how the files relate to each other
2. Key definitions, interfaces, names, numbers and decisions
3. Anything a reader would need to answer detailed questions without the files
Refer to files by path. Output only the summary text."""


class SummarizationError(Exception):
    """Raised when the summarizer cannot produce a summary."""

    pass


class Summarizer:
    """Interface for summarizers."""

    async def summarize(self, raw_context: str, system_prompt: str) -> str:
        """Return a condensed version of ``raw_context``.

        Raises:
            SummarizationError: If no summary could be produced.
        """
        raise NotImplementedError


class AnthropicSummarizer(Summarizer):
    """Summarizer using the Anthropic Messages API.

    Usage:
        summarizer = AnthropicSummarizer(model=config.summary_model)
        text = await summarizer.summarize(raw, config.summary_system_prompt)
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
    ) -> None:
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens

    async def summarize(self, raw_context: str, system_prompt: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": raw_context}],
            )
        except anthropic.APIError as e:
            raise SummarizationError(f"Summarization request failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        ).strip()
        if not text:
            raise SummarizationError("Summarizer returned an empty response")

        logger.debug(
            f"Summarized {len(raw_context)} chars into {len(text)} chars "
            f"(input_tokens={response.usage.input_tokens}, "
            f"output_tokens={response.usage.output_tokens})"
        )
        return text
