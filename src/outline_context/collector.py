# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Ancestor collection.

Walks a section and its ancestors, aggregating their own text and links into
one logical unit per heading path. Deeply nested sections therefore see the
links of every heading above them, and the document preamble as well.
"""

import logging
from typing import Iterable, List

from outline_context.links import LinkExtractor, unique_in_order
from outline_context.models import ContextUnit, TypePreference
from outline_context.outline import OutlineDocument, Section

logger = logging.getLogger(__name__)


class AncestorCollector:
    """Aggregates text, links and tags across a section's ancestor chain.

    Usage:
        collector = AncestorCollector(document, LinkExtractor(document.directory))
        unit = collector.collect(section)
    """

    def __init__(self, document: OutlineDocument, extractor: LinkExtractor) -> None:
        self.document = document
        self.extractor = extractor

    def collect(self, section: Section) -> ContextUnit:
        """Collect the unit for ``section``.

        ``content`` joins the captured texts root-to-current with a newline;
        ``files`` is the de-duplicated union of their links in the same order.
        """
        chain = [section, *section.ancestors()]
        chain.reverse()

        bodies: List[str] = []
        if self.document.preamble.strip():
            bodies.append(self.document.preamble)
        bodies.extend(node.own_text for node in chain)

        files = unique_in_order(path for body in bodies for path in self.extractor.extract(body))

        tags = list(self.document.file_tags)
        for tag in section.inherited_tags():
            if tag not in tags:
                tags.append(tag)

        unit = ContextUnit(
            content="\n".join(bodies),
            files=files,
            heading_path=section.heading_path,
            tags=tags,
        )
        logger.debug(
            f"Collected {' / '.join(unit.heading_path)}: "
            f"{len(bodies)} bodies, {len(files)} files, tags={tags}"
        )
        return unit


def type_preference(tags: Iterable[str], summary_tag: str, files_tag: str) -> TypePreference:
    """Derive the variant preference from the tags visible at a section.

    The summary tag wins over the files tag when both are present.
    """
    tag_set = set(tags)
    if summary_tag in tag_set:
        return TypePreference.SUMMARY_ONLY
    if files_tag in tag_set:
        return TypePreference.FILES_ONLY
    return TypePreference.NO_PREFERENCE
