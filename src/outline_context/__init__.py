# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Outline Context Cache: hierarchical context caching for outline documents."""

from .builder import ContextBuilder, assemble_raw_context
from .codec import CodecError, decode_entry, encode_entry
from .collector import AncestorCollector, type_preference
from .config import Config, ConfigurationError
from .event_logger import (
    ContextEvent,
    ContextEventLogger,
    EventStatistics,
    get_recent_events,
    read_events_from_log,
)
from .hooks import (
    ContextRequest,
    apply_transforms,
    register_transform,
    registered_transforms,
    unregister_transform,
)
from .keys import default_locate, heading_id
from .links import LinkExtractor
from .models import (
    BuildResult,
    BuildStatus,
    CacheEntry,
    ContextUnit,
    EntryStatus,
    TypePreference,
    Variant,
)
from .outline import OutlineDocument, Section
from .resolver import HierarchicalResolver, Resolution
from .service import OutlineContextService, SectionNotFoundError, SectionTarget
from .staleness import fingerprint, staleness, subset_staleness
from .storage import ContextStore, OrgFileStore
from .summarizer import AnthropicSummarizer, SummarizationError, Summarizer

__version__ = "0.1.0"

__all__ = [
    "AncestorCollector",
    "AnthropicSummarizer",
    "BuildResult",
    "BuildStatus",
    "CacheEntry",
    "CodecError",
    "Config",
    "ConfigurationError",
    "ContextBuilder",
    "ContextEvent",
    "ContextEventLogger",
    "ContextRequest",
    "ContextStore",
    "ContextUnit",
    "EntryStatus",
    "EventStatistics",
    "HierarchicalResolver",
    "LinkExtractor",
    "OrgFileStore",
    "OutlineContextService",
    "OutlineDocument",
    "Resolution",
    "Section",
    "SectionNotFoundError",
    "SectionTarget",
    "SummarizationError",
    "Summarizer",
    "TypePreference",
    "Variant",
    "apply_transforms",
    "assemble_raw_context",
    "decode_entry",
    "default_locate",
    "encode_entry",
    "fingerprint",
    "get_recent_events",
    "heading_id",
    "read_events_from_log",
    "register_transform",
    "registered_transforms",
    "staleness",
    "subset_staleness",
    "type_preference",
    "unregister_transform",
]

# Conditional import for MCP server (requires Python 3.10+ and mcp package)
try:
    from .mcp_server import OutlineContextMCPServer

    __all__.append("OutlineContextMCPServer")
except ImportError:
    # MCP package not available
    pass
