# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Context event logging in JSONL format.

Records what the cache did for each request:
- context_resolved: cached context was returned for a section
- context_miss: no valid context was found
- context_built: an entry was built (or a build was attempted)
- context_invalidated: entries were deleted

Events are written one JSON object per line and flushed immediately so they
survive an abrupt end of session. Files rotate by UTC date.

Log Location: ~/.outline_context/events/<DATE>-<SESSION-ID>.jsonl
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, TextIO

from outline_context.log_config import (
    build_log_filename,
    get_current_utc_date,
    get_events_dir,
)

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LOG_FILE = "events.jsonl"

EVENT_RESOLVED = "context_resolved"
EVENT_MISS = "context_miss"
EVENT_BUILT = "context_built"
EVENT_INVALIDATED = "context_invalidated"


@dataclass
class ContextEvent:
    """A single cache event.

    Attributes:
        timestamp: ISO 8601 timestamp.
        event_type: One of the EVENT_* constants.
        document: Source document path.
        heading_path: Titles of the requested section.
        heading_id: Entry id involved, if any.
        variant: Entry variant involved, if any.
        exact: True for an entry at the section itself, False for an
            inherited ancestor entry, None when not applicable.
        rebuilt: Whether the entry was rebuilt during this request.
        token_count: Tokens in the returned or built content.
        detail: Free-form outcome message.
    """

    timestamp: str
    event_type: str
    document: str
    heading_path: List[str]
    heading_id: Optional[str] = None
    variant: Optional[str] = None
    exact: Optional[bool] = None
    rebuilt: bool = False
    token_count: int = 0
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary suitable for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "event_type": self.event_type,
            "document": self.document,
            "heading_path": list(self.heading_path),
            "heading_id": self.heading_id,
            "variant": self.variant,
            "exact": self.exact,
            "rebuilt": self.rebuilt,
            "token_count": self.token_count,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextEvent":
        """Create a ContextEvent from a dictionary."""
        return cls(
            timestamp=data["timestamp"],
            event_type=data["event_type"],
            document=data["document"],
            heading_path=list(data["heading_path"]),
            heading_id=data.get("heading_id"),
            variant=data.get("variant"),
            exact=data.get("exact"),
            rebuilt=data.get("rebuilt", False),
            token_count=data.get("token_count", 0),
            detail=data.get("detail", ""),
        )

    @classmethod
    def create(
        cls,
        event_type: str,
        document: str,
        heading_path: Sequence[str],
        **kwargs: Any,
    ) -> "ContextEvent":
        """Factory method with an auto-generated timestamp."""
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            event_type=event_type,
            document=document,
            heading_path=list(heading_path),
            **kwargs,
        )


@dataclass
class EventStatistics:
    """Aggregated event counts for the current session."""

    total_events: int = 0
    by_event_type: Dict[str, int] = field(default_factory=dict)
    by_variant: Dict[str, int] = field(default_factory=dict)
    exact_hits: int = 0
    inherited_hits: int = 0
    misses: int = 0
    rebuilds: int = 0
    total_tokens_injected: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary suitable for JSON serialization."""
        lookups = self.exact_hits + self.inherited_hits + self.misses
        hit_rate = 0.0
        if lookups > 0:
            hit_rate = (self.exact_hits + self.inherited_hits) / lookups

        return {
            "total_events": self.total_events,
            "by_event_type": self.by_event_type,
            "by_variant": self.by_variant,
            "exact_hits": self.exact_hits,
            "inherited_hits": self.inherited_hits,
            "misses": self.misses,
            "rebuilds": self.rebuilds,
            "total_tokens_injected": self.total_tokens_injected,
            "hit_rate": round(hit_rate, 3),
        }


class ContextEventLogger:
    """Writes context events to a JSONL file.

    Usage:
        with ContextEventLogger(session_id="abc-123") as events:
            events.log_event(ContextEvent.create(EVENT_MISS, "notes.org", ["Topic"]))
            stats = events.get_statistics()
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        session_id: Optional[str] = None,
        data_root: Optional[Path] = None,
    ) -> None:
        """Initialize the event logger.

        Args:
            log_dir: Explicit log directory. Ignored when data_root is given.
            session_id: Session ID for the date-session filename. If None, a
                static events.jsonl filename is used without rotation.
            data_root: Root directory for logs; events go to {data_root}/events/.
        """
        if data_root is not None:
            self._log_dir = get_events_dir(data_root)
        elif log_dir is not None:
            self._log_dir = Path(log_dir)
        else:
            self._log_dir = get_events_dir()

        self._session_id = session_id
        if session_id is not None:
            self._log_file = build_log_filename(session_id)
            self._use_date_rotation = True
        else:
            self._log_file = DEFAULT_EVENT_LOG_FILE
            self._use_date_rotation = False

        self._current_date = get_current_utc_date()

        self._event_count = 0
        self._by_event_type: Counter[str] = Counter()
        self._by_variant: Counter[str] = Counter()
        self._exact_hits = 0
        self._inherited_hits = 0
        self._misses = 0
        self._rebuilds = 0
        self._total_tokens = 0

        self._file_handle: Optional[TextIO] = None

    def _get_log_path(self) -> Path:
        return self._log_dir / self._log_file

    def _check_date_rotation(self) -> None:
        """Switch to a new file when the UTC date changes."""
        if not self._use_date_rotation:
            return

        current_date = get_current_utc_date()
        if current_date != self._current_date:
            if self._file_handle is not None:
                self._file_handle.close()
                self._file_handle = None
                logger.debug(f"Rotated event log: {self._current_date} -> {current_date}")
            self._current_date = current_date
            self._log_file = build_log_filename(self._session_id)  # type: ignore[arg-type]

    def _open_file(self) -> TextIO:
        self._check_date_rotation()

        if self._file_handle is None:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            log_path = self._get_log_path()
            # noqa: SIM115 - We manage the file handle lifecycle via close() method
            self._file_handle = open(log_path, "a", encoding="utf-8")  # noqa: SIM115
            logger.debug(f"Opened event log file: {log_path}")
        return self._file_handle

    def log_event(self, event: ContextEvent) -> None:
        """Append one event and flush it to disk."""
        file_handle = self._open_file()
        file_handle.write(json.dumps(event.to_dict(), separators=(",", ":")) + "\n")
        file_handle.flush()

        self._event_count += 1
        self._by_event_type[event.event_type] += 1
        if event.variant is not None:
            self._by_variant[event.variant] += 1
        if event.event_type == EVENT_BUILT and event.rebuilt:
            self._rebuilds += 1
        elif event.event_type == EVENT_RESOLVED:
            if event.exact:
                self._exact_hits += 1
            else:
                self._inherited_hits += 1
            self._total_tokens += event.token_count
        elif event.event_type == EVENT_MISS:
            self._misses += 1

    def get_statistics(self) -> EventStatistics:
        """Statistics for the events logged by this instance."""
        return EventStatistics(
            total_events=self._event_count,
            by_event_type=dict(self._by_event_type),
            by_variant=dict(self._by_variant),
            exact_hits=self._exact_hits,
            inherited_hits=self._inherited_hits,
            misses=self._misses,
            rebuilds=self._rebuilds,
            total_tokens_injected=self._total_tokens,
        )

    def get_log_path(self) -> Path:
        """Get the path to the log file."""
        return self._get_log_path()

    def close(self) -> None:
        """Close the log file handle."""
        if self._file_handle is not None:
            self._file_handle.close()
            self._file_handle = None
            logger.debug(f"Closed event log file: {self._get_log_path()}")

    def __enter__(self) -> "ContextEventLogger":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


def read_events_from_log(log_path: Path, limit: Optional[int] = None) -> List[ContextEvent]:
    """Read events from a JSONL log in chronological order.

    Raises:
        FileNotFoundError: If log file doesn't exist.
        json.JSONDecodeError: If log file contains invalid JSON.
    """
    events: List[ContextEvent] = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            if limit is not None and len(events) >= limit:
                break
            line = line.strip()
            if not line:
                continue
            events.append(ContextEvent.from_dict(json.loads(line)))
    return events


def get_recent_events(
    log_path: Path,
    document: Optional[str] = None,
    limit: int = 10,
) -> List[ContextEvent]:
    """Most recent events first, optionally filtered by document.

    Malformed lines are skipped with a warning.
    """
    if not log_path.exists():
        return []

    matching: List[ContextEvent] = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = ContextEvent.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Skipping malformed log entry: {e}")
                continue
            if document is None or event.document == document:
                matching.append(event)

    recent = matching[-limit:]
    recent.reverse()
    return recent
