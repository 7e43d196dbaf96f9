"""
Data model for the NOLA News Watcher.

Records produced by one retrieval cycle are immutable; the transient
``is_new`` flag is applied by copying, and is never written to storage.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_KEYWORDS = ["budget", "police", "housing", "development", "mayor", "council"]
DEFAULT_CHECK_INTERVAL_MINUTES = 15


@dataclass(frozen=True)
class NewsRecord:
    """
    A single news item extracted from the listing page.

    Attributes:
        id: Identifier derived from the URL's last path segment.
        title: Anchor text, always longer than 3 characters.
        url: Absolute URL on nola.gov or nopdnews.com.
        date: Date text such as "August 7, 2025", or "Recent".
        source: "NOPD News" or "City of New Orleans".
        excerpt: First descriptive line after the title.
        timestamp: Ordering key in epoch milliseconds.
        is_new: Display-only marker set by the change detector.
    """
    id: str
    title: str
    url: str
    date: str
    source: str
    excerpt: str
    timestamp: int
    is_new: bool = field(default=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted dictionary form (without ``is_new``)."""
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "date": self.date,
            "source": self.source,
            "excerpt": self.excerpt,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["NewsRecord"]:
        """
        Build a record from persisted data.

        Returns None when the entry is not a dict or lacks an id or title,
        so one bad entry never poisons a whole generation.
        """
        if not isinstance(data, dict):
            return None

        record_id = data.get("id")
        title = data.get("title")
        if not isinstance(record_id, str) or not record_id:
            return None
        if not isinstance(title, str) or not title:
            return None

        try:
            timestamp = int(data.get("timestamp", 0))
        except (TypeError, ValueError, OverflowError):
            timestamp = 0

        return cls(
            id=record_id,
            title=title,
            url=str(data.get("url") or ""),
            date=str(data.get("date") or "Recent"),
            source=str(data.get("source") or "City of New Orleans"),
            excerpt=str(data.get("excerpt") or "No description available"),
            timestamp=timestamp,
        )


class ChangeType(str, Enum):
    """Kind of change between two generations."""
    ADDED = "ADDED"
    REMOVED = "REMOVED"


@dataclass(frozen=True)
class ChangeEvent:
    """A record that appeared in or disappeared from the listing."""
    type: ChangeType
    record: NewsRecord

    @property
    def description(self) -> str:
        if self.type is ChangeType.ADDED:
            return f'New article: "{self.record.title}"'
        return f'Removed article: "{self.record.title}"'


@dataclass(frozen=True)
class CheckHistoryEntry:
    """Summary of one completed check."""
    timestamp: int
    news_count: int
    changes_count: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "timestamp": self.timestamp,
            "newsCount": self.news_count,
            "changesCount": self.changes_count,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CheckHistoryEntry"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                timestamp=int(data["timestamp"]),
                news_count=int(data.get("newsCount", 0)),
                changes_count=int(data.get("changesCount", 0)),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            return None


@dataclass
class MonitorConfig:
    """
    User configuration for the monitor.

    Keywords keep their insertion order so keyword matching is reported
    in a stable order. ``active_keywords`` is always a subset of
    ``keywords``.
    """
    keywords: List[str] = field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    active_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    notifications_enabled: bool = False
    auto_check_enabled: bool = False

    def __post_init__(self):
        """Normalize keyword lists after initialization."""
        self.keywords = _unique(kw.strip() for kw in self.keywords if kw and kw.strip())
        known = set(self.keywords)
        self.active_keywords = _unique(
            kw.strip() for kw in self.active_keywords
            if kw and kw.strip() in known
        )

    def is_active(self, keyword: str) -> bool:
        return keyword in self.active_keywords

    def toggle_keyword(self, keyword: str) -> bool:
        """
        Flip a keyword between active and inactive.

        Unknown keywords are added to the keyword set and activated.

        Returns:
            True if the keyword is active after the toggle.
        """
        keyword = keyword.strip()
        if not keyword:
            raise ValueError("Keyword must not be empty")

        if keyword not in self.keywords:
            self.keywords.append(keyword)

        if keyword in self.active_keywords:
            self.active_keywords.remove(keyword)
            return False

        # Keep active keywords in the same order as the full keyword list
        self.active_keywords = [
            kw for kw in self.keywords
            if kw in self.active_keywords or kw == keyword
        ]
        return True


@dataclass
class Snapshot:
    """The two retained generations plus the time of the last check."""
    current: List[NewsRecord] = field(default_factory=list)
    previous: List[NewsRecord] = field(default_factory=list)
    last_check: Optional[int] = None


def _unique(items) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
