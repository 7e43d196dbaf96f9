"""
Relevance module for the NOLA News Watcher.

This module scores news records for newsworthiness:
- Keyword matches against the user's active keywords
- Source, headline and recency bonuses

Scoring is pure: given the same record, keywords and clock it always
returns the same result.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from nola_watcher.models import NewsRecord
from nola_watcher.utils import get_logger, now_ms


# Module logger
logger = get_logger("relevance")

MIN_SCORE = 1
MAX_SCORE = 5

KEYWORD_WEIGHT = 1.5
MAYOR_BONUS = 1.0
CITY_BONUS = 0.5
URGENT_BONUS = 2.0
CIVIC_BONUS = 1.0
FRESH_BONUS = 1.0
RECENT_BONUS = 0.5

URGENT_TERMS = ("breaking", "emergency")
CIVIC_TERMS = ("budget", "council")

FRESH_HOURS = 6
RECENT_HOURS = 24
HOUR_MS = 60 * 60 * 1000

LEVEL_HIGH = "high"
LEVEL_MEDIUM = "medium"
LEVEL_LOW = "low"


@dataclass(frozen=True)
class RelevanceScore:
    """
    Relevance of one record.

    Attributes:
        matched_keywords: Active keywords found in the record, in keyword order.
        score: Newsworthiness between 1 and 5.
        level: "low", "medium" or "high".
    """
    matched_keywords: Tuple[str, ...]
    score: int
    level: str

    @property
    def is_highlighted(self) -> bool:
        return bool(self.matched_keywords)


def normalize_text_for_matching(text: Optional[str]) -> str:
    """
    Normalize text for case-insensitive keyword matching.

    Args:
        text: Text to normalize. Can be None or empty string.

    Returns:
        Lowercase text, or empty string if input is None/empty.
    """
    if not text:
        return ""
    return text.lower()


def find_keywords(record: NewsRecord, active_keywords: Iterable[str]) -> List[str]:
    """
    Find the active keywords mentioned in a record's title or excerpt.

    Matching is a case-insensitive substring search, so "police" also
    matches "Policing".

    Args:
        record: Record to inspect.
        active_keywords: Keywords to look for, in reporting order.

    Returns:
        Matched keywords in the order they were given.
    """
    text = normalize_text_for_matching(f"{record.title} {record.excerpt}")

    return [
        keyword for keyword in active_keywords
        if keyword and keyword.lower() in text
    ]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounding up (4.5 -> 5)."""
    return int(math.floor(value + 0.5))


def get_level(score: int) -> str:
    """Map a score to its level."""
    if score >= 4:
        return LEVEL_HIGH
    if score >= 3:
        return LEVEL_MEDIUM
    return LEVEL_LOW


def calculate_newsworthiness(
    record: NewsRecord,
    matched_keywords: Sequence[str],
    current_time: Optional[int] = None
) -> int:
    """
    Compute the bounded newsworthiness score for a record.

    Starting from 1, the score adds 1.5 per matched keyword, source bonuses
    (Mayor +1, City of New Orleans +0.5), headline bonuses (breaking or
    emergency +2, budget or council +1) and a recency bonus (+1 under 6
    hours old, +0.5 under 24 hours). The total is rounded and clamped.

    Args:
        record: Record to score.
        matched_keywords: Keywords already matched against the record.
        current_time: Clock in epoch milliseconds. Defaults to now.

    Returns:
        Integer score between 1 and 5.
    """
    if current_time is None:
        current_time = now_ms()

    score = 1.0
    score += len(matched_keywords) * KEYWORD_WEIGHT

    if "Mayor" in record.source:
        score += MAYOR_BONUS
    if "City of New Orleans" in record.source:
        score += CITY_BONUS

    title = record.title.lower()
    if any(term in title for term in URGENT_TERMS):
        score += URGENT_BONUS
    if any(term in title for term in CIVIC_TERMS):
        score += CIVIC_BONUS

    hours_old = (current_time - record.timestamp) / HOUR_MS
    if hours_old < FRESH_HOURS:
        score += FRESH_BONUS
    elif hours_old < RECENT_HOURS:
        score += RECENT_BONUS

    return min(MAX_SCORE, max(MIN_SCORE, round_half_up(score)))


def score_record(
    record: NewsRecord,
    active_keywords: Iterable[str],
    current_time: Optional[int] = None
) -> RelevanceScore:
    """
    Score one record against the active keywords.

    Args:
        record: Record to score.
        active_keywords: Keywords currently enabled by the user.
        current_time: Clock in epoch milliseconds. Defaults to now.

    Returns:
        RelevanceScore with matched keywords, score and level.
    """
    matched = find_keywords(record, active_keywords)
    score = calculate_newsworthiness(record, matched, current_time)

    return RelevanceScore(
        matched_keywords=tuple(matched),
        score=score,
        level=get_level(score),
    )


def score_records(
    records: Sequence[NewsRecord],
    active_keywords: Sequence[str],
    current_time: Optional[int] = None
) -> List[Tuple[NewsRecord, RelevanceScore]]:
    """
    Score a batch of records with a single clock reading.

    Returns:
        (record, score) pairs in input order.
    """
    if current_time is None:
        current_time = now_ms()

    scored = [
        (record, score_record(record, active_keywords, current_time))
        for record in records
    ]

    highlighted = sum(1 for _, s in scored if s.is_highlighted)
    logger.debug(f"Scored {len(scored)} record(s), {highlighted} with keyword matches")

    return scored
