"""
Parse module for the NOLA News Watcher.

This module turns the raw markup of the nola.gov news listing into
NewsRecord values. The page is matched structurally: only anchors inside
level-3 headings are considered, and every other field (date, source,
excerpt) is inferred by scanning the text of the surrounding container.

Each step is a small pure function over a BeautifulSoup tree, so the whole
chain can be exercised without a browser or network access.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional, Set
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from nola_watcher.models import NewsRecord
from nola_watcher.utils import get_logger, now_ms


# Module logger
logger = get_logger("parse")

CANONICAL_ORIGIN = "https://nola.gov"
CANONICAL_HOST = "nola.gov"
SECONDARY_DOMAIN = "nopdnews.com"

# Anchors nested in <h3> headings whose link looks like a path or points
# at the NOPD news site. Anything outside this shape is not a news item.
NEWS_LINK_SELECTOR = f'h3 a[href*="/"], h3 a[href*="{SECONDARY_DOMAIN}"]'

DATE_PATTERN = re.compile(r"([A-Z][a-z]+ \d{1,2}, \d{4})")
DATE_FORMAT = "%B %d, %Y"

LOOPBACK_WITH_SCHEME = re.compile(r"https?://(?:localhost|127\.0\.0\.1)(?::\d+)?")
LOOPBACK_BARE = re.compile(r"(?:localhost|127\.0\.0\.1)(?::\d+)?")

DEFAULT_DATE = "Recent"
DEFAULT_SOURCE = "City of New Orleans"
NOPD_SOURCE = "NOPD News"
NOPD_MARKER = "From NOPD News"
DEFAULT_EXCERPT = "No description available"

MIN_TITLE_LENGTH = 4
MIN_EXCERPT_LENGTH = 21
HOUR_MS = 60 * 60 * 1000


def normalize_url(href: Optional[str]) -> str:
    """
    Rewrite a raw href into an absolute, correctly domained URL.

    - Loopback hosts (localhost, 127.0.0.1, any port) become nola.gov.
    - Root-relative paths ("/next/news/...") get the canonical origin.
    - Anything else that is neither absolute nor on nopdnews.com gets the
      canonical origin and a separating slash.

    Normalizing an already normalized URL returns it unchanged.

    Args:
        href: Raw href attribute value. May be None.

    Returns:
        Normalized URL, or an empty string for a missing href.
    """
    if not href:
        return ""

    url = href.strip()
    if not url:
        return ""

    if LOOPBACK_BARE.search(url):
        url = LOOPBACK_WITH_SCHEME.sub(CANONICAL_ORIGIN, url)
        url = LOOPBACK_BARE.sub(CANONICAL_HOST, url)
        if url.startswith(CANONICAL_HOST):
            url = "https://" + url
    elif url.startswith("//"):
        url = "https:" + url
    elif url.startswith("/"):
        url = CANONICAL_ORIGIN + url
    elif not url.startswith("http") and SECONDARY_DOMAIN not in url:
        url = CANONICAL_ORIGIN + ("" if url.startswith("/") else "/") + url

    return url


def derive_record_id(url: str, index: int) -> str:
    """
    Derive a record identifier from the last path segment of a URL.

    Trailing slashes are ignored, so ".../articles/water-main/" and
    ".../articles/water-main" share an id.

    Args:
        url: Normalized record URL.
        index: Position of the anchor among matched anchors.

    Returns:
        The last non-empty path segment, or "item-{index}".
    """
    if url:
        path = urlparse(url).path if "://" in url else url
        segments = [segment for segment in path.split("/") if segment]
        if segments:
            return segments[-1]
    return f"item-{index}"


def find_context_container(anchor: Tag) -> Optional[Tag]:
    """
    Find the element whose text describes an anchor.

    Args:
        anchor: The matched <a> element.

    Returns:
        The nearest enclosing <div>, else the anchor's parent, else None.
    """
    container = anchor.find_parent("div")
    if container is None:
        container = anchor.parent
    return container


def get_context_text(anchor: Tag) -> str:
    """Full text of the anchor's container, with original line breaks."""
    container = find_context_container(anchor)
    if container is None:
        return ""
    return container.get_text() or ""


def extract_date(text: str) -> str:
    """Return the first "Month D, YYYY" date in text, or "Recent"."""
    match = DATE_PATTERN.search(text or "")
    if match:
        return match.group(1)
    return DEFAULT_DATE


def extract_source(text: str) -> str:
    """Attribute a record to NOPD News or, by default, the City."""
    if NOPD_MARKER in (text or ""):
        return NOPD_SOURCE
    return DEFAULT_SOURCE


def extract_excerpt(text: str, title: str) -> str:
    """
    Pick the descriptive line that follows the title.

    The context text is split into stripped, non-empty lines. Starting after
    the line equal to the title, the first line that is long enough and is
    neither an attribution ("From ...") nor a date becomes the excerpt.

    Args:
        text: Container text.
        title: Record title.

    Returns:
        The excerpt line, or "No description available".
    """
    lines = [line.strip() for line in (text or "").split("\n")]
    lines = [line for line in lines if line]

    for i, line in enumerate(lines):
        if line != title:
            continue
        for candidate in lines[i + 1:]:
            if "From " in candidate:
                continue
            if DATE_PATTERN.search(candidate):
                continue
            if len(candidate) >= MIN_EXCERPT_LENGTH:
                return candidate
        break

    return DEFAULT_EXCERPT


def parse_date_timestamp(date_text: str) -> Optional[int]:
    """
    Convert "Month D, YYYY" into epoch milliseconds at UTC midnight.

    Returns:
        Milliseconds since the epoch, or None if the text is not a date.
    """
    try:
        parsed = datetime.strptime(date_text, DATE_FORMAT)
    except (TypeError, ValueError):
        return None
    return int(parsed.replace(tzinfo=timezone.utc).timestamp() * 1000)


def estimate_timestamp(date_text: str, index: int, retrieved_at: int) -> int:
    """
    Ordering key for a record.

    Items without a parseable date are spaced one hour apart going back
    from the retrieval time, keeping their document order.
    """
    timestamp = parse_date_timestamp(date_text)
    if timestamp is None:
        return retrieved_at - index * HOUR_MS
    return timestamp


def build_record(anchor: Tag, index: int, retrieved_at: int) -> Optional[NewsRecord]:
    """
    Assemble a NewsRecord from one matched anchor.

    Args:
        anchor: The matched <a> element.
        index: Position among matched anchors, used for fallbacks.
        retrieved_at: Retrieval time in epoch milliseconds.

    Returns:
        A NewsRecord, or None if the title is too short or the link is empty.
    """
    title = anchor.get_text().strip()
    if len(title) < MIN_TITLE_LENGTH:
        logger.debug(f"Skipping anchor {index} with short title: {title!r}")
        return None

    href = anchor.get("href")
    url = normalize_url(str(href) if href is not None else None)
    if not url:
        logger.debug(f"Skipping anchor {index} without a usable href")
        return None

    context = get_context_text(anchor)
    date = extract_date(context)

    return NewsRecord(
        id=derive_record_id(url, index),
        title=title,
        url=url,
        date=date,
        source=extract_source(context),
        excerpt=extract_excerpt(context, title),
        timestamp=estimate_timestamp(date, index, retrieved_at),
    )


def extract(html: str, retrieved_at: Optional[int] = None) -> List[NewsRecord]:
    """
    Parse the news listing markup into an ordered list of records.

    Records keep document order. Duplicate links are dropped, and a record
    whose id collides with an earlier one from a different link gets a
    positional suffix so ids stay unique within the batch.

    Args:
        html: Raw markup of the listing page.
        retrieved_at: Retrieval time in epoch milliseconds. Defaults to now;
                      pass a fixed value for deterministic results.

    Returns:
        List of NewsRecord values (possibly empty).
    """
    if not html:
        logger.warning("Empty markup, nothing to extract")
        return []

    if retrieved_at is None:
        retrieved_at = now_ms()

    logger.debug(f"Parsing markup ({len(html)} bytes)")

    soup = BeautifulSoup(html, "html.parser")
    anchors = soup.select(NEWS_LINK_SELECTOR)

    records: List[NewsRecord] = []
    seen_urls: Set[str] = set()
    seen_ids: Set[str] = set()

    for index, anchor in enumerate(anchors):
        try:
            record = build_record(anchor, index, retrieved_at)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed anchor {index}: {e}")
            continue

        if record is None:
            continue

        if record.url in seen_urls:
            logger.debug(f"Skipping duplicate link {record.url}")
            continue

        if record.id in seen_ids:
            unique_id = f"{record.id}-{index}"
            logger.debug(f"Id {record.id} already used, renaming to {unique_id}")
            record = NewsRecord(
                id=unique_id,
                title=record.title,
                url=record.url,
                date=record.date,
                source=record.source,
                excerpt=record.excerpt,
                timestamp=record.timestamp,
            )

        seen_urls.add(record.url)
        seen_ids.add(record.id)
        records.append(record)

    if not records:
        logger.warning(
            f"Extraction degraded: {len(anchors)} candidate link(s) but no news items; "
            "the page structure may have changed"
        )
    else:
        logger.info(f"Extracted {len(records)} news item(s) from {len(anchors)} candidate link(s)")

    return records
