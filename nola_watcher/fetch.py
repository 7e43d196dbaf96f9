"""
Fetch module for the NOLA News Watcher.

This module retrieves the news listing page through an ordered list of
relays. Relays are tried strictly in order, one at a time; the first
successful response wins and the remaining relays are never contacted.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import quote, urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from nola_watcher.utils import get_logger


# Module logger
logger = get_logger("fetch")

# Default configuration
DEFAULT_TARGET_URL = "https://nola.gov/next/news/"
DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_MAX_RETRIES = 1
DEFAULT_BACKOFF_FACTOR = 0.5
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

# Relay URL templates, in order of preference. The percent-encoded target
# is appended to each template; an empty template fetches the target directly.
DEFAULT_RELAYS = [
    "https://corsproxy.io/?",
    "https://cors-anywhere.herokuapp.com/",
    "https://api.codetabs.com/v1/proxy?quest=",
]

EXHAUSTED_MESSAGE = "Unable to fetch news data. Please check your internet connection."


@dataclass
class FetchResult:
    """
    Represents the outcome of one relay attempt.

    Attributes:
        relay: The relay template that was used.
        request_url: The full URL that was requested.
        content: Raw markup if successful, None otherwise.
        success: Whether the attempt was successful.
        error_message: Error description if the attempt failed, None otherwise.
        status_code: HTTP status code if a response was received, None otherwise.
    """
    relay: str
    request_url: str
    content: Optional[str]
    success: bool
    error_message: Optional[str] = None
    status_code: Optional[int] = None


class FetchExhausted(Exception):
    """Raised when every configured relay failed to return the page."""

    def __init__(self, target_url: str, attempts: Optional[List[FetchResult]] = None):
        super().__init__(EXHAUSTED_MESSAGE)
        self.target_url = target_url
        self.attempts: List[FetchResult] = attempts or []


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
) -> requests.Session:
    """
    Create a requests session with retry configuration.

    Transient failures (429 and 5xx) are retried by the transport before
    the gateway gives up on a relay and moves on to the next one.

    Args:
        max_retries: Maximum number of retry attempts per relay.
        backoff_factor: Multiplier for exponential backoff between retries.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": DEFAULT_ACCEPT,
        "Accept-Language": "en-US,en;q=0.5",
    })

    return session


def validate_url(url: str) -> bool:
    """
    Validate that a URL is well-formed and uses HTTP/HTTPS.

    Args:
        url: URL string to validate.

    Returns:
        True if URL is valid, False otherwise.
    """
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except ValueError:
        return False


def build_relay_url(relay: str, target_url: str) -> str:
    """
    Build the request URL for a relay.

    Args:
        relay: Relay template, e.g. "https://corsproxy.io/?".
        target_url: Absolute URL of the page to retrieve.

    Returns:
        The relay template followed by the percent-encoded target, or the
        target itself when the template is empty.
    """
    if not relay:
        return target_url
    return relay + quote(target_url, safe="")


def fetch_via_relay(
    relay: str,
    target_url: str,
    session: requests.Session,
    timeout: int = DEFAULT_TIMEOUT
) -> FetchResult:
    """
    Attempt to fetch the target page through a single relay.

    Args:
        relay: Relay template.
        target_url: URL of the page to retrieve.
        session: Configured requests session.
        timeout: Request timeout in seconds.

    Returns:
        FetchResult containing the attempt outcome.
    """
    request_url = build_relay_url(relay, target_url)
    logger.debug(f"Requesting {request_url}")

    if not validate_url(request_url):
        logger.warning(f"Invalid relay URL: {request_url}")
        return FetchResult(
            relay=relay,
            request_url=request_url,
            content=None,
            success=False,
            error_message="Invalid URL format"
        )

    headers = {
        "Accept": DEFAULT_ACCEPT,
        "User-Agent": DEFAULT_USER_AGENT,
    }

    try:
        response = session.get(request_url, headers=headers, timeout=timeout)
    except requests.exceptions.Timeout:
        logger.warning(f"Timeout fetching via {relay or 'direct'}")
        return FetchResult(
            relay=relay,
            request_url=request_url,
            content=None,
            success=False,
            error_message="Request timeout"
        )
    except requests.exceptions.ConnectionError as e:
        logger.warning(f"Connection error via {relay or 'direct'}: {e}")
        return FetchResult(
            relay=relay,
            request_url=request_url,
            content=None,
            success=False,
            error_message=f"Connection error: {str(e)}"
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"Request exception via {relay or 'direct'}: {e}")
        return FetchResult(
            relay=relay,
            request_url=request_url,
            content=None,
            success=False,
            error_message=f"Request failed: {str(e)}"
        )

    if not 200 <= response.status_code < 300:
        logger.warning(f"HTTP {response.status_code} from {relay or 'direct'}")
        return FetchResult(
            relay=relay,
            request_url=request_url,
            content=None,
            success=False,
            error_message=f"HTTP {response.status_code}",
            status_code=response.status_code
        )

    try:
        text = response.text
    except (UnicodeDecodeError, LookupError) as e:
        logger.warning(f"Undecodable response from {relay or 'direct'}: {e}")
        text = None

    if not isinstance(text, str) or not text.strip():
        logger.warning(f"Empty response body from {relay or 'direct'}")
        return FetchResult(
            relay=relay,
            request_url=request_url,
            content=None,
            success=False,
            error_message="Empty response body",
            status_code=response.status_code
        )

    logger.info(f"Fetched {target_url} via {relay or 'direct'} ({len(text)} bytes)")
    return FetchResult(
        relay=relay,
        request_url=request_url,
        content=text,
        success=True,
        status_code=response.status_code
    )


def fetch(
    target_url: str = DEFAULT_TARGET_URL,
    relays: Optional[List[str]] = None,
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_TIMEOUT
) -> str:
    """
    Retrieve raw markup for a page, falling back through relays in order.

    Args:
        target_url: Absolute URL of the page to retrieve.
        relays: Ordered relay templates. Uses DEFAULT_RELAYS if None.
        session: Optional session to reuse; a new one is created and closed
                 otherwise.
        timeout: Request timeout in seconds per attempt.

    Returns:
        The response body of the first successful relay.

    Raises:
        FetchExhausted: If every relay failed.
    """
    if relays is None:
        relays = DEFAULT_RELAYS

    if not relays:
        logger.error("No relays configured")
        raise FetchExhausted(target_url)

    logger.info(f"Fetching {target_url} through {len(relays)} relay(s)")

    owns_session = session is None
    if session is None:
        session = create_session()

    attempts: List[FetchResult] = []

    try:
        for i, relay in enumerate(relays):
            logger.debug(f"Relay attempt {i + 1}/{len(relays)}: {relay or 'direct'}")
            result = fetch_via_relay(relay, target_url, session, timeout)
            attempts.append(result)

            if result.success and result.content is not None:
                return result.content

            if i < len(relays) - 1:
                logger.info(f"Relay {i + 1} failed ({result.error_message}), trying next relay")
    finally:
        if owns_session:
            session.close()

    logger.error(f"All {len(relays)} relay(s) failed for {target_url}")
    raise FetchExhausted(target_url, attempts)
