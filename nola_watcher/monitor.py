"""
Monitor module for the NOLA News Watcher.

This module wires the pipeline together:
fetch → extract → detect → score → persist → notify

The NewsMonitor keeps no UI state. It runs one check at a time, applies
configuration changes (saving each one immediately), and hands the
structured outcome of every check back to its caller.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from nola_watcher.compare import detect_changes, mark_new_records
from nola_watcher.fetch import DEFAULT_TARGET_URL, FetchExhausted, fetch
from nola_watcher.models import ChangeEvent, CheckHistoryEntry, MonitorConfig, NewsRecord
from nola_watcher.notify import (
    Notification,
    build_notification,
    build_structure_notification,
    dispatch_notification,
)
from nola_watcher.parse import extract
from nola_watcher.relevance import RelevanceScore, score_records
from nola_watcher.scheduler import Scheduler, TimerFactory
from nola_watcher.store import SnapshotStore
from nola_watcher.utils import get_logger, now_ms


# Module logger
logger = get_logger("monitor")

STATUS_LOADING = "loading"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"

LOADING_MESSAGE = "Fetching fresh data from nola.gov..."
STRUCTURE_ALERT_THRESHOLD = 3


@dataclass
class CycleResult:
    """
    Outcome of one check.

    Attributes:
        status: "success", "error" or "skipped".
        message: One human-readable status line.
        records: Current generation, with new records marked.
        changes: Added and removed records.
        scores: Relevance of each current record, in record order.
        notification: The alert built for this check, if any.
    """
    status: str
    message: str
    records: List[NewsRecord] = field(default_factory=list)
    changes: List[ChangeEvent] = field(default_factory=list)
    scores: List[Tuple[NewsRecord, RelevanceScore]] = field(default_factory=list)
    notification: Optional[Notification] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS


def format_status(news_count: int, changes_count: int) -> str:
    return f"Found {news_count} news items, {changes_count} changes detected"


class NewsMonitor:
    """
    Runs checks of the news listing and manages user configuration.

    Collaborators are injected so a check can run against canned markup,
    a temporary store and a manual clock. ``on_result`` receives the
    outcome of every timer-triggered check.
    """

    def __init__(
        self,
        store: SnapshotStore,
        config: Optional[MonitorConfig] = None,
        target_url: str = DEFAULT_TARGET_URL,
        fetcher: Optional[Callable[[str], str]] = None,
        channels: Optional[Sequence[object]] = None,
        clock: Optional[Callable[[], int]] = None,
        timer_factory: Optional[TimerFactory] = None,
        structure_alert_threshold: int = STRUCTURE_ALERT_THRESHOLD,
        on_result: Optional[Callable[[CycleResult], None]] = None
    ):
        self.store = store
        self.config = config if config is not None else store.load_config()
        self.target_url = target_url
        self.fetcher = fetcher or fetch
        self.channels = channels
        self.clock = clock or now_ms
        self.structure_alert_threshold = structure_alert_threshold
        self.on_result = on_result

        self.empty_cycles = 0
        self._cycle_lock = threading.Lock()
        self.scheduler = Scheduler(
            self._scheduled_check,
            timer_factory=timer_factory,
            period_minutes=self.config.check_interval_minutes,
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_for_updates(self) -> CycleResult:
        """
        Run one full check.

        A check that arrives while another is running is dropped. A check
        whose fetch fails leaves the stored generations untouched.

        Returns:
            CycleResult describing the outcome.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("A check is already in progress, dropping this trigger")
            return CycleResult(status=STATUS_SKIPPED, message="Check already in progress")

        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _scheduled_check(self) -> None:
        result = self.check_for_updates()
        if self.on_result is not None:
            self.on_result(result)

    def _run_cycle(self) -> CycleResult:
        logger.info(LOADING_MESSAGE)

        try:
            html = self.fetcher(self.target_url)
        except FetchExhausted as e:
            for attempt in e.attempts:
                logger.debug(f"Relay {attempt.relay or 'direct'} failed: {attempt.error_message}")
            logger.error(f"Check failed: {e}")
            return CycleResult(status=STATUS_ERROR, message=f"Error: {e}")

        retrieved_at = self.clock()
        fresh = extract(html, retrieved_at=retrieved_at)

        snapshot = self.store.load()
        previous = snapshot.current
        changes = detect_changes(previous, fresh)

        self.store.save(fresh, previous, last_check=retrieved_at)
        self.store.append_history(CheckHistoryEntry(
            timestamp=retrieved_at,
            news_count=len(fresh),
            changes_count=len(changes),
        ))

        records = mark_new_records(fresh, changes)
        scores = score_records(records, self.config.active_keywords, retrieved_at)

        notification = build_notification(changes)
        dispatch_notification(notification, self.config.notifications_enabled, self.channels)

        self._track_structure(len(fresh))

        message = format_status(len(fresh), len(changes))
        logger.info(message)

        return CycleResult(
            status=STATUS_SUCCESS,
            message=message,
            records=records,
            changes=changes,
            scores=scores,
            notification=notification,
        )

    def _track_structure(self, record_count: int) -> None:
        """Raise one alert per streak of checks that found nothing."""
        if record_count:
            self.empty_cycles = 0
            return

        self.empty_cycles += 1
        if self.empty_cycles == self.structure_alert_threshold:
            logger.error(
                f"No news items found in {self.empty_cycles} consecutive checks; "
                "the page structure may have changed"
            )
            dispatch_notification(
                build_structure_notification(self.empty_cycles, self.target_url),
                self.config.notifications_enabled,
                self.channels,
            )

    def rescore(self) -> List[Tuple[NewsRecord, RelevanceScore]]:
        """Score the stored current generation with the active keywords."""
        snapshot = self.store.load()
        return score_records(snapshot.current, self.config.active_keywords, self.clock())

    def history(self) -> List[CheckHistoryEntry]:
        return self.store.load_history()

    def last_check(self) -> Optional[int]:
        return self.store.load().last_check

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _save_config(self) -> None:
        self.store.save_config(self.config)

    def toggle_keyword(self, keyword: str) -> bool:
        """
        Activate or deactivate a keyword.

        Returns:
            True if the keyword is active afterwards.
        """
        active = self.config.toggle_keyword(keyword)
        self._save_config()
        logger.info(f"Keyword '{keyword}' {'activated' if active else 'deactivated'}")
        return active

    def set_notifications_enabled(self, enabled: bool) -> None:
        self.config.notifications_enabled = bool(enabled)
        self._save_config()
        logger.info(f"Notifications {'enabled' if enabled else 'disabled'}")

    def set_check_interval(self, minutes: int) -> None:
        """
        Change the auto-check period.

        A running auto-check restarts with the new period.

        Raises:
            ValueError: If minutes is not a positive whole number.
        """
        self.scheduler.reschedule(minutes)
        self.config.check_interval_minutes = self.scheduler.period_minutes
        self._save_config()

    def start_auto_check(self) -> None:
        self.scheduler.start(self.config.check_interval_minutes)
        self.config.auto_check_enabled = True
        self._save_config()

    def stop_auto_check(self) -> None:
        self.scheduler.stop()
        self.config.auto_check_enabled = False
        self._save_config()

    def toggle_auto_check(self) -> bool:
        """
        Flip auto-check on or off.

        Returns:
            True if auto-check is running afterwards.
        """
        if self.scheduler.is_running:
            self.stop_auto_check()
        else:
            self.start_auto_check()
        return self.scheduler.is_running

    def resume(self) -> None:
        """Restart auto-check if it was enabled when the process last ran."""
        if self.config.auto_check_enabled and not self.scheduler.is_running:
            logger.info("Resuming auto-check from saved configuration")
            self.scheduler.start(self.config.check_interval_minutes)

    def clear_all(self) -> None:
        """Stop auto-check and wipe every stored bucket."""
        self.scheduler.stop()
        self.store.clear_all()
        self.config.auto_check_enabled = False
        self.empty_cycles = 0
        logger.info("All data cleared - ready to check for updates")
