"""
Tests for the monitor module.

Tests cover:
- First and repeat checks
- Failed fetches leaving stored data untouched
- Alerts for additions only
- Dropping overlapping checks
- The page structure alert
- Configuration changes and their persistence
- Timer-triggered checks
"""

import tempfile
from unittest.mock import Mock

import pytest

from nola_watcher.fetch import FetchExhausted, FetchResult
from nola_watcher.models import ChangeType, MonitorConfig
from nola_watcher.monitor import (
    STATUS_ERROR,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    NewsMonitor,
    format_status,
)
from nola_watcher.notify import TAG_MULTIPLE, TAG_SINGLE, TAG_STRUCTURE
from nola_watcher.store import SnapshotStore


NOW = 1_760_000_000_000


def item(slug, title, date="August 7, 2025", source="City of New Orleans"):
    return f"""
    <div class="news-item">
        <h3><a href="/next/news/articles/{slug}">{title}</a></h3>
        <p>{date}</p>
        <p>Details about {title.lower()} are available from the city.</p>
        <p>From {source}</p>
    </div>
    """


def page(*items):
    return "<html><body>" + "".join(items) + "</body></html>"


FIRST_PAGE = page(
    item("water-main-repair", "Water Main Repair Scheduled"),
    item("council-budget-hearing", "Council Budget Hearing Set"),
)

SECOND_PAGE = page(
    item("police-patrols", "Police Expand Patrols", source="NOPD News"),
    item("water-main-repair", "Water Main Repair Scheduled"),
)

EMPTY_PAGE = "<html><body><p>Maintenance</p></body></html>"


class FakeFetcher:
    """Returns canned pages in order, repeating the last one."""

    def __init__(self, *pages):
        self.pages = list(pages)
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        content = self.pages[min(self.calls, len(self.pages)) - 1]
        if isinstance(content, Exception):
            raise content
        return content


class FakeTimer:
    def __init__(self, interval_ms, function):
        self.interval_ms = interval_ms
        self.function = function
        self.cancelled = False

    def start(self):
        pass

    def cancel(self):
        self.cancelled = True


def exhausted():
    attempts = [FetchResult(relay="https://relay.example/?", request_url="x", content=None,
                            success=False, error_message="Request timed out after 30s")]
    return FetchExhausted("https://nola.gov/next/news/", attempts)


@pytest.fixture
def data_dir():
    with tempfile.TemporaryDirectory() as tmp:
        yield tmp


@pytest.fixture
def store(data_dir):
    return SnapshotStore(data_dir)


@pytest.fixture
def channel():
    return Mock()


@pytest.fixture
def make_monitor(store, channel):
    """Build a monitor over the given pages with a fixed clock."""
    def factory(*pages, notifications=True, **kwargs):
        config = MonitorConfig(notifications_enabled=notifications)
        return NewsMonitor(
            store=store,
            config=config,
            fetcher=FakeFetcher(*pages),
            channels=[channel],
            clock=lambda: NOW,
            timer_factory=FakeTimer,
            **kwargs
        )
    return factory


class TestCheckForUpdates:
    """Tests for a full check."""

    def test_first_check(self, make_monitor, store, channel):
        """Test that every record is new on the first check."""
        monitor = make_monitor(FIRST_PAGE)

        result = monitor.check_for_updates()

        assert result.status == STATUS_SUCCESS
        assert result.ok is True
        assert result.message == "Found 2 news items, 2 changes detected"
        assert [c.type for c in result.changes] == [ChangeType.ADDED, ChangeType.ADDED]
        assert all(r.is_new for r in result.records)

        snapshot = store.load()
        assert [r.id for r in snapshot.current] == ["water-main-repair", "council-budget-hearing"]
        assert snapshot.previous == []
        assert snapshot.last_check == NOW

        channel.send.assert_called_once()
        assert channel.send.call_args[0][0].tag == TAG_MULTIPLE

    def test_repeat_check_has_no_changes(self, make_monitor, channel):
        """Test that checking an unchanged page reports nothing."""
        monitor = make_monitor(FIRST_PAGE, FIRST_PAGE)

        monitor.check_for_updates()
        channel.reset_mock()
        result = monitor.check_for_updates()

        assert result.changes == []
        assert not any(r.is_new for r in result.records)
        assert result.notification is None
        channel.send.assert_not_called()

    def test_generations_roll(self, make_monitor, store):
        """Test that the stored current generation becomes previous."""
        monitor = make_monitor(FIRST_PAGE, SECOND_PAGE)

        monitor.check_for_updates()
        result = monitor.check_for_updates()

        assert [(c.type, c.record.id) for c in result.changes] == [
            (ChangeType.ADDED, "police-patrols"),
            (ChangeType.REMOVED, "council-budget-hearing"),
        ]
        assert [r.is_new for r in result.records] == [True, False]
        assert result.notification.tag == TAG_SINGLE

        snapshot = store.load()
        assert [r.id for r in snapshot.previous] == ["water-main-repair", "council-budget-hearing"]
        assert [r.id for r in snapshot.current] == ["police-patrols", "water-main-repair"]

    def test_removal_only_sends_nothing(self, make_monitor, channel):
        """Test that a check with only removals raises no alert."""
        monitor = make_monitor(FIRST_PAGE, page(item("water-main-repair", "Water Main Repair Scheduled")))

        monitor.check_for_updates()
        channel.reset_mock()
        result = monitor.check_for_updates()

        assert [c.type for c in result.changes] == [ChangeType.REMOVED]
        assert result.notification is None
        channel.send.assert_not_called()

    def test_notifications_disabled(self, make_monitor, channel):
        """Test that disabled notifications are never delivered."""
        monitor = make_monitor(FIRST_PAGE, notifications=False)

        result = monitor.check_for_updates()

        assert result.notification is not None
        channel.send.assert_not_called()

    def test_history_recorded(self, make_monitor):
        """Test that each check appends a history entry."""
        monitor = make_monitor(FIRST_PAGE, SECOND_PAGE)

        monitor.check_for_updates()
        monitor.check_for_updates()

        history = monitor.history()
        assert [(e.news_count, e.changes_count) for e in history] == [(2, 2), (2, 2)]
        assert monitor.last_check() == NOW

    def test_scores_follow_active_keywords(self, make_monitor):
        """Test that each record is scored against the active keywords."""
        monitor = make_monitor(FIRST_PAGE)

        result = monitor.check_for_updates()

        scores = {record.id: score for record, score in result.scores}
        assert "budget" in scores["council-budget-hearing"].matched_keywords
        assert "council" in scores["council-budget-hearing"].matched_keywords
        assert scores["water-main-repair"].is_highlighted is False


class TestFailedFetch:
    """Tests for checks whose fetch fails."""

    def test_error_result(self, make_monitor):
        """Test the error status and message."""
        monitor = make_monitor(exhausted())

        result = monitor.check_for_updates()

        assert result.status == STATUS_ERROR
        assert result.ok is False
        assert result.message == "Error: Unable to fetch news data. Please check your internet connection."

    def test_store_untouched(self, make_monitor, store, channel):
        """Test that a failed check changes no stored data."""
        monitor = make_monitor(FIRST_PAGE, exhausted())
        monitor.check_for_updates()
        before = store.load()
        channel.reset_mock()

        monitor.check_for_updates()

        after = store.load()
        assert after.current == before.current
        assert after.previous == before.previous
        assert after.last_check == before.last_check
        assert len(monitor.history()) == 1
        channel.send.assert_not_called()


class TestOverlappingChecks:
    """Tests for the single-check guard."""

    def test_nested_trigger_is_skipped(self, store, channel):
        """Test that a trigger arriving mid-check is dropped."""
        nested = []

        def fetcher(url):
            nested.append(monitor.check_for_updates())
            return FIRST_PAGE

        monitor = NewsMonitor(store=store, config=MonitorConfig(), fetcher=fetcher,
                              channels=[channel], clock=lambda: NOW, timer_factory=FakeTimer)

        result = monitor.check_for_updates()

        assert result.status == STATUS_SUCCESS
        assert nested[0].status == STATUS_SKIPPED
        assert len(monitor.history()) == 1

    def test_guard_released_after_failure(self, make_monitor):
        """Test that a failed check does not block the next one."""
        monitor = make_monitor(exhausted(), FIRST_PAGE)

        monitor.check_for_updates()
        result = monitor.check_for_updates()

        assert result.status == STATUS_SUCCESS


class TestStructureAlert:
    """Tests for the alert on repeated empty checks."""

    def structure_alerts(self, channel):
        return [c[0][0] for c in channel.send.call_args_list if c[0][0].tag == TAG_STRUCTURE]

    def test_fires_once_per_streak(self, make_monitor, channel):
        """Test that the alert fires at the threshold and not again."""
        monitor = make_monitor(EMPTY_PAGE)

        for _ in range(2):
            monitor.check_for_updates()
        assert self.structure_alerts(channel) == []

        monitor.check_for_updates()
        assert len(self.structure_alerts(channel)) == 1
        assert monitor.empty_cycles == 3

        monitor.check_for_updates()
        assert len(self.structure_alerts(channel)) == 1

    def test_streak_resets(self, make_monitor, channel):
        """Test that a check with records resets the streak."""
        monitor = make_monitor(EMPTY_PAGE, EMPTY_PAGE, FIRST_PAGE, EMPTY_PAGE, EMPTY_PAGE)

        for _ in range(5):
            monitor.check_for_updates()

        assert monitor.empty_cycles == 2
        assert self.structure_alerts(channel) == []

    def test_empty_page_is_still_a_success(self, make_monitor):
        """Test that an empty extraction is reported as zero items."""
        monitor = make_monitor(EMPTY_PAGE)

        result = monitor.check_for_updates()

        assert result.status == STATUS_SUCCESS
        assert result.message == format_status(0, 0)


class TestConfiguration:
    """Tests for configuration changes."""

    def test_toggle_keyword_persists(self, make_monitor, store):
        """Test that a keyword toggle is saved immediately."""
        monitor = make_monitor(FIRST_PAGE)

        assert monitor.toggle_keyword("budget") is False
        assert "budget" not in store.load_config().active_keywords

        assert monitor.toggle_keyword("budget") is True
        assert "budget" in store.load_config().active_keywords

    def test_rescore_after_toggle(self, make_monitor):
        """Test that rescoring uses the new active keywords."""
        monitor = make_monitor(FIRST_PAGE)
        monitor.check_for_updates()

        monitor.toggle_keyword("budget")
        monitor.toggle_keyword("council")
        scores = {record.id: score for record, score in monitor.rescore()}

        assert scores["council-budget-hearing"].matched_keywords == ()

    def test_notifications_flag_persists(self, make_monitor, store):
        """Test that the notification preference is saved."""
        monitor = make_monitor(FIRST_PAGE, notifications=False)

        monitor.set_notifications_enabled(True)

        assert store.load_config().notifications_enabled is True

    def test_auto_check_toggle(self, make_monitor, store):
        """Test starting and stopping auto-check."""
        monitor = make_monitor(FIRST_PAGE)

        assert monitor.toggle_auto_check() is True
        assert store.load_automation() == {"enabled": True, "interval": 15}

        assert monitor.toggle_auto_check() is False
        assert store.load_automation()["enabled"] is False

    def test_interval_change_while_running(self, make_monitor, store):
        """Test that a new interval restarts a running auto-check."""
        monitor = make_monitor(FIRST_PAGE)
        monitor.start_auto_check()

        monitor.set_check_interval(60)

        assert monitor.scheduler.is_running is True
        assert monitor.scheduler.interval_ms == 60 * 60 * 1000
        assert store.load_automation() == {"enabled": True, "interval": 60}

    def test_invalid_interval(self, make_monitor, store):
        """Test that a bad interval changes nothing."""
        monitor = make_monitor(FIRST_PAGE)

        with pytest.raises(ValueError):
            monitor.set_check_interval(0)

        assert monitor.config.check_interval_minutes == 15

    def test_resume(self, store, channel):
        """Test that saved auto-check state restarts the scheduler."""
        store.save_config(MonitorConfig(auto_check_enabled=True, check_interval_minutes=30))

        monitor = NewsMonitor(store=store, fetcher=FakeFetcher(FIRST_PAGE), channels=[channel],
                              timer_factory=FakeTimer)
        monitor.resume()

        assert monitor.scheduler.is_running is True
        assert monitor.scheduler.period_minutes == 30

    def test_clear_all(self, make_monitor, store):
        """Test that clearing stops auto-check and wipes the store."""
        monitor = make_monitor(FIRST_PAGE)
        monitor.check_for_updates()
        monitor.start_auto_check()

        monitor.clear_all()

        assert monitor.scheduler.is_running is False
        assert store.load().current == []
        assert monitor.history() == []
        assert store.load_automation()["enabled"] is False


class TestScheduledChecks:
    """Tests for checks triggered by the auto-check timer."""

    def test_timer_tick_reports_result(self, store, channel):
        """Test that each timer-triggered result is passed to the callback."""
        timers = []

        def timer_factory(interval_ms, function):
            timer = FakeTimer(interval_ms, function)
            timers.append(timer)
            return timer

        on_result = Mock()
        monitor = NewsMonitor(store=store, config=MonitorConfig(), fetcher=FakeFetcher(FIRST_PAGE),
                              channels=[channel], clock=lambda: NOW, timer_factory=timer_factory,
                              on_result=on_result)
        monitor.start_auto_check()

        timers[-1].function()

        on_result.assert_called_once()
        result = on_result.call_args[0][0]
        assert result.status == STATUS_SUCCESS
        assert len(result.changes) == 2

    def test_timer_tick_without_callback(self, make_monitor):
        """Test that a tick still runs a check when no callback is set."""
        monitor = make_monitor(FIRST_PAGE)

        monitor.scheduler._tick()

        assert len(monitor.history()) == 1
