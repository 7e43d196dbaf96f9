"""
Scheduler module for the NOLA News Watcher.

The scheduler owns the start/stop lifecycle of periodic checks. It does
not care how time passes: the repeating timer is created by a factory,
so the same scheduler runs on real threads, on a test-controlled clock,
or not at all when an external cron triggers checks instead.
"""

import threading
from enum import Enum
from typing import Callable, Optional

from nola_watcher.models import DEFAULT_CHECK_INTERVAL_MINUTES
from nola_watcher.utils import get_logger


# Module logger
logger = get_logger("scheduler")

MINUTE_MS = 60 * 1000


class SchedulerState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class RepeatingTimer:
    """
    Calls a function every ``interval_ms`` milliseconds on a daemon thread.

    The first call happens one full interval after start(), not immediately.
    """

    def __init__(self, interval_ms: int, function: Callable[[], None]):
        self.interval_ms = interval_ms
        self.function = function
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name="nola-watcher-timer",
            daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    def _run(self) -> None:
        interval_seconds = self.interval_ms / 1000
        while not self._stop_event.wait(interval_seconds):
            try:
                self.function()
            except Exception as e:
                # A failing tick must not kill the timer thread
                logger.exception(f"Scheduled check raised: {e}")


TimerFactory = Callable[[int, Callable[[], None]], RepeatingTimer]


class Scheduler:
    """
    Triggers a callback on a fixed period.

    States are STOPPED and RUNNING. Stopping is idempotent, and changing the
    period while running restarts the timer with no carry-over of elapsed
    time.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        timer_factory: Optional[TimerFactory] = None,
        period_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    ):
        self._callback = callback
        self._timer_factory: TimerFactory = timer_factory or RepeatingTimer
        self._timer: Optional[RepeatingTimer] = None
        self._period_minutes = _validate_period(period_minutes)
        self._lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self._timer is not None else SchedulerState.STOPPED

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    @property
    def period_minutes(self) -> int:
        return self._period_minutes

    @property
    def interval_ms(self) -> int:
        return self._period_minutes * MINUTE_MS

    def start(self, period_minutes: Optional[int] = None) -> None:
        """
        Arm the repeating timer.

        Args:
            period_minutes: Period to use. Keeps the current period if None.

        Raises:
            ValueError: If the period is shorter than one minute.
        """
        with self._lock:
            if period_minutes is not None:
                self._period_minutes = _validate_period(period_minutes)

            if self._timer is not None:
                logger.debug("Scheduler already running, re-arming timer")
                self._timer.cancel()

            self._timer = self._timer_factory(self.interval_ms, self._tick)
            self._timer.start()

        logger.info(
            f"Auto-check started: every {self._period_minutes} minute(s) "
            f"({self.interval_ms}ms)"
        )

    def stop(self) -> None:
        """Disarm the timer. Stopping a stopped scheduler does nothing."""
        with self._lock:
            if self._timer is None:
                logger.debug("No auto-check timer to stop")
                return
            self._timer.cancel()
            self._timer = None

        logger.info("Auto-check stopped")

    def reschedule(self, period_minutes: int) -> None:
        """
        Change the period.

        A running scheduler is stopped and started again with the new
        period; a stopped one just remembers it.
        """
        period = _validate_period(period_minutes)

        if not self.is_running:
            self._period_minutes = period
            logger.debug(f"Auto-check period set to {period} minute(s)")
            return

        self.stop()
        self.start(period)

    def _tick(self) -> None:
        logger.info("Auto-check triggered")
        self._callback()


def _validate_period(period_minutes: int) -> int:
    try:
        period = int(period_minutes)
    except (TypeError, ValueError):
        raise ValueError(f"Check interval must be a whole number of minutes, got: {period_minutes!r}")
    if period < 1:
        raise ValueError(f"Check interval must be at least 1 minute, got: {period}")
    return period
