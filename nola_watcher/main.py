#!/usr/bin/env python3
"""
Main entry point for the NOLA News Watcher.

By default a single check runs:
fetch → extract → detect → score → persist → notify

With WATCH=true, or when auto-check was left on by a previous run, the
process keeps running and checks on a fixed period until interrupted.
AUTO_CHECK=false turns saved auto-check off. CLEAR_DATA=true wipes all
stored data and exits.
"""

import os
import sys
import time
from functools import partial
from typing import List, Optional

from nola_watcher.fetch import DEFAULT_RELAYS, DEFAULT_TARGET_URL, fetch, validate_url
from nola_watcher.monitor import CycleResult, NewsMonitor
from nola_watcher.notify import default_channels
from nola_watcher.store import DEFAULT_DATA_PATH, SnapshotStore
from nola_watcher.utils import get_env_flag, get_env_var, get_logger, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2

MAX_LISTED_ITEMS = 20


def get_target_url() -> str:
    """
    Get the URL of the news listing to watch.

    Returns:
        NOLA_TARGET_URL if set, the nola.gov news page otherwise.
    """
    return get_env_var("NOLA_TARGET_URL", required=False, default=DEFAULT_TARGET_URL) or DEFAULT_TARGET_URL


def get_relays() -> List[str]:
    """
    Get the ordered list of relays to fetch through.

    First checks for the NOLA_RELAYS environment variable (comma-separated
    templates, "direct" for no relay), falls back to the default relays.

    Returns:
        List of relay templates.
    """
    logger = get_logger("main")

    custom_relays = os.environ.get("NOLA_RELAYS", "")

    if custom_relays.strip():
        relays = [
            "" if relay.strip().lower() == "direct" else relay.strip()
            for relay in custom_relays.split(",")
            if relay.strip()
        ]
        if relays:
            logger.info(f"Using {len(relays)} custom relay(s) from environment")
            return relays

    return list(DEFAULT_RELAYS)


def get_data_path() -> str:
    """Directory holding the stored buckets (DATA_PATH, default "data")."""
    return get_env_var("DATA_PATH", required=False, default=DEFAULT_DATA_PATH) or DEFAULT_DATA_PATH


def get_interval_override() -> Optional[int]:
    """
    Read CHECK_INTERVAL_MINUTES.

    Raises:
        ValueError: If the variable is set but not a positive integer.
    """
    value = get_env_var("CHECK_INTERVAL_MINUTES", required=False)
    if value is None:
        return None
    try:
        minutes = int(value)
    except ValueError:
        raise ValueError(f"CHECK_INTERVAL_MINUTES must be a whole number, got: {value}")
    if minutes < 1:
        raise ValueError(f"CHECK_INTERVAL_MINUTES must be at least 1, got: {minutes}")
    return minutes


def log_cycle_result(result: CycleResult) -> None:
    """Write the outcome of a check to the log, one line per item."""
    logger = get_logger("main")

    if not result.ok:
        return

    for change in result.changes:
        logger.info(f"{change.type.value}: {change.description} ({change.record.date} | From {change.record.source})")

    for record, score in result.scores[:MAX_LISTED_ITEMS]:
        marker = " [NEW]" if record.is_new else ""
        keywords = f" [{', '.join(score.matched_keywords)}]" if score.matched_keywords else ""
        logger.info(
            f"{score.score}/5 ({score.level}){marker} {record.title}{keywords} - {record.url}"
        )


def build_monitor(dry_run: bool = False) -> NewsMonitor:
    """
    Create a monitor from the environment and the stored configuration.

    Raises:
        ValueError: If the environment holds an invalid setting.
    """
    target_url = get_target_url()
    if not validate_url(target_url):
        raise ValueError(f"NOLA_TARGET_URL is not a valid http(s) URL: {target_url}")

    store = SnapshotStore(get_data_path())
    config = store.load_config()

    interval = get_interval_override()
    if interval is not None:
        config.check_interval_minutes = interval

    if os.environ.get("NOTIFICATIONS_ENABLED", "").strip():
        config.notifications_enabled = get_env_flag("NOTIFICATIONS_ENABLED")

    store.save_config(config)

    return NewsMonitor(
        store=store,
        config=config,
        target_url=target_url,
        fetcher=partial(fetch, relays=get_relays()),
        channels=default_channels(dry_run=dry_run),
        on_result=log_cycle_result,
    )


def run_watch(monitor: NewsMonitor) -> int:
    """
    Check immediately, then keep checking on the configured period.

    Returns:
        Exit code once interrupted.
    """
    logger = get_logger("main")

    log_cycle_result(monitor.check_for_updates())

    if monitor.config.auto_check_enabled:
        monitor.resume()
    else:
        monitor.start_auto_check()
    logger.info(f"Watching {monitor.target_url} every {monitor.config.check_interval_minutes} minute(s)")

    try:
        while monitor.scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        # Saved auto-check state is kept so the next start resumes watching
        logger.info("Stopping watch")
        monitor.scheduler.stop()

    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the NOLA News Watcher.

    Sets up logging and runs a single check, a watch loop or a data wipe
    with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    dry_run = get_env_flag("DRY_RUN")
    if dry_run:
        logger.info("Running in DRY RUN mode - emails will not be sent")

    try:
        monitor = build_monitor(dry_run=dry_run)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    try:
        if get_env_flag("CLEAR_DATA"):
            monitor.clear_all()
            return EXIT_SUCCESS

        if os.environ.get("AUTO_CHECK", "").strip() and not get_env_flag("AUTO_CHECK"):
            monitor.stop_auto_check()

        if get_env_flag("WATCH") or monitor.config.auto_check_enabled:
            return run_watch(monitor)

        result = monitor.check_for_updates()
        log_cycle_result(result)
        return EXIT_SUCCESS if result.ok else EXIT_FAILURE

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
