"""
Storage module for the NOLA News Watcher.

All durable state lives in independent JSON files ("buckets") under one
data directory:

- snapshot.json: the current and previous record generations
- automation.json: whether auto-check is on and its interval
- history.json: the most recent checks, newest first
- preferences.json: keywords and notification preference

Each bucket is written whole with an atomic temp-file-and-rename, and is
read back tolerantly: a missing or corrupt bucket loads as defaults.
"""

import math
import os
from typing import Any, Dict, List, Optional, Sequence

from nola_watcher.models import (
    DEFAULT_CHECK_INTERVAL_MINUTES,
    CheckHistoryEntry,
    MonitorConfig,
    NewsRecord,
    Snapshot,
)
from nola_watcher.utils import get_logger, now_ms, remove_file, safe_read_json, safe_write_json


# Module logger
logger = get_logger("store")

DEFAULT_DATA_PATH = "data"
MAX_HISTORY_ENTRIES = 10

SNAPSHOT_FILE = "snapshot.json"
AUTOMATION_FILE = "automation.json"
HISTORY_FILE = "history.json"
PREFERENCES_FILE = "preferences.json"


def _parse_records(data: Any, bucket: str) -> List[NewsRecord]:
    """Parse a list of persisted records, dropping malformed entries."""
    if not isinstance(data, list):
        if data is not None:
            logger.warning(f"Expected a list of records in {bucket}, using empty list")
        return []

    records = []
    for entry in data:
        record = NewsRecord.from_dict(entry)
        if record is None:
            logger.warning(f"Dropping malformed record in {bucket}: {entry!r}")
            continue
        records.append(record)
    return records


def _parse_interval(value: Any) -> int:
    try:
        interval = int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_CHECK_INTERVAL_MINUTES
    return interval if interval >= 1 else DEFAULT_CHECK_INTERVAL_MINUTES


def _parse_string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value if isinstance(v, str)]


class SnapshotStore:
    """
    File-backed store for record generations, history and configuration.

    The store assumes a single writer process; every save replaces a whole
    bucket.
    """

    def __init__(self, data_dir: str = DEFAULT_DATA_PATH, max_history: int = MAX_HISTORY_ENTRIES):
        self.data_dir = data_dir
        self.max_history = max_history

    def __repr__(self) -> str:
        return f"SnapshotStore(data_dir={self.data_dir!r})"

    def _path(self, filename: str) -> str:
        return os.path.join(self.data_dir, filename)

    # ------------------------------------------------------------------
    # Snapshot bucket
    # ------------------------------------------------------------------

    def save(
        self,
        current: Sequence[NewsRecord],
        previous: Sequence[NewsRecord],
        last_check: Optional[int] = None
    ) -> Optional[int]:
        """
        Persist both generations in a single write.

        Args:
            current: Newest generation.
            previous: Generation before it.
            last_check: Check time in epoch milliseconds. Defaults to now.

        Returns:
            The lastCheck value written, or None if the write failed.
        """
        if last_check is None:
            last_check = now_ms()

        data = {
            "lastCheck": last_check,
            "currentNews": [r.to_dict() for r in current],
            "previousNews": [r.to_dict() for r in previous],
        }

        if not safe_write_json(self._path(SNAPSHOT_FILE), data):
            logger.error("Failed to save snapshot")
            return None

        logger.info(f"Saved snapshot: {len(current)} current, {len(previous)} previous")
        return last_check

    def load(self) -> Snapshot:
        """
        Load both generations.

        Returns:
            Snapshot with empty generations and no last check when the
            bucket is missing or unreadable.
        """
        data = safe_read_json(self._path(SNAPSHOT_FILE), default={})

        if not isinstance(data, dict):
            logger.warning("Unexpected snapshot format, starting fresh")
            return Snapshot()

        last_check = data.get("lastCheck")
        if (not isinstance(last_check, (int, float)) or isinstance(last_check, bool)
                or not math.isfinite(last_check)):
            last_check = None

        snapshot = Snapshot(
            current=_parse_records(data.get("currentNews"), SNAPSHOT_FILE),
            previous=_parse_records(data.get("previousNews"), SNAPSHOT_FILE),
            last_check=int(last_check) if last_check is not None else None,
        )

        logger.debug(
            f"Loaded snapshot: {len(snapshot.current)} current, "
            f"{len(snapshot.previous)} previous"
        )
        return snapshot

    # ------------------------------------------------------------------
    # History bucket
    # ------------------------------------------------------------------

    def load_history(self) -> List[CheckHistoryEntry]:
        """Load check history, newest first."""
        data = safe_read_json(self._path(HISTORY_FILE), default=[])

        if not isinstance(data, list):
            logger.warning("Unexpected history format, returning empty history")
            return []

        entries = [CheckHistoryEntry.from_dict(item) for item in data]
        return [e for e in entries if e is not None][:self.max_history]

    def append_history(self, entry: CheckHistoryEntry) -> List[CheckHistoryEntry]:
        """
        Record a completed check, evicting the oldest entries over the cap.

        Args:
            entry: The new history entry.

        Returns:
            The history after the append, newest first.
        """
        history = [entry] + self.load_history()
        history = history[:self.max_history]

        if not safe_write_json(self._path(HISTORY_FILE), [e.to_dict() for e in history]):
            logger.error("Failed to save history")

        return history

    # ------------------------------------------------------------------
    # Automation and preference buckets
    # ------------------------------------------------------------------

    def save_automation(self, enabled: bool, interval: int) -> bool:
        """Persist auto-check state."""
        return safe_write_json(
            self._path(AUTOMATION_FILE),
            {"enabled": bool(enabled), "interval": int(interval)}
        )

    def load_automation(self) -> Dict[str, Any]:
        """
        Load auto-check state.

        Returns:
            Dictionary with "enabled" and "interval" keys.
        """
        data = safe_read_json(self._path(AUTOMATION_FILE), default={})
        if not isinstance(data, dict):
            data = {}

        return {
            "enabled": data.get("enabled") is True,
            "interval": _parse_interval(data.get("interval", DEFAULT_CHECK_INTERVAL_MINUTES)),
        }

    def save_config(self, config: MonitorConfig) -> bool:
        """
        Persist the full monitor configuration.

        Writes both the automation and the preferences bucket.
        """
        automation_ok = self.save_automation(
            config.auto_check_enabled,
            config.check_interval_minutes
        )
        preferences_ok = safe_write_json(
            self._path(PREFERENCES_FILE),
            {
                "keywords": list(config.keywords),
                "activeKeywords": list(config.active_keywords),
                "notificationsEnabled": config.notifications_enabled,
            }
        )

        if not (automation_ok and preferences_ok):
            logger.error("Failed to save monitor configuration")
            return False

        logger.debug("Saved monitor configuration")
        return True

    def load_config(self) -> MonitorConfig:
        """
        Load the monitor configuration, falling back to defaults.

        Returns:
            MonitorConfig assembled from the automation and preference buckets.
        """
        automation = self.load_automation()
        preferences = safe_read_json(self._path(PREFERENCES_FILE), default={})
        if not isinstance(preferences, dict):
            logger.warning("Unexpected preferences format, using defaults")
            preferences = {}

        config = MonitorConfig(
            check_interval_minutes=automation["interval"],
            auto_check_enabled=automation["enabled"],
            notifications_enabled=preferences.get("notificationsEnabled") is True,
        )

        keywords = _parse_string_list(preferences.get("keywords"))
        if keywords:
            active = _parse_string_list(preferences.get("activeKeywords"))
            config = MonitorConfig(
                keywords=keywords,
                active_keywords=active if active is not None else keywords,
                check_interval_minutes=config.check_interval_minutes,
                notifications_enabled=config.notifications_enabled,
                auto_check_enabled=config.auto_check_enabled,
            )

        return config

    # ------------------------------------------------------------------

    def clear_all(self) -> bool:
        """
        Remove every bucket.

        Returns:
            True if all buckets are gone.
        """
        results = [
            remove_file(self._path(filename))
            for filename in (SNAPSHOT_FILE, AUTOMATION_FILE, HISTORY_FILE, PREFERENCES_FILE)
        ]

        if all(results):
            logger.info(f"Cleared all data in {self.data_dir}")
            return True

        logger.error(f"Some data in {self.data_dir} could not be cleared")
        return False
