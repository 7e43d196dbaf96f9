"""
Compare module for the NOLA News Watcher.

This module compares two generations of news records and reports which
records were added and which were removed. Records are matched by id
only: a record that keeps its id but changes its title is not a change.
"""

from dataclasses import replace
from typing import Dict, List, Sequence, Set

from nola_watcher.models import ChangeEvent, ChangeType, NewsRecord
from nola_watcher.utils import get_logger


# Module logger
logger = get_logger("compare")


def get_record_identifier(record: NewsRecord) -> str:
    """
    Get the identity used to match records across generations.

    Args:
        record: A news record.

    Returns:
        The record id.
    """
    return record.id


def build_id_set(records: Sequence[NewsRecord]) -> Set[str]:
    """
    Build a set of ids from a list of records.

    Args:
        records: Sequence of news records.

    Returns:
        Set of non-empty record ids.
    """
    return {
        get_record_identifier(r)
        for r in records
        if get_record_identifier(r)
    }


def find_added_records(
    previous: Sequence[NewsRecord],
    current: Sequence[NewsRecord]
) -> List[NewsRecord]:
    """
    Find records that are in current but not in previous.

    Args:
        previous: Records from the prior generation.
        current: Records from the newest generation.

    Returns:
        Added records in current's order.
    """
    previous_ids = build_id_set(previous)

    return [
        r for r in current
        if get_record_identifier(r) not in previous_ids
    ]


def find_removed_records(
    previous: Sequence[NewsRecord],
    current: Sequence[NewsRecord]
) -> List[NewsRecord]:
    """
    Find records that were in previous but not in current.

    Args:
        previous: Records from the prior generation.
        current: Records from the newest generation.

    Returns:
        Removed records in previous's order.
    """
    current_ids = build_id_set(current)

    return [
        r for r in previous
        if get_record_identifier(r) not in current_ids
    ]


def detect_changes(
    previous: Sequence[NewsRecord],
    current: Sequence[NewsRecord]
) -> List[ChangeEvent]:
    """
    Compute the symmetric difference between two generations.

    All ADDED events come first, in current's order, followed by all
    REMOVED events in previous's order.

    Args:
        previous: Records from the prior generation.
        current: Records from the newest generation.

    Returns:
        List of change events; empty when both generations share every id.
    """
    added = find_added_records(previous, current)
    removed = find_removed_records(previous, current)

    changes = [ChangeEvent(type=ChangeType.ADDED, record=r) for r in added]
    changes.extend(ChangeEvent(type=ChangeType.REMOVED, record=r) for r in removed)

    logger.info(
        f"Detected {len(changes)} change(s): "
        f"{len(added)} added, {len(removed)} removed"
    )
    for change in changes:
        logger.debug(f"{change.type.value}: {change.description}")

    return changes


def filter_changes(changes: Sequence[ChangeEvent], change_type: ChangeType) -> List[ChangeEvent]:
    """Return only the changes of one type, keeping order."""
    return [c for c in changes if c.type is change_type]


def mark_new_records(
    current: Sequence[NewsRecord],
    changes: Sequence[ChangeEvent]
) -> List[NewsRecord]:
    """
    Annotate the current generation with the transient ``is_new`` flag.

    Records are immutable, so annotated copies are returned.

    Args:
        current: Records from the newest generation.
        changes: Changes detected for that generation.

    Returns:
        Records in current's order, with ``is_new`` set on added ones.
    """
    added_ids = {
        get_record_identifier(c.record)
        for c in filter_changes(changes, ChangeType.ADDED)
    }

    return [
        replace(r, is_new=True) if get_record_identifier(r) in added_ids else r
        for r in current
    ]


def get_comparison_summary(
    previous: Sequence[NewsRecord],
    current: Sequence[NewsRecord]
) -> Dict[str, int]:
    """
    Get a summary of the comparison between two generations.

    Args:
        previous: Records from the prior generation.
        current: Records from the newest generation.

    Returns:
        Dictionary with comparison statistics.
    """
    added = find_added_records(previous, current)
    removed = find_removed_records(previous, current)

    unchanged = build_id_set(current) & build_id_set(previous)

    return {
        "current_count": len(current),
        "previous_count": len(previous),
        "added_count": len(added),
        "removed_count": len(removed),
        "unchanged_count": len(unchanged)
    }
