"""Re-fetch window planning for records with broken dates."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from models import Window

LOGGER = logging.getLogger(__name__)


def plan_windows(sorted_invalid_indexes: Sequence[int], max_window_size: int) -> list[Window]:
    """Group sorted indexes into the fewest contiguous (offset, limit) windows.

    Indexes are merged greedily while the span from the window start stays
    within max_window_size. A window covers a contiguous range, so it can
    include valid indexes lying between invalid ones; those are re-fetched
    but the caller discards them.

    Args:
        sorted_invalid_indexes: Distinct indexes in ascending order.
        max_window_size: Largest span one window may cover.
    """
    if max_window_size <= 0:
        raise ValueError(f"max_window_size must be positive, got {max_window_size}")
    if not sorted_invalid_indexes:
        return []

    windows: list[Window] = []
    offset = before = sorted_invalid_indexes[0]

    for current in sorted_invalid_indexes[1:]:
        if current - offset + 1 > max_window_size:
            windows.append(Window(offset, before - offset + 1))
            offset = current
        before = current

    windows.append(Window(offset, before - offset + 1))
    return windows


def total_window_size(windows: Sequence[Window]) -> int:
    """Number of records the windows will fetch in total."""
    return sum(window.limit for window in windows)


def log_progress_stats(total_count: int, fetch_size: int, invalid_indexes: Sequence[int]) -> None:
    """Log how many records the last pass fetched and how many still need repair."""
    invalid = len(invalid_indexes)
    fetch_ratio = invalid * 100.0 / fetch_size if fetch_size else 0.0
    remain_ratio = invalid * 100.0 / total_count if total_count else 0.0
    LOGGER.info(
        "Fetched=%s invalid=%s failure_ratio=%.2f%% remaining_ratio=%.2f%%",
        fetch_size,
        invalid,
        fetch_ratio,
        remain_ratio,
    )
