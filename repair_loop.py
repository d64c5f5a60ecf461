"""Paginated fetch with targeted re-fetching of records whose dates failed to parse."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Callable

from data_client import DataClient
from models import IndexedRecord, PageEnvelope, Paper, Researcher, Window, paper_from_item, researcher_from_item
from windows import log_progress_stats, plan_windows, total_window_size

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityKind:
    """How to page through and parse one upstream collection."""

    name: str
    fetch_page: Callable[[int, int], PageEnvelope]
    from_item: Callable[[dict[str, Any]], Researcher | Paper]


@dataclass
class RepairResult:
    records: list[IndexedRecord] = field(default_factory=list)
    api_calls: int = 0
    iterations: int = 0

    @property
    def entities(self) -> list[Researcher | Paper]:
        return [item.record for item in self.records]


def researcher_kind(client: DataClient) -> EntityKind:
    return EntityKind(name="researchers", fetch_page=client.get_researchers, from_item=researcher_from_item)


def paper_kind(client: DataClient) -> EntityKind:
    return EntityKind(name="papers", fetch_page=client.get_papers, from_item=paper_from_item)


def fetch_all_with_repair(kind: EntityKind, max_window_size: int) -> RepairResult:
    """Fetch a whole collection, then re-fetch broken records until none remain.

    The total count comes from a one-record count request. After the full pass, every
    index with a missing date is re-requested through planned windows and the
    fresh copy replaces the broken slot. Only the replaced records are checked
    again, and the loop runs until that subset is clean. There is no cap on
    the number of rounds.

    Any upstream error propagates and aborts the run for this kind.
    """
    if max_window_size <= 0:
        raise ValueError(f"max_window_size must be positive, got {max_window_size}")

    first = kind.fetch_page(0, 1)
    total_count = first.offset_info.total_count
    if total_count <= 0:
        LOGGER.info("No %s to fetch (total_count=%s)", kind.name, total_count)
        return RepairResult()

    LOGGER.info("Fetching %s %s in pages of %s", total_count, kind.name, max_window_size)
    end = (total_count - 1) // max_window_size * max_window_size
    records, api_calls = fetch_by_offsets(kind, 0, end, max_window_size)

    invalid_indexes = get_invalid_indexes(records)
    fetch_size = total_count
    iterations = 0

    while invalid_indexes:
        iterations += 1
        log_progress_stats(total_count, fetch_size, invalid_indexes)

        windows = plan_windows(invalid_indexes, max_window_size)
        fetch_size = total_window_size(windows)
        LOGGER.info(
            "Repair round %s for %s: invalid=%s windows=%s",
            iterations,
            kind.name,
            len(invalid_indexes),
            len(windows),
        )

        refetched, calls = fetch_by_windows(kind, windows)
        api_calls += calls

        extracted = merge_repaired(records, refetched, invalid_indexes)
        invalid_indexes = get_invalid_indexes(extracted)

    LOGGER.info(
        "Done: GET /%s total api_calls=%s repair_rounds=%s records=%s",
        kind.name,
        api_calls,
        iterations,
        len(records),
    )
    return RepairResult(records=records, api_calls=api_calls, iterations=iterations)


def fetch_by_offsets(kind: EntityKind, start: int, end: int, step: int) -> tuple[list[IndexedRecord], int]:
    """Fetch pages of size step at offsets start..end inclusive."""
    records: list[IndexedRecord] = []
    calls = 0
    for offset in range(start, end + 1, step):
        page = kind.fetch_page(offset, step)
        calls += 1
        records.extend(_index_items(kind, page, offset))
    return records, calls


def fetch_by_windows(kind: EntityKind, windows: Sequence[Window]) -> tuple[list[IndexedRecord], int]:
    """Fetch each (offset, limit) window in order, indexing items from the window offset."""
    records: list[IndexedRecord] = []
    calls = 0
    for offset, limit in windows:
        page = kind.fetch_page(offset, limit)
        calls += 1
        records.extend(_index_items(kind, page, offset))
    return records, calls


def merge_repaired(
    records: list[IndexedRecord],
    refetched: Sequence[IndexedRecord],
    invalid_indexes: Sequence[int],
) -> list[IndexedRecord]:
    """Overwrite invalid slots in place and return the records that were written.

    Re-fetched records outside the invalid set are discarded.
    """
    invalid_set = set(invalid_indexes)
    extracted = [item for item in refetched if item.index in invalid_set]
    for item in extracted:
        if 0 <= item.index < len(records) and records[item.index].index == item.index:
            records[item.index] = item
        else:
            _replace_by_index(records, item)
    return extracted


def get_invalid_indexes(records: Sequence[IndexedRecord]) -> list[int]:
    """Sorted indexes of records with at least one missing date field."""
    return sorted(item.index for item in records if item.record.is_date_invalid())


def _index_items(kind: EntityKind, page: PageEnvelope, offset: int) -> list[IndexedRecord]:
    return [IndexedRecord(kind.from_item(item), offset + position) for position, item in enumerate(page.items)]


def _replace_by_index(records: list[IndexedRecord], item: IndexedRecord) -> None:
    # Slow path for short pages, where list position and index drift apart.
    for position, existing in enumerate(records):
        if existing.index == item.index:
            records[position] = item
            return
    LOGGER.warning("Re-fetched index %s has no slot in the collection; dropped", item.index)
