from __future__ import annotations

from collections import Counter
from unittest.mock import MagicMock

import pytest

from models import IndexedRecord, PageEnvelope, Researcher, Window, researcher_from_item
from repair_loop import (
    EntityKind,
    fetch_all_with_repair,
    fetch_by_offsets,
    fetch_by_windows,
    get_invalid_indexes,
    merge_repaired,
    paper_kind,
    researcher_kind,
)

_VALID = "2024-01-01T00:00:00Z"


class FakeApi:
    """In-memory offset/limit API.

    bad_fetches maps an index to how many times it comes back with a broken
    createdAt before the upstream serves a clean copy. malformed_fetches does
    the same with a null entry in place of the item.
    """

    def __init__(
        self,
        total: int,
        bad_fetches: dict[int, int] | None = None,
        malformed_fetches: dict[int, int] | None = None,
    ) -> None:
        self.total = total
        self.bad_fetches = dict(bad_fetches or {})
        self.malformed_fetches = dict(malformed_fetches or {})
        self.served: Counter[int] = Counter()
        self.calls: list[tuple[int, int]] = []

    def fetch_page(self, offset: int, limit: int) -> PageEnvelope:
        self.calls.append((offset, limit))
        items: list[dict | None] = []
        for index in range(offset, min(offset + limit, self.total)):
            self.served[index] += 1
            if self.served[index] <= self.malformed_fetches.get(index, 0):
                items.append(None)
                continue
            broken = self.served[index] <= self.bad_fetches.get(index, 0)
            items.append(
                {
                    "id": f"r-{index}",
                    "name": f"researcher {index} v{self.served[index]}",
                    "keywords": ["ai"],
                    "createdAt": "2024-13-01T10:00:00Z" if broken else _VALID,
                    "updatedAt": _VALID,
                }
            )
        payload = {"items": items, "offsetInfo": {"offset": offset, "limit": limit, "totalCount": self.total}}
        return PageEnvelope.from_payload(payload)

    def kind(self) -> EntityKind:
        return EntityKind(name="researchers", fetch_page=self.fetch_page, from_item=researcher_from_item)


def _record(index: int, created_at: str | None = _VALID) -> IndexedRecord:
    item = {"id": f"r-{index}", "createdAt": created_at, "updatedAt": _VALID}
    return IndexedRecord(researcher_from_item(item), index)


def test_zero_total_returns_empty_without_paging() -> None:
    api = FakeApi(total=0)

    result = fetch_all_with_repair(api.kind(), 10)

    assert result.records == []
    assert result.api_calls == 0
    assert api.calls == [(0, 1)]


def test_full_fetch_pages_by_window_and_assigns_indexes() -> None:
    api = FakeApi(total=25)

    result = fetch_all_with_repair(api.kind(), 10)

    assert api.calls == [(0, 1), (0, 10), (10, 10), (20, 10)]
    assert [item.index for item in result.records] == list(range(25))
    assert result.records[24].record.id == "r-24"
    assert result.api_calls == 3
    assert result.iterations == 0


def test_total_equal_to_window_is_one_page() -> None:
    api = FakeApi(total=10)

    fetch_all_with_repair(api.kind(), 10)

    assert api.calls == [(0, 1), (0, 10)]


def test_invalid_records_are_refetched_and_replaced() -> None:
    api = FakeApi(total=25, bad_fetches={3: 1, 7: 1, 22: 1})

    result = fetch_all_with_repair(api.kind(), 10)

    assert api.calls[4:] == [(3, 5), (22, 1)]
    assert get_invalid_indexes(result.records) == []
    assert result.api_calls == 5
    assert result.iterations == 1
    assert result.records[3].record.name == "researcher 3 v2"


def test_extra_coverage_is_not_merged() -> None:
    api = FakeApi(total=25, bad_fetches={3: 1, 7: 1})

    result = fetch_all_with_repair(api.kind(), 10)

    # 4..6 were re-fetched as part of the (3, 5) window but keep their first copy.
    assert api.served[5] == 2
    assert result.records[5].record.name == "researcher 5 v1"
    assert result.records[7].record.name == "researcher 7 v2"


def test_loop_repeats_until_subset_is_clean() -> None:
    api = FakeApi(total=12, bad_fetches={0: 3, 11: 1})

    result = fetch_all_with_repair(api.kind(), 10)

    assert result.iterations == 2
    assert get_invalid_indexes(result.records) == []
    assert result.records[0].record.name == "researcher 0 v4"
    # The one-record count request also serves index 0, so it comes back clean on the second round.
    assert api.calls[3:] == [(0, 1), (11, 1), (0, 1)]


def test_malformed_item_keeps_later_indexes_aligned() -> None:
    api = FakeApi(total=5, bad_fetches={3: 1}, malformed_fetches={1: 1})

    result = fetch_all_with_repair(api.kind(), 10)

    assert [item.index for item in result.records] == [0, 1, 2, 3, 4]
    assert [item.record.id for item in result.records] == ["r-0", "r-1", "r-2", "r-3", "r-4"]
    assert api.calls[2:] == [(1, 3)]
    assert result.iterations == 1


def test_from_payload_keeps_slot_for_non_dict_item() -> None:
    payload = {
        "items": [{"id": "r-0"}, None, "junk", {"id": "r-3"}],
        "offsetInfo": {"offset": 0, "limit": 4, "totalCount": 4},
    }

    page = PageEnvelope.from_payload(payload)
    record = researcher_from_item(page.items[1])

    assert page.items == [{"id": "r-0"}, {}, {}, {"id": "r-3"}]
    assert record.id is None
    assert record.is_date_invalid()


def test_upstream_failure_propagates() -> None:
    fetch_page = MagicMock(side_effect=RuntimeError("boom"))
    kind = EntityKind(name="researchers", fetch_page=fetch_page, from_item=researcher_from_item)

    with pytest.raises(RuntimeError, match="boom"):
        fetch_all_with_repair(kind, 10)


def test_non_positive_window_rejected() -> None:
    with pytest.raises(ValueError):
        fetch_all_with_repair(FakeApi(total=5).kind(), 0)


def test_fetch_by_offsets_passes_offsets_and_limits() -> None:
    api = FakeApi(total=21)

    records, calls = fetch_by_offsets(api.kind(), 0, 20, 10)

    assert api.calls == [(0, 10), (10, 10), (20, 10)]
    assert calls == 3
    assert len(records) == 21


def test_fetch_by_offsets_indexes_from_start_offset() -> None:
    api = FakeApi(total=8)

    records, _ = fetch_by_offsets(api.kind(), 5, 7, 10)

    assert [item.index for item in records] == [5, 6, 7]


def test_fetch_by_windows_uses_window_bounds() -> None:
    api = FakeApi(total=30)

    records, calls = fetch_by_windows(api.kind(), [Window(0, 5), Window(20, 3)])

    assert api.calls == [(0, 5), (20, 3)]
    assert calls == 2
    assert [item.index for item in records] == [0, 1, 2, 3, 4, 20, 21, 22]


def test_get_invalid_indexes_flags_any_missing_date() -> None:
    records = [
        _record(0),
        _record(1, "2024-13-01T10:00:00Z"),
        _record(2, "not-a-date"),
        _record(3, '0O≥-"0nL}.7Z'),
        _record(4, None),
        _record(5),
    ]

    assert get_invalid_indexes(records) == [1, 2, 3, 4]


def test_get_invalid_indexes_sorted_regardless_of_order() -> None:
    records = [_record(9, None), _record(2, None), _record(5)]

    assert get_invalid_indexes(records) == [2, 9]


def test_detect_on_clean_collection_is_stable() -> None:
    records = fetch_all_with_repair(FakeApi(total=15, bad_fetches={4: 2}).kind(), 10).records

    assert get_invalid_indexes(records) == []
    assert get_invalid_indexes(records) == []


def test_merge_repaired_returns_only_targeted_records() -> None:
    records = [_record(i, None if i in (1, 3) else _VALID) for i in range(5)]
    refetched = [_record(i) for i in range(1, 4)]

    extracted = merge_repaired(records, refetched, [1, 3])

    assert [item.index for item in extracted] == [1, 3]
    assert records[1] is refetched[0]
    assert records[2] is not refetched[1]
    assert records[3] is refetched[2]


def test_merge_repaired_handles_short_collection() -> None:
    # Index 4 sits at list position 3 because the upstream skipped an item.
    records = [_record(0), _record(1), _record(2), _record(4, None)]
    repaired = _record(4)

    merge_repaired(records, [repaired], [4])

    assert records[3] is repaired


def test_kind_factories_bind_client_methods() -> None:
    client = MagicMock()

    assert researcher_kind(client).fetch_page is client.get_researchers
    assert paper_kind(client).fetch_page is client.get_papers
    assert isinstance(researcher_kind(client).from_item({"id": "x"}), Researcher)
