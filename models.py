"""Shared typed models for the ETL pipeline."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, NamedTuple

from dates import parse_date


@dataclass(frozen=True, slots=True)
class Researcher:
    """Normalized researcher record as persisted and exported."""

    id: str | None
    university: str | None
    name: str | None
    city: str | None
    country: str | None
    keywords: list[str] | None
    created_at: datetime | None
    updated_at: datetime | None

    DATE_FIELDS = ("created_at", "updated_at")

    def is_date_invalid(self) -> bool:
        return any(getattr(self, name) is None for name in self.DATE_FIELDS)


@dataclass(frozen=True, slots=True)
class Paper:
    """Normalized paper record as persisted and exported."""

    id: str | None
    researcher_id: str | None
    title: str | None
    abstract: str | None
    keywords: list[str] | None
    published_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None

    DATE_FIELDS = ("published_at", "created_at", "updated_at")

    def is_date_invalid(self) -> bool:
        return any(getattr(self, name) is None for name in self.DATE_FIELDS)


class IndexedRecord(NamedTuple):
    """An entity paired with its absolute position in the upstream collection.

    The index only lives for one fetch/repair pass and is dropped before
    anything is written to the database.
    """

    record: Researcher | Paper
    index: int


class Window(NamedTuple):
    offset: int
    limit: int


@dataclass(frozen=True, slots=True)
class OffsetInfo:
    offset: int
    limit: int
    total_count: int


@dataclass(frozen=True, slots=True)
class PageEnvelope:
    """One page of the upstream offset/limit API."""

    items: list[dict[str, Any]]
    offset_info: OffsetInfo

    @classmethod
    def from_payload(cls, payload: Any) -> PageEnvelope:
        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            raise RuntimeError(f"Unexpected page payload shape: {payload!r:.200}")

        info = payload.get("offsetInfo") if isinstance(payload.get("offsetInfo"), dict) else {}
        return cls(
            # A malformed entry keeps its slot as an empty item so later positions
            # still match upstream offsets; its missing dates get it re-fetched.
            items=[item if isinstance(item, dict) else {} for item in payload["items"]],
            offset_info=OffsetInfo(
                offset=int(info.get("offset") or 0),
                limit=int(info.get("limit") or 0),
                total_count=int(info.get("totalCount") or 0),
            ),
        )


def researcher_from_item(item: dict[str, Any]) -> Researcher:
    """Map a camelCase API item to a Researcher, sanitizing its dates."""
    return Researcher(
        id=_as_str(item.get("id")),
        university=_as_str(item.get("university")),
        name=_as_str(item.get("name")),
        city=_as_str(item.get("city")),
        country=_as_str(item.get("country")),
        keywords=_as_keywords(item.get("keywords")),
        created_at=parse_date(item.get("createdAt")),
        updated_at=parse_date(item.get("updatedAt")),
    )


def paper_from_item(item: dict[str, Any]) -> Paper:
    """Map a camelCase API item to a Paper, sanitizing its dates."""
    return Paper(
        id=_as_str(item.get("id")),
        researcher_id=_as_str(item.get("researcherId")),
        title=_as_str(item.get("title")),
        abstract=_as_str(item.get("abstract")),
        keywords=_as_keywords(item.get("keywords")),
        published_at=parse_date(item.get("publishedAt")),
        created_at=parse_date(item.get("createdAt")),
        updated_at=parse_date(item.get("updatedAt")),
    )


def column_names(record_type: type) -> list[str]:
    """Field names of an entity dataclass, in declaration order."""
    return [f.name for f in fields(record_type)]


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _as_keywords(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(keyword) for keyword in value if keyword is not None]
