"""Denormalized researcher/paper CSV export."""

from __future__ import annotations

import csv
import logging
import os
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from dates import format_datetime
from models import IndexedRecord, Paper, Researcher

CSV_FILE_PREFIX = "researcher_paper_joined"
DEFAULT_DATA_DIR = "data"

LOGGER = logging.getLogger(__name__)

CSV_COLUMNS = [
    # Researcher side
    "researcher_id",
    "researcher_name",
    "university",
    "city",
    "country",
    "researcher_keywords",
    "researcher_created_at",
    "researcher_updated_at",
    # Paper side
    "paper_id",
    "title",
    "abstract",
    "paper_keywords",
    "published_at",
    "paper_created_at",
    "paper_updated_at",
]


class ExportError(RuntimeError):
    """The joined CSV could not be written."""


def build_join_rows(
    researchers: Iterable[Researcher | IndexedRecord],
    papers: Iterable[Paper | IndexedRecord],
) -> list[dict[str, str]]:
    """Inner-join papers to researchers on researcher_id.

    Papers whose researcher is unknown are logged and left out.
    """
    by_id: dict[str, Researcher] = {}
    for item in researchers:
        researcher = _unwrap(item)
        by_id[researcher.id] = researcher

    rows: list[dict[str, str]] = []
    for item in papers:
        paper = _unwrap(item)
        researcher = by_id.get(paper.researcher_id) if paper.researcher_id is not None else None
        if researcher is None:
            LOGGER.warning(
                "Researcher not found for paper_id=%s researcher_id=%s",
                paper.id,
                paper.researcher_id,
            )
            continue
        rows.append(_join_row(researcher, paper))
    return rows


def export_joined(
    researchers: Iterable[Researcher | IndexedRecord],
    papers: Iterable[Paper | IndexedRecord],
    data_dir: str | Path | None = None,
    run_token: str | None = None,
) -> Path:
    """Write the researcher/paper join to data_dir and return the file path.

    Args:
        researchers: Repaired researchers (bare or index-wrapped).
        papers:      Repaired papers (bare or index-wrapped).
        data_dir:    Output directory. Reads DATA_DIR if not supplied; defaults to "data".
        run_token:   Filename suffix. Defaults to today's date, so a second run on
                     the same day overwrites the first.
    """
    directory = Path(data_dir or os.getenv("DATA_DIR", DEFAULT_DATA_DIR))
    token = run_token or datetime.now().strftime("%Y-%m-%d")
    path = directory / f"{CSV_FILE_PREFIX}_{token}.csv"

    rows = build_join_rows(researchers, papers)

    try:
        directory.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            writer.writerows(rows)
    except OSError as exc:
        LOGGER.error("Failed writing joined CSV to %s: %s", path, exc)
        raise ExportError(f"Could not write joined CSV to {path}: {exc}") from exc

    LOGGER.info("Wrote joined CSV %s (%s rows)", path, len(rows))
    return path


def _join_row(researcher: Researcher, paper: Paper) -> dict[str, str]:
    return {
        "researcher_id": _as_text(researcher.id),
        "researcher_name": _as_text(researcher.name),
        "university": _as_text(researcher.university),
        "city": _as_text(researcher.city),
        "country": _as_text(researcher.country),
        "researcher_keywords": _format_list(researcher.keywords),
        "researcher_created_at": format_datetime(researcher.created_at),
        "researcher_updated_at": format_datetime(researcher.updated_at),
        "paper_id": _as_text(paper.id),
        "title": _as_text(paper.title),
        "abstract": _as_text(paper.abstract),
        "paper_keywords": _format_list(paper.keywords),
        "published_at": format_datetime(paper.published_at),
        "paper_created_at": format_datetime(paper.created_at),
        "paper_updated_at": format_datetime(paper.updated_at),
    }


def _unwrap(item: Any) -> Any:
    return item.record if isinstance(item, IndexedRecord) else item


def _format_list(values: list[str] | None) -> str:
    return ", ".join(values) if values else ""


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)
