"""PostgreSQL upsert sink for repaired researcher and paper records."""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import psycopg2
from psycopg2.extras import Json, execute_values

from dates import normalize_date
from models import IndexedRecord, Paper, Researcher, column_names

BATCH_SIZE = 1000

LOGGER = logging.getLogger(__name__)

RESEARCHER_UPDATE_COLUMNS = ["university", "name", "city", "country", "keywords", "created_at", "updated_at"]
PAPER_UPDATE_COLUMNS = [
    "researcher_id",
    "title",
    "abstract",
    "keywords",
    "published_at",
    "created_at",
    "updated_at",
]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS researcher (
    id varchar(36) PRIMARY KEY,
    university varchar(255),
    name varchar(255),
    city varchar(255),
    country varchar(255),
    keywords jsonb,
    created_at timestamp,
    updated_at timestamp
);

CREATE TABLE IF NOT EXISTS paper (
    id varchar(36) PRIMARY KEY,
    researcher_id varchar(36),
    title varchar(255),
    abstract text,
    keywords jsonb,
    published_at timestamp,
    created_at timestamp,
    updated_at timestamp
);
"""


class PersistenceError(RuntimeError):
    """A batch upsert failed; earlier batches stay committed."""


def connect() -> Any:
    """Open a connection from the DB_* environment variables."""
    conn = psycopg2.connect(
        host=os.getenv("DB_HOST", "localhost"),
        port=int(os.getenv("DB_PORT", "5432")),
        user=os.getenv("DB_USERNAME", "root"),
        password=os.getenv("DB_PASSWORD", "root"),
        dbname=os.getenv("DB_DATABASE", "etl"),
    )
    conn.autocommit = False
    return conn


def init_schema(conn: Any) -> None:
    """Create the researcher and paper tables if they do not exist."""
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    conn.commit()
    LOGGER.info("Ensured researcher and paper tables exist")


def researcher_row(item: IndexedRecord | Researcher) -> tuple[Any, ...]:
    researcher = _unwrap(item)
    return (
        researcher.id,
        researcher.university,
        researcher.name,
        researcher.city,
        researcher.country,
        _as_json(researcher.keywords),
        _db_timestamp(researcher.created_at),
        _db_timestamp(researcher.updated_at),
    )


def paper_row(item: IndexedRecord | Paper) -> tuple[Any, ...]:
    paper = _unwrap(item)
    return (
        paper.id,
        paper.researcher_id,
        paper.title,
        paper.abstract,
        _as_json(paper.keywords),
        _db_timestamp(paper.published_at),
        _db_timestamp(paper.created_at),
        _db_timestamp(paper.updated_at),
    )


def save_researchers(conn: Any, records: Sequence[IndexedRecord | Researcher]) -> int:
    rows = [researcher_row(item) for item in records]
    return _upsert(conn, "researcher", column_names(Researcher), RESEARCHER_UPDATE_COLUMNS, rows)


def save_papers(conn: Any, records: Sequence[IndexedRecord | Paper]) -> int:
    rows = [paper_row(item) for item in records]
    return _upsert(conn, "paper", column_names(Paper), PAPER_UPDATE_COLUMNS, rows)


def build_upsert_sql(table: str, columns: Sequence[str], update_columns: Sequence[str]) -> str:
    """INSERT ... ON CONFLICT (id) DO UPDATE statement for execute_values."""
    assignments = ", ".join(f"{column} = EXCLUDED.{column}" for column in update_columns)
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES %s "
        f"ON CONFLICT (id) DO UPDATE SET {assignments}"
    )


def _upsert(
    conn: Any,
    table: str,
    columns: Sequence[str],
    update_columns: Sequence[str],
    rows: list[tuple[Any, ...]],
) -> int:
    """Upsert rows in BATCH_SIZE chunks, one statement and one commit per chunk."""
    missing_ids = [position for position, row in enumerate(rows) if row[0] is None]
    if missing_ids:
        LOGGER.error("Refusing to save %s: %s rows have no id (first at row %s)", table, len(missing_ids), missing_ids[0])
        raise PersistenceError(f"{len(missing_ids)} {table} rows have no id, first at row {missing_ids[0]}")

    sql = build_upsert_sql(table, columns, update_columns)
    log_statements = os.getenv("DB_LOGGING", "").lower() in {"1", "true", "yes"}
    saved = 0

    for start in range(0, len(rows), BATCH_SIZE):
        batch = rows[start : start + BATCH_SIZE]
        try:
            with conn.cursor() as cur:
                if log_statements:
                    LOGGER.debug("%s [%s rows]", sql, len(batch))
                execute_values(cur, sql, batch, page_size=len(batch))
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            LOGGER.error(
                "Failed to save %s batch at row %s (%s/%s already committed): %s",
                table,
                start,
                saved,
                len(rows),
                exc,
            )
            raise PersistenceError(f"Upsert into {table} failed at row {start}: {exc}") from exc

        saved += len(batch)
        LOGGER.info("Saved %s/%s %s rows", saved, len(rows), table)

    LOGGER.info("Completed saving %s %s rows (bulk upsert)", saved, table)
    return saved


def _unwrap(item: Any) -> Any:
    return item.record if isinstance(item, IndexedRecord) else item


def _as_json(keywords: list[str] | None) -> Json | None:
    return None if keywords is None else Json(keywords)


def _db_timestamp(value: Any) -> datetime | None:
    # Columns are "timestamp" without time zone and hold UTC.
    checked = normalize_date(value)
    if checked is None or checked.tzinfo is None:
        return checked
    return checked.astimezone(UTC).replace(tzinfo=None)
