"""CLI entrypoint for the monthly researcher/paper ETL run.

Each invocation performs exactly one run: researchers, then papers, then the
joined CSV export. Deployment triggers it from cron on the first day of every
month at midnight (``0 0 1 * *``).
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from csv_sink import export_joined
from data_client import DataClient
from db_sink import connect, init_schema, save_papers, save_researchers
from repair_loop import fetch_all_with_repair, paper_kind, researcher_kind

MAX_WINDOW_SIZE = 100


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Run the researcher/paper ETL -> PostgreSQL -> CSV pipeline")
    parser.add_argument(
        "--max-window-size",
        type=int,
        default=MAX_WINDOW_SIZE,
        help="Page size for the full fetch and upper bound for each repair window",
    )
    parser.add_argument("--data-dir", default=None, help="Directory for the joined CSV (default: DATA_DIR or ./data)")
    parser.add_argument("--run-token", default=None, help="CSV filename suffix (default: today's date)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch, repair and export, but skip the database upserts",
    )
    parser.add_argument("--init-db", action="store_true", help="Create the researcher/paper tables before running")
    return parser.parse_args(argv)


def run_etl(
    client: DataClient,
    conn: Any,
    max_window_size: int = MAX_WINDOW_SIZE,
    data_dir: str | Path | None = None,
    run_token: str | None = None,
    dry_run: bool = False,
) -> Path:
    """Run one full cycle and return the CSV path. Errors propagate."""
    logging.info("=== ETL start ===")

    logging.info("1/3 researcher ETL start")
    researchers = fetch_all_with_repair(researcher_kind(client), max_window_size)
    if dry_run:
        logging.info("[dry-run] Would save %s researchers", len(researchers.records))
    else:
        save_researchers(conn, researchers.records)
    logging.info(
        "1/3 researcher ETL done: records=%s api_calls=%s",
        len(researchers.records),
        researchers.api_calls,
    )

    logging.info("2/3 paper ETL start")
    papers = fetch_all_with_repair(paper_kind(client), max_window_size)
    if dry_run:
        logging.info("[dry-run] Would save %s papers", len(papers.records))
    else:
        save_papers(conn, papers.records)
    logging.info("2/3 paper ETL done: records=%s api_calls=%s", len(papers.records), papers.api_calls)

    logging.info("3/3 CSV export start")
    path = export_joined(researchers.records, papers.records, data_dir=data_dir, run_token=run_token)
    logging.info("3/3 CSV export done: %s", path)

    logging.info("=== ETL complete ===")
    return path


def run_scheduled(args: argparse.Namespace) -> int:
    """Run once as a scheduled tick; log any failure instead of raising.

    Returns 0 on success and 1 on failure so cron can report it.
    """
    conn = None
    try:
        client = DataClient()
        if not args.dry_run or args.init_db:
            conn = connect()
        if args.init_db:
            init_schema(conn)
        run_etl(
            client,
            conn,
            max_window_size=args.max_window_size,
            data_dir=args.data_dir,
            run_token=args.run_token,
            dry_run=args.dry_run,
        )
        return 0
    except Exception as exc:  # the next tick starts fresh
        logging.exception("ETL run failed: %s", exc)
        return 1
    finally:
        if conn is not None:
            conn.close()


def main() -> int:
    """Initialize config and execute one pipeline run."""
    load_dotenv()
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args()
    return run_scheduled(args)


if __name__ == "__main__":
    raise SystemExit(main())
