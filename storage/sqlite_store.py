"""SQLite storage for arxiv-trends.

Holds raw papers, per-run classifications and generated reports. Bulk writes
run in a single transaction: if any row violates a constraint, nothing from
that batch is committed.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from trend_types import (
    Category,
    Classification,
    ClassificationRecord,
    ClassifiedPaper,
    LatestReport,
    RawPaper,
    StorageIntegrityError,
    StoredReport,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/db/trends.db"

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS articles_raw (
        arxiv_id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        summary TEXT NOT NULL,
        authors TEXT NOT NULL,
        published TEXT NOT NULL,
        categories TEXT NOT NULL,
        run_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS articles_enriched (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        arxiv_id TEXT NOT NULL REFERENCES articles_raw(arxiv_id),
        run_id TEXT NOT NULL,
        primary_category TEXT NOT NULL,
        secondary_categories TEXT NOT NULL,
        potential_impact INTEGER NOT NULL CHECK (potential_impact BETWEEN 1 AND 5),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weekly_reports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id TEXT NOT NULL,
        subject TEXT NOT NULL,
        body_markdown TEXT NOT NULL,
        body_html TEXT NOT NULL,
        emailed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_raw_run_id ON articles_raw(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_articles_enriched_run_id ON articles_enriched(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_weekly_reports_created_at ON weekly_reports(created_at)",
]


def _format_ts(value: datetime) -> str:
    # Fixed width so that text ordering matches time ordering
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_paper(row: sqlite3.Row) -> RawPaper:
    return RawPaper(
        arxiv_id=row["arxiv_id"],
        title=row["title"],
        summary=row["summary"],
        authors=json.loads(row["authors"]),
        published=_parse_ts(row["published"]),
        categories=json.loads(row["categories"]),
        run_id=row["run_id"],
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_classified(row: sqlite3.Row) -> ClassifiedPaper:
    return ClassifiedPaper(
        arxiv_id=row["arxiv_id"],
        title=row["title"],
        summary=row["summary"],
        authors=json.loads(row["authors"]),
        published=_parse_ts(row["published"]),
        primary_category=Category(row["primary_category"]),
        secondary_categories=[Category(c) for c in json.loads(row["secondary_categories"])],
        potential_impact=row["potential_impact"],
    )


class SQLiteStore:
    """Storage backend on a local SQLite file."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on any error."""
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self._transaction() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.info("SQLite schema ready at %s", self.db_path)

    def health_check(self) -> None:
        """Run a trivial query; raises sqlite3.Error if the database is unusable."""
        with self._transaction() as conn:
            conn.execute("SELECT 1").fetchone()

    # Raw papers

    def _insert_paper(self, conn: sqlite3.Connection, paper: RawPaper, now: datetime) -> RawPaper:
        conn.execute(
            """
            INSERT INTO articles_raw (
                arxiv_id, title, summary, authors, published, categories, run_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(arxiv_id) DO NOTHING
            """,
            (
                paper.arxiv_id,
                paper.title,
                paper.summary,
                json.dumps(paper.authors),
                _format_ts(paper.published),
                json.dumps(paper.categories),
                paper.run_id,
                _format_ts(now),
            ),
        )
        row = conn.execute(
            "SELECT * FROM articles_raw WHERE arxiv_id = ?", (paper.arxiv_id,)
        ).fetchone()
        return _row_to_paper(row)

    def create_paper(self, paper: RawPaper) -> RawPaper:
        """Insert a raw paper, or return the stored one if the id already exists."""
        return self.create_papers_bulk([paper])[0]

    def create_papers_bulk(self, papers: List[RawPaper]) -> List[RawPaper]:
        """Insert raw papers in one transaction.

        Papers whose identifier is already stored are left untouched and the
        stored record is returned in their place.

        Args:
            papers: Papers to insert

        Returns:
            Stored records, aligned with papers

        Raises:
            StorageIntegrityError: If any row violates a constraint (nothing is committed)
        """
        if not papers:
            return []

        now = utc_now()
        current = None
        try:
            with self._transaction() as conn:
                stored = []
                for paper in papers:
                    current = paper.arxiv_id
                    stored.append(self._insert_paper(conn, paper, now))
        except sqlite3.IntegrityError as e:
            raise StorageIntegrityError(
                f"Raw paper batch rejected at {current}: {e}"
            ) from e

        inserted = sum(1 for p, s in zip(papers, stored) if s.run_id == p.run_id)
        logger.info("Stored %d raw papers (%d already present)", inserted, len(papers) - inserted)
        return stored

    def get_existing_ids(self, candidate_ids: Optional[Iterable[str]] = None) -> set:
        """Return stored paper identifiers, optionally restricted to candidate_ids."""
        with self._transaction() as conn:
            if candidate_ids is None:
                rows = conn.execute("SELECT DISTINCT arxiv_id FROM articles_raw").fetchall()
                return {row["arxiv_id"] for row in rows}

            wanted = list(dict.fromkeys(candidate_ids))
            existing = set()
            # Stay under SQLite's bound-parameter limit
            for offset in range(0, len(wanted), 500):
                chunk = wanted[offset : offset + 500]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT arxiv_id FROM articles_raw WHERE arxiv_id IN ({placeholders})",
                    chunk,
                ).fetchall()
                existing.update(row["arxiv_id"] for row in rows)
            return existing

    # Classifications

    def create_classification(
        self, arxiv_id: str, run_id: str, classification: Classification
    ) -> ClassificationRecord:
        """Insert one classification; the raw paper must already exist."""
        return self.create_classifications_bulk([(arxiv_id, classification)], run_id)[0]

    def create_classifications_bulk(
        self, entries: List[Tuple[str, Classification]], run_id: str
    ) -> List[ClassificationRecord]:
        """Insert classifications for a run in one transaction.

        Args:
            entries: (arxiv_id, classification) pairs
            run_id: Run identifier shared by all rows

        Returns:
            Stored records, aligned with entries

        Raises:
            StorageIntegrityError: If any arxiv_id has no raw paper (nothing is committed)
        """
        if not entries:
            return []

        now = utc_now()
        current = None
        records = []
        try:
            with self._transaction() as conn:
                for arxiv_id, classification in entries:
                    current = arxiv_id
                    cursor = conn.execute(
                        """
                        INSERT INTO articles_enriched (
                            arxiv_id, run_id, primary_category, secondary_categories,
                            potential_impact, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            arxiv_id,
                            run_id,
                            classification.primary_category.value,
                            json.dumps([c.value for c in classification.secondary_categories]),
                            classification.potential_impact,
                            _format_ts(now),
                        ),
                    )
                    records.append(
                        ClassificationRecord(
                            id=cursor.lastrowid,
                            arxiv_id=arxiv_id,
                            run_id=run_id,
                            classification=classification,
                            created_at=now,
                        )
                    )
        except sqlite3.IntegrityError as e:
            raise StorageIntegrityError(
                f"Classification batch rejected at {current} (run {run_id}): {e}"
            ) from e

        logger.info("Stored %d classifications for run %s", len(records), run_id)
        return records

    def get_classified_papers(self, run_id: str) -> List[ClassifiedPaper]:
        """Return a run's classifications joined with raw paper fields.

        Ordered by impact descending, then publication date descending.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT e.arxiv_id, r.title, r.summary, r.authors, r.published,
                       e.primary_category, e.secondary_categories, e.potential_impact
                FROM articles_enriched e
                JOIN articles_raw r ON r.arxiv_id = e.arxiv_id
                WHERE e.run_id = ?
                ORDER BY e.potential_impact DESC, r.published DESC, e.id ASC
                """,
                (run_id,),
            ).fetchall()
        return [_row_to_classified(row) for row in rows]

    def get_topic_counts(self, run_id: str) -> dict:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT primary_category, COUNT(*) AS count
                FROM articles_enriched
                WHERE run_id = ?
                GROUP BY primary_category
                ORDER BY count DESC, MIN(id) ASC
                """,
                (run_id,),
            ).fetchall()
        return {row["primary_category"]: row["count"] for row in rows}

    # Reports

    def create_report(
        self,
        run_id: str,
        subject: str,
        body_markdown: str,
        body_html: str,
        emailed: bool,
    ) -> StoredReport:
        now = utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO weekly_reports (
                    run_id, subject, body_markdown, body_html, emailed, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_id, subject, body_markdown, body_html, int(emailed), _format_ts(now)),
            )
            report_id = cursor.lastrowid

        logger.info("Stored report %d for run %s (emailed=%s)", report_id, run_id, emailed)
        return StoredReport(
            id=report_id,
            run_id=run_id,
            subject=subject,
            body_markdown=body_markdown,
            body_html=body_html,
            emailed=emailed,
            created_at=now,
        )

    def get_latest_report(self) -> Optional[LatestReport]:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT subject, body_html, created_at
                FROM weekly_reports
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """
            ).fetchone()
        if row is None:
            return None
        return LatestReport(
            subject=row["subject"],
            body_html=row["body_html"],
            created_at=_parse_ts(row["created_at"]),
        )
