"""PostgreSQL storage for arxiv-trends.

Same interface as storage.sqlite_store.SQLiteStore, backed by a psycopg2
connection pool. Each public method runs in its own transaction.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Tuple

import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor, execute_values

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

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS articles_raw (
        arxiv_id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        summary TEXT NOT NULL,
        authors JSONB NOT NULL,
        published TIMESTAMP NOT NULL,
        categories JSONB NOT NULL,
        run_id TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS articles_enriched (
        id SERIAL PRIMARY KEY,
        arxiv_id TEXT NOT NULL REFERENCES articles_raw(arxiv_id),
        run_id TEXT NOT NULL,
        primary_category TEXT NOT NULL,
        secondary_categories JSONB NOT NULL,
        potential_impact INTEGER NOT NULL CHECK (potential_impact BETWEEN 1 AND 5),
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weekly_reports (
        id SERIAL PRIMARY KEY,
        run_id TEXT NOT NULL,
        subject TEXT NOT NULL,
        body_markdown TEXT NOT NULL,
        body_html TEXT NOT NULL,
        emailed BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_raw_run_id ON articles_raw(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_articles_enriched_run_id ON articles_enriched(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_weekly_reports_created_at ON weekly_reports(created_at)",
]

INSERT_RAW_SQL = """
    INSERT INTO articles_raw (
        arxiv_id, title, summary, authors, published, categories, run_id, created_at
    ) VALUES %s
    ON CONFLICT (arxiv_id) DO NOTHING
"""

INSERT_ENRICHED_SQL = """
    INSERT INTO articles_enriched (
        arxiv_id, run_id, primary_category, secondary_categories, potential_impact, created_at
    ) VALUES %s
    RETURNING id
"""


def _paper_values(paper: RawPaper, now: datetime) -> tuple:
    return (
        paper.arxiv_id,
        paper.title,
        paper.summary,
        Json(list(paper.authors)),
        paper.published,
        Json(list(paper.categories)),
        paper.run_id,
        now,
    )


def _classification_values(
    arxiv_id: str, run_id: str, classification: Classification, now: datetime
) -> tuple:
    return (
        arxiv_id,
        run_id,
        classification.primary_category.value,
        Json([c.value for c in classification.secondary_categories]),
        classification.potential_impact,
        now,
    )


def _row_to_paper(row: dict) -> RawPaper:
    return RawPaper(
        arxiv_id=row["arxiv_id"],
        title=row["title"],
        summary=row["summary"],
        authors=list(row["authors"] or []),
        published=row["published"],
        categories=list(row["categories"] or []),
        run_id=row["run_id"],
        created_at=row["created_at"],
    )


def _row_to_classified(row: dict) -> ClassifiedPaper:
    return ClassifiedPaper(
        arxiv_id=row["arxiv_id"],
        title=row["title"],
        summary=row["summary"],
        authors=list(row["authors"] or []),
        published=row["published"],
        primary_category=Category(row["primary_category"]),
        secondary_categories=[Category(c) for c in (row["secondary_categories"] or [])],
        potential_impact=row["potential_impact"],
    )


class PostgresStore:
    """Storage backend on PostgreSQL (DATABASE_URL=postgresql://...)."""

    def __init__(self, database_url: str, minconn: int = 1, maxconn: int = 10):
        self.database_url = database_url
        self._pool = pool.SimpleConnectionPool(minconn=minconn, maxconn=maxconn, dsn=database_url)
        logger.info("PostgreSQL connection pool initialized")
        self.init_schema()

    @contextmanager
    def _transaction(self) -> Iterator[RealDictCursor]:
        """Yield a dict cursor; commit on success, roll back on any error."""
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def close(self) -> None:
        self._pool.closeall()

    def init_schema(self) -> None:
        with self._transaction() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)
        logger.info("PostgreSQL schema ready")

    def health_check(self) -> None:
        with self._transaction() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()

    # Raw papers

    def create_paper(self, paper: RawPaper) -> RawPaper:
        return self.create_papers_bulk([paper])[0]

    def create_papers_bulk(self, papers: List[RawPaper]) -> List[RawPaper]:
        """Insert raw papers in one transaction; existing ids return the stored row.

        Raises:
            StorageIntegrityError: If any row violates a constraint (nothing is committed)
        """
        if not papers:
            return []

        now = utc_now()
        ids = [paper.arxiv_id for paper in papers]
        try:
            with self._transaction() as cursor:
                execute_values(
                    cursor,
                    INSERT_RAW_SQL,
                    [_paper_values(p, now) for p in papers],
                    page_size=len(papers),
                )
                inserted = cursor.rowcount
                cursor.execute("SELECT * FROM articles_raw WHERE arxiv_id = ANY(%s)", (ids,))
                by_id = {row["arxiv_id"]: _row_to_paper(row) for row in cursor.fetchall()}
        except psycopg2.IntegrityError as e:
            raise StorageIntegrityError(f"Raw paper batch rejected: {e}") from e

        logger.info("Stored %d raw papers (%d already present)", inserted, len(papers) - inserted)
        return [by_id[arxiv_id] for arxiv_id in ids]

    def get_existing_ids(self, candidate_ids: Optional[Iterable[str]] = None) -> set:
        with self._transaction() as cursor:
            if candidate_ids is None:
                cursor.execute("SELECT DISTINCT arxiv_id FROM articles_raw")
            else:
                cursor.execute(
                    "SELECT arxiv_id FROM articles_raw WHERE arxiv_id = ANY(%s)",
                    (list(candidate_ids),),
                )
            return {row["arxiv_id"] for row in cursor.fetchall()}

    # Classifications

    def create_classification(
        self, arxiv_id: str, run_id: str, classification: Classification
    ) -> ClassificationRecord:
        return self.create_classifications_bulk([(arxiv_id, classification)], run_id)[0]

    def create_classifications_bulk(
        self, entries: List[Tuple[str, Classification]], run_id: str
    ) -> List[ClassificationRecord]:
        """Insert classifications for a run in one transaction.

        Raises:
            StorageIntegrityError: If any arxiv_id has no raw paper (nothing is committed)
        """
        if not entries:
            return []

        now = utc_now()
        values = [_classification_values(a, run_id, c, now) for a, c in entries]
        try:
            with self._transaction() as cursor:
                rows = execute_values(
                    cursor, INSERT_ENRICHED_SQL, values, page_size=len(values), fetch=True
                )
        except psycopg2.IntegrityError as e:
            raise StorageIntegrityError(
                f"Classification batch rejected (run {run_id}): {e}"
            ) from e

        logger.info("Stored %d classifications for run %s", len(rows), run_id)
        return [
            ClassificationRecord(
                id=row["id"],
                arxiv_id=arxiv_id,
                run_id=run_id,
                classification=classification,
                created_at=now,
            )
            for row, (arxiv_id, classification) in zip(rows, entries)
        ]

    def get_classified_papers(self, run_id: str) -> List[ClassifiedPaper]:
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT e.arxiv_id, r.title, r.summary, r.authors, r.published,
                       e.primary_category, e.secondary_categories, e.potential_impact
                FROM articles_enriched e
                JOIN articles_raw r ON r.arxiv_id = e.arxiv_id
                WHERE e.run_id = %s
                ORDER BY e.potential_impact DESC, r.published DESC, e.id ASC
                """,
                (run_id,),
            )
            rows = cursor.fetchall()
        return [_row_to_classified(row) for row in rows]

    def get_topic_counts(self, run_id: str) -> dict:
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT primary_category, COUNT(*) AS count
                FROM articles_enriched
                WHERE run_id = %s
                GROUP BY primary_category
                ORDER BY count DESC, MIN(id) ASC
                """,
                (run_id,),
            )
            rows = cursor.fetchall()
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
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO weekly_reports (
                    run_id, subject, body_markdown, body_html, emailed, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (run_id, subject, body_markdown, body_html, emailed, now),
            )
            report_id = cursor.fetchone()["id"]

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
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT subject, body_html, created_at
                FROM weekly_reports
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return LatestReport(
            subject=row["subject"],
            body_html=row["body_html"],
            created_at=row["created_at"],
        )
