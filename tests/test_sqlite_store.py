"""Tests for the SQLite storage backend."""

import sqlite3
import tempfile
import warnings
from datetime import datetime, timezone
from pathlib import Path

import pytest

from storage.sqlite_store import SQLiteStore
from trend_types import Category, Classification, RawPaper, StorageIntegrityError


def _paper(arxiv_id, run_id="run-1", title=None, published=datetime(2024, 1, 5, 12, 0)):
    return RawPaper(
        arxiv_id=arxiv_id,
        title=title or f"Paper {arxiv_id}",
        summary="An abstract.",
        authors=["Ada Lovelace", "Alan Turing"],
        published=published,
        categories=["cs.LG"],
        run_id=run_id,
    )


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield SQLiteStore(str(Path(tmpdir) / "nested" / "trends.db"))


def _count(store, table):
    conn = sqlite3.connect(store.db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


def test_schema_created_in_new_directory(store):
    assert Path(store.db_path).exists()
    store.health_check()


def test_create_paper_round_trips_fields(store):
    stored = store.create_paper(_paper("2401.00001"))

    assert stored.arxiv_id == "2401.00001"
    assert stored.authors == ["Ada Lovelace", "Alan Turing"]
    assert stored.categories == ["cs.LG"]
    assert stored.published == datetime(2024, 1, 5, 12, 0)
    assert stored.created_at is not None


def test_create_paper_returns_existing_record(store):
    store.create_paper(_paper("2401.00001", run_id="run-1", title="Original"))
    stored = store.create_paper(_paper("2401.00001", run_id="run-2", title="Changed"))

    assert stored.title == "Original"
    assert stored.run_id == "run-1"
    assert _count(store, "articles_raw") == 1


def test_get_existing_ids(store):
    store.create_papers_bulk([_paper("a"), _paper("b")])

    assert store.get_existing_ids() == {"a", "b"}
    assert store.get_existing_ids(["b", "c"]) == {"b"}
    assert store.get_existing_ids([]) == set()


def test_classification_requires_raw_paper(store):
    with pytest.raises(StorageIntegrityError, match="missing"):
        store.create_classification("missing", "run-1", Classification(Category.OTHER))


def test_classification_batch_is_atomic(store):
    store.create_papers_bulk([_paper("a"), _paper("b")])
    entries = [
        ("a", Classification(Category.RAG, (), 4)),
        ("ghost", Classification(Category.RAG, (), 4)),
        ("b", Classification(Category.RAG, (), 4)),
    ]

    with pytest.raises(StorageIntegrityError) as excinfo:
        store.create_classifications_bulk(entries, "run-1")

    assert excinfo.value.stage == "persistence"
    assert _count(store, "articles_enriched") == 0


def test_classified_papers_ordered_by_impact_then_date(store):
    store.create_papers_bulk([
        _paper("old", published=datetime(2024, 1, 1)),
        _paper("new", published=datetime(2024, 1, 7)),
        _paper("top", published=datetime(2023, 12, 1)),
        _paper("other-run"),
    ])
    store.create_classifications_bulk(
        [
            ("old", Classification(Category.AGENTS, (), 3)),
            ("new", Classification(Category.AGENTS, (Category.RAG,), 3)),
            ("top", Classification(Category.RAG, (), 5)),
        ],
        "run-1",
    )
    store.create_classification("other-run", "run-2", Classification(Category.OTHER))

    papers = store.get_classified_papers("run-1")

    assert [p.arxiv_id for p in papers] == ["top", "new", "old"]
    assert papers[1].secondary_categories == [Category.RAG]
    assert papers[0].primary_category == Category.RAG
    assert papers[0].authors == ["Ada Lovelace", "Alan Turing"]
    assert store.get_classified_papers("unknown-run") == []


def test_topic_counts(store):
    store.create_papers_bulk([_paper(str(i)) for i in range(4)])
    store.create_classifications_bulk(
        [
            ("0", Classification(Category.QUANTIZATION)),
            ("1", Classification(Category.AGENTS)),
            ("2", Classification(Category.AGENTS)),
            ("3", Classification(Category.OTHER)),
        ],
        "run-1",
    )

    counts = store.get_topic_counts("run-1")

    assert list(counts.items()) == [
        ("Agentic AI / AI Agents", 2),
        ("Model Quantization", 1),
        ("Other", 1),
    ]


def test_latest_report(store):
    assert store.get_latest_report() is None

    store.create_report("run-1", "First", "# First", "<h1>First</h1>", emailed=True)
    second = store.create_report("run-2", "Second", "# Second", "<h1>Second</h1>", emailed=False)

    latest = store.get_latest_report()
    assert latest.subject == "Second"
    assert latest.body_html == "<h1>Second</h1>"
    assert latest.created_at == second.created_at
    assert second.emailed is False
    assert _count(store, "weekly_reports") == 2


def test_health_check_fails_on_unusable_database(store):
    Path(store.db_path).unlink()
    Path(store.db_path).mkdir()

    with pytest.raises(sqlite3.Error):
        store.health_check()


def test_writes_use_naive_utc_without_deprecation_warnings(store):
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        stored = store.create_paper(_paper("2401.00009"))
        report = store.create_report("run-1", "S", "# S", "<h1>S</h1>", emailed=True)

    assert stored.created_at.tzinfo is None
    assert report.created_at.tzinfo is None
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    assert abs((now - report.created_at).total_seconds()) < 60
