"""End-to-end tests for ingestion and reporting with fake fetcher, classifier and sender."""

import sqlite3
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from config.app_config import AppConfig, ReportConfig
from pipeline import TrendPipeline
from storage.sqlite_store import SQLiteStore
from trend_types import (
    Category,
    Classification,
    ClassifierTransportError,
    FetchError,
    NoDataError,
    RawPaper,
)

CLASSIFICATIONS = {
    "2401.00001": Classification(Category.RAG, (), 4),
    "2401.00002": Classification(Category.AGENTS, (Category.RAG,), 5),
    "2401.00003": Classification(Category.RAG, (), 2),
}


def _fetcher(ids=tuple(CLASSIFICATIONS)):
    def fetch(run_id):
        return [
            RawPaper(
                arxiv_id=arxiv_id,
                title=f"Title {arxiv_id}",
                summary=f"Summary {arxiv_id}",
                authors=["Ada Lovelace"],
                published=datetime(2024, 1, 5),
                categories=["cs.LG"],
                run_id=run_id,
            )
            for arxiv_id in ids
        ]

    return fetch


def _classifier():
    classifier = MagicMock()
    classifier.classify.side_effect = lambda title, summary: CLASSIFICATIONS[title.split()[-1]]
    return classifier


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield SQLiteStore(str(Path(tmpdir) / "trends.db"))


def _stored_emailed_flags(store):
    conn = sqlite3.connect(store.db_path)
    try:
        return [row[0] for row in conn.execute("SELECT emailed FROM weekly_reports ORDER BY id")]
    finally:
        conn.close()


def _pipeline(store, classifier=None, sender=None, recipients=("team@example.com",), fetcher=None):
    config = AppConfig(report=ReportConfig(recipients=list(recipients)))
    return TrendPipeline(
        config,
        store=store,
        classifier=classifier or _classifier(),
        fetcher=fetcher or _fetcher(),
        sender=sender,
    )


def test_ingest_classifies_and_stores_new_papers(store):
    result = _pipeline(store).ingest()

    assert result["total_new"] == 3
    assert result["topic_counts"] == {
        "Retrieval-Augmented Generation (RAG)": 2,
        "Agentic AI / AI Agents": 1,
    }
    assert store.get_existing_ids() == set(CLASSIFICATIONS)
    assert len(store.get_classified_papers(result["run_id"])) == 3


def test_second_ingest_is_idempotent(store):
    classifier = _classifier()
    pipeline = _pipeline(store, classifier=classifier)

    first = pipeline.ingest()
    second = pipeline.ingest()

    assert second["run_id"] != first["run_id"]
    assert second["total_new"] == 0
    assert second["topic_counts"] == {}
    assert classifier.classify.call_count == 3


def test_ingest_only_classifies_unseen_papers(store):
    _pipeline(store, fetcher=_fetcher(["2401.00001"])).ingest()

    classifier = _classifier()
    result = _pipeline(store, classifier=classifier).ingest()

    assert result["total_new"] == 2
    assert classifier.classify.call_count == 2


def test_transport_failure_writes_nothing(store):
    classifier = MagicMock()
    classifier.classify.side_effect = ClassifierTransportError("LLM service error: 503")

    with pytest.raises(ClassifierTransportError):
        _pipeline(store, classifier=classifier).ingest()

    assert store.get_existing_ids() == set()


def test_fetch_failure_propagates(store):
    def failing_fetch(run_id):
        raise FetchError("arXiv API error: 500 Internal Server Error")

    with pytest.raises(FetchError):
        _pipeline(store, fetcher=failing_fetch).ingest()


def test_preview_report_is_stored_without_email(store):
    sender = MagicMock()
    pipeline = _pipeline(store, sender=sender)
    run_id = pipeline.ingest()["run_id"]

    result = pipeline.generate_report(run_id, preview_only=True)

    assert result["emailed"] is False
    assert result["delivered"] is False
    assert _stored_emailed_flags(store) == [0]
    assert "3 papers, Retrieval-Augmented Generation (RAG) leads" in result["subject"]
    assert result["body_markdown"].startswith("# Weekly ML Research Trends Report")
    assert "<h1" in result["body_html"]
    sender.send.assert_not_called()

    latest = pipeline.get_latest_report()
    assert latest["subject"] == result["subject"]
    assert latest["body_html"] == result["body_html"]


def test_report_is_emailed(store):
    sender = MagicMock()
    sender.send.return_value = {"success": True, "message": "sent", "details": {}}
    pipeline = _pipeline(store, sender=sender)
    run_id = pipeline.ingest()["run_id"]

    result = pipeline.generate_report(run_id)

    assert result["emailed"] is True
    assert result["delivered"] is True
    kwargs = sender.send.call_args.kwargs
    assert kwargs["to"] == ["team@example.com"]
    assert kwargs["subject"] == result["subject"]


def test_failed_delivery_still_counts_as_emailed(store):
    sender = MagicMock()
    sender.send.return_value = {"success": False, "message": "relay denied", "details": {}}
    pipeline = _pipeline(store, sender=sender)
    run_id = pipeline.ingest()["run_id"]

    result = pipeline.generate_report(run_id)

    assert result["emailed"] is True
    assert result["delivered"] is False
    assert _stored_emailed_flags(store) == [1]
    assert pipeline.get_latest_report()["subject"] == result["subject"]


def test_delivery_exception_still_stores_report(store):
    sender = MagicMock()
    sender.send.side_effect = OSError("network down")
    pipeline = _pipeline(store, sender=sender)
    run_id = pipeline.ingest()["run_id"]

    result = pipeline.generate_report(run_id)

    assert result["emailed"] is True
    assert result["delivered"] is False
    assert pipeline.get_latest_report()["subject"] == result["subject"]


def test_report_for_empty_run_raises_and_stores_nothing(store):
    pipeline = _pipeline(store)

    with pytest.raises(NoDataError, match="no-such-run"):
        pipeline.generate_report("no-such-run")

    assert pipeline.get_latest_report() is None


def test_topic_views(store):
    pipeline = _pipeline(store)
    run_id = pipeline.ingest()["run_id"]

    aggregations = pipeline.get_topic_aggregations(run_id)
    assert [a["primary_category"] for a in aggregations] == [
        "Retrieval-Augmented Generation (RAG)",
        "Agentic AI / AI Agents",
    ]
    assert [p["arxiv_id"] for p in aggregations[0]["representative_papers"]] == [
        "2401.00001",
        "2401.00003",
    ]
    assert pipeline.get_topic_counts(run_id) == {
        "Retrieval-Augmented Generation (RAG)": 2,
        "Agentic AI / AI Agents": 1,
    }


def test_health_check(store):
    assert _pipeline(store).health_check() == {"status": "ok"}

    broken = MagicMock()
    broken.health_check.side_effect = RuntimeError("database is locked")
    status = _pipeline(broken).health_check()

    assert status["status"] == "error"
    assert "locked" in status["error"]
