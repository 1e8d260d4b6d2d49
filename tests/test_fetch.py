"""Tests for arXiv fetching and feed parsing."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from config.app_config import ArxivConfig
from ingest.fetch import (
    build_query_params,
    build_search_query,
    canonicalize_arxiv_id,
    clean_text,
    fetch_arxiv_papers,
    parse_feed,
)
from trend_types import FetchError


def _entry(entry_id, title, summary="An abstract.", published="2024-01-05T12:00:00Z", authors=("Ada Lovelace",)):
    author_xml = "".join(f"<author><name>{name}</name></author>" for name in authors)
    return f"""
  <entry>
    <id>{entry_id}</id>
    <updated>{published}</updated>
    <published>{published}</published>
    <title>{title}</title>
    <summary>{summary}</summary>
    {author_xml}
    <category term="cs.LG" scheme="http://arxiv.org/schemas/atom"/>
    <category term="stat.ML" scheme="http://arxiv.org/schemas/atom"/>
  </entry>"""


def _feed(*entries):
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>ArXiv Query</title>
  <id>http://arxiv.org/api/query</id>
  <updated>2024-01-08T00:00:00Z</updated>
  {"".join(entries)}
</feed>""".encode("utf-8")


class TestCanonicalId:
    def test_strips_version_from_abs_url(self):
        assert canonicalize_arxiv_id("http://arxiv.org/abs/2401.00001v2") == "2401.00001"

    def test_abs_url_without_version(self):
        assert canonicalize_arxiv_id("https://arxiv.org/abs/2401.12345") == "2401.12345"

    def test_old_style_identifier(self):
        assert canonicalize_arxiv_id("http://arxiv.org/abs/hep-th/9901001v1") == "hep-th/9901001"

    def test_bare_identifier(self):
        assert canonicalize_arxiv_id("2401.0001v3") == "2401.0001"

    def test_rejects_unrecognized_id(self):
        with pytest.raises(ValueError):
            canonicalize_arxiv_id("not-an-id")


def test_clean_text_collapses_whitespace():
    assert clean_text("  Deep\n   Learning\tfor\n\nAll  ") == "Deep Learning for All"
    assert clean_text(None) == ""


def test_build_search_query():
    query = build_search_query(["cs.LG", "stat.ML"], datetime(2024, 1, 1), datetime(2024, 1, 8))
    assert query == "(cat:cs.LG OR cat:stat.ML) AND submittedDate:[20240101 TO 20240108]"


def test_build_query_params_uses_trailing_window():
    config = ArxivConfig(categories=["cs.AI"], max_results=25, days_back=7)
    params = build_query_params(config, now=datetime(2024, 1, 8, 9, 30))

    assert params["search_query"] == "(cat:cs.AI) AND submittedDate:[20240101 TO 20240108]"
    assert params["start"] == 0
    assert params["max_results"] == 25
    assert params["sortBy"] == "submittedDate"
    assert params["sortOrder"] == "descending"


def test_parse_feed_extracts_fields():
    content = _feed(
        _entry(
            "http://arxiv.org/abs/2401.00001v1",
            "Scaling   Laws\n for Agents",
            summary="We study\n  scaling.",
            authors=("Ada Lovelace", "Alan Turing"),
        )
    )
    papers = parse_feed(content, run_id="run-1")

    assert len(papers) == 1
    paper = papers[0]
    assert paper.arxiv_id == "2401.00001"
    assert paper.title == "Scaling Laws for Agents"
    assert paper.summary == "We study scaling."
    assert paper.authors == ["Ada Lovelace", "Alan Turing"]
    assert paper.categories == ["cs.LG", "stat.ML"]
    assert paper.published == datetime(2024, 1, 5, 12, 0, 0)
    assert paper.run_id == "run-1"


def test_parse_feed_collapses_versions_keeping_first():
    content = _feed(
        _entry("http://arxiv.org/abs/2401.0001v2", "Second revision title"),
        _entry("http://arxiv.org/abs/2401.0001v1", "First revision title"),
        _entry("http://arxiv.org/abs/2401.0002v1", "Another paper"),
    )
    papers = parse_feed(content, run_id="run-1")

    assert [p.arxiv_id for p in papers] == ["2401.0001", "2401.0002"]
    assert papers[0].title == "Second revision title"


def test_parse_feed_skips_malformed_entry():
    content = _feed(
        _entry("http://arxiv.org/abs/2401.00001v1", "Good paper"),
        _entry("urn:garbage", "Bad id"),
        _entry("http://arxiv.org/abs/2401.00003v1", "Also good"),
    )
    papers = parse_feed(content, run_id="run-1")

    assert [p.arxiv_id for p in papers] == ["2401.00001", "2401.00003"]


def test_parse_feed_empty_feed():
    assert parse_feed(_feed(), run_id="run-1") == []


def test_fetch_raises_on_http_error():
    response = MagicMock()
    response.status_code = 503
    response.reason = "Service Unavailable"
    response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    session = MagicMock()
    session.get.return_value = response

    with pytest.raises(FetchError, match="503"):
        fetch_arxiv_papers(ArxivConfig(), run_id="run-1", session=session)


def test_fetch_raises_on_network_error():
    session = MagicMock()
    session.get.side_effect = requests.exceptions.ConnectionError("connection refused")

    with pytest.raises(FetchError):
        fetch_arxiv_papers(ArxivConfig(), run_id="run-1", session=session)


def test_fetch_parses_successful_response():
    response = MagicMock()
    response.status_code = 200
    response.content = _feed(_entry("http://arxiv.org/abs/2401.00001v1", "A paper"))
    session = MagicMock()
    session.get.return_value = response

    config = ArxivConfig(categories=["cs.LG"], max_results=10, days_back=3)
    papers = fetch_arxiv_papers(config, run_id="run-7", session=session, now=datetime(2024, 1, 8))

    assert [p.arxiv_id for p in papers] == ["2401.00001"]
    assert papers[0].run_id == "run-7"
    _, kwargs = session.get.call_args
    assert kwargs["params"]["search_query"] == "(cat:cs.LG) AND submittedDate:[20240105 TO 20240108]"
    assert kwargs["params"]["max_results"] == 10


def test_entry_without_date_gets_naive_utc_now():
    content = _feed(
        """
  <entry>
    <id>http://arxiv.org/abs/2401.00011v1</id>
    <title>Undated paper</title>
    <summary>No dates here.</summary>
  </entry>"""
    )
    papers = parse_feed(content, run_id="run-1")

    published = papers[0].published
    assert published.tzinfo is None
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    assert abs((now - published).total_seconds()) < 60
