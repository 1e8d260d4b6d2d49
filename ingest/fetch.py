"""Fetch recent papers from the arXiv API."""

import logging
import re
import time
from datetime import datetime, timedelta
from typing import List, Optional

import feedparser
import requests
from dateutil import parser as date_parser

from config.app_config import ArxivConfig
from diff.dedupe import deduplicate_papers
from trend_types import FetchError, RawPaper, new_run_id, utc_now

logger = logging.getLogger(__name__)

USER_AGENT = "arxiv-trends/0.1 (+https://github.com/arxiv-trends/arxiv-trends)"

ABS_URL_PATTERN = re.compile(r"arxiv\.org/abs/(.+)$")
VERSION_SUFFIX_PATTERN = re.compile(r"^(.+?)v\d+$")
BARE_ID_PATTERN = re.compile(r"^\d{4}\.\d{4,5}(v\d+)?$")
WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and newlines to single spaces and trim."""
    if not text:
        return ""
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def canonicalize_arxiv_id(raw_id: str) -> str:
    """Extract the version-stripped arXiv identifier from an entry id.

    Accepts abstract URLs ("http://arxiv.org/abs/2401.00001v2") and bare
    identifiers ("2401.00001v2"). Old-style ids ("hep-th/9901001v1") are
    supported through the URL form.

    Args:
        raw_id: Entry id as found in the feed

    Returns:
        Identifier without version suffix, e.g. "2401.00001"

    Raises:
        ValueError: If no identifier can be extracted
    """
    value = (raw_id or "").strip()
    match = ABS_URL_PATTERN.search(value)
    if match:
        identifier = match.group(1)
    elif BARE_ID_PATTERN.match(value):
        identifier = value
    else:
        raise ValueError(f"Cannot extract arXiv id from: {raw_id!r}")

    version_match = VERSION_SUFFIX_PATTERN.match(identifier)
    if version_match:
        identifier = version_match.group(1)
    return identifier


def build_search_query(categories: List[str], start: datetime, end: datetime) -> str:
    """Build the arXiv search expression for a category OR-filter and date range.

    Example:
        (cat:cs.LG OR cat:stat.ML) AND submittedDate:[20240101 TO 20240108]
    """
    category_filter = " OR ".join(f"cat:{category}" for category in categories)
    date_filter = f"submittedDate:[{start:%Y%m%d} TO {end:%Y%m%d}]"
    return f"({category_filter}) AND {date_filter}"


def build_query_params(config: ArxivConfig, now: Optional[datetime] = None) -> dict:
    end = now or utc_now()
    start = end - timedelta(days=config.days_back)
    return {
        "search_query": build_search_query(config.categories, start, end),
        "start": 0,
        "max_results": config.max_results,
        "sortBy": "submittedDate",
        "sortOrder": "descending",
    }


def _parse_published(entry) -> Optional[datetime]:
    date_str = entry.get("published") or entry.get("updated")
    if date_str:
        try:
            dt = date_parser.isoparse(date_str)
            # Stored as naive UTC
            if dt.tzinfo is not None:
                dt = dt.replace(tzinfo=None) - (dt.utcoffset() or timedelta(0))
            return dt
        except (ValueError, OverflowError) as e:
            logger.debug("Failed to parse date '%s': %s", date_str, e)

    time_struct = entry.get("published_parsed") or entry.get("updated_parsed")
    if time_struct:
        return datetime(*time_struct[:6])
    return None


def _entry_to_paper(entry, run_id: str) -> RawPaper:
    """Convert one feed entry into a RawPaper.

    Raises:
        ValueError: If the entry has no usable identifier or title
    """
    arxiv_id = canonicalize_arxiv_id(entry.get("id", ""))

    title = clean_text(entry.get("title"))
    if not title:
        raise ValueError(f"Entry {arxiv_id} has no title")

    published = _parse_published(entry)
    if published is None:
        published = utc_now()
        logger.warning("Entry %s has no published date, using current time", arxiv_id)

    authors = [
        clean_text(author.get("name"))
        for author in entry.get("authors", [])
        if author.get("name")
    ]
    categories = [tag.get("term") for tag in entry.get("tags", []) if tag.get("term")]

    return RawPaper(
        arxiv_id=arxiv_id,
        title=title,
        summary=clean_text(entry.get("summary")),
        authors=authors,
        published=published,
        categories=categories,
        run_id=run_id,
    )


def parse_feed(content, run_id: str) -> List[RawPaper]:
    """Parse an arXiv Atom feed into papers, collapsing versions.

    Malformed entries are skipped. When several entries share a canonical
    identifier, the first one in feed order is kept.

    Args:
        content: Raw feed bytes or string
        run_id: Run identifier stamped on every paper

    Returns:
        List of RawPaper with unique arxiv_id values

    Raises:
        FetchError: If the feed cannot be parsed at all
    """
    feed = feedparser.parse(content)

    if feed.bozo and not feed.entries:
        error_msg = str(feed.get("bozo_exception", "Unknown error"))
        raise FetchError(f"Failed to parse arXiv feed: {error_msg}")

    papers = []
    skipped = 0
    for index, entry in enumerate(feed.entries):
        try:
            papers.append(_entry_to_paper(entry, run_id))
        except (ValueError, TypeError, AttributeError) as e:
            skipped += 1
            logger.warning("Skipping malformed feed entry #%d: %s", index, e)

    unique, stats = deduplicate_papers(papers)
    logger.info(
        "Parsed %d entries: %d papers, %d skipped, %d duplicate versions dropped",
        len(feed.entries),
        len(unique),
        skipped,
        stats["duplicates_dropped"],
    )
    return unique


def fetch_arxiv_papers(
    config: ArxivConfig,
    run_id: Optional[str] = None,
    session: Optional[requests.Session] = None,
    now: Optional[datetime] = None,
) -> List[RawPaper]:
    """Fetch papers submitted in the trailing window for the configured categories.

    Args:
        config: arXiv query configuration
        run_id: Run identifier for the papers (generated if omitted)
        session: Optional requests session (for connection reuse and tests)
        now: End of the date window (defaults to current UTC time)

    Returns:
        List of RawPaper with unique, version-stripped identifiers

    Raises:
        FetchError: On network errors or non-2xx responses
    """
    run_id = run_id or new_run_id()
    params = build_query_params(config, now=now)
    http = session or requests.Session()

    logger.info("Querying arXiv: %s (max_results=%d)", params["search_query"], config.max_results)
    started = time.time()
    try:
        response = http.get(
            config.api_url,
            params=params,
            headers={"User-Agent": USER_AGENT, "Accept": "application/atom+xml"},
            timeout=config.timeout,
        )
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else "unknown"
        reason = e.response.reason if e.response is not None else str(e)
        raise FetchError(f"arXiv API error: {status} {reason}") from e
    except requests.exceptions.Timeout as e:
        raise FetchError(f"arXiv API request timed out after {config.timeout}s") from e
    except requests.exceptions.RequestException as e:
        raise FetchError(f"arXiv API request failed: {e}") from e

    logger.info("arXiv: HTTP %d in %.1fs", response.status_code, time.time() - started)
    return parse_feed(response.content, run_id)
