"""Deduplication of fetched papers, within a batch and against storage."""

import logging
from typing import Iterable

from trend_types import RawPaper

logger = logging.getLogger(__name__)


def deduplicate_papers(papers: list[RawPaper]) -> tuple[list[RawPaper], dict]:
    """Collapse papers sharing a canonical identifier.

    The first paper encountered for an identifier is kept; later entries
    (typically other versions of the same paper) are dropped.

    Args:
        papers: Papers in feed order (may contain duplicates)

    Returns:
        Tuple of (deduped_papers, stats_dict)
        stats_dict contains:
            - total_input: Original count
            - total_output: Deduped count
            - duplicates_dropped: Number of entries removed
    """
    seen = set()
    deduped = []

    for paper in papers:
        if paper.arxiv_id in seen:
            logger.debug("Dropping later version of %s: '%s'", paper.arxiv_id, paper.title[:60])
            continue
        seen.add(paper.arxiv_id)
        deduped.append(paper)

    stats = {
        "total_input": len(papers),
        "total_output": len(deduped),
        "duplicates_dropped": len(papers) - len(deduped),
    }
    return deduped, stats


def filter_unseen(papers: list[RawPaper], existing_ids: Iterable[str]) -> list[RawPaper]:
    """Return the papers whose identifiers are not already stored.

    Pure set difference that preserves input order.

    Args:
        papers: Fetched papers
        existing_ids: Identifiers already present in storage

    Returns:
        Papers not present in existing_ids
    """
    existing = set(existing_ids)
    unseen = [paper for paper in papers if paper.arxiv_id not in existing]
    logger.info(
        "Deduplication gate: %d fetched, %d already stored, %d new",
        len(papers),
        len(papers) - len(unseen),
        len(unseen),
    )
    return unseen
