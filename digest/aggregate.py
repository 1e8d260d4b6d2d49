"""Aggregate a run's classifications into per-topic counts and highlights."""

import logging
from typing import List

from trend_types import ClassifiedPaper, RepresentativePaper, TopicAggregation

logger = logging.getLogger(__name__)

MAX_REPRESENTATIVES = 3


def aggregate_topics(
    papers: List[ClassifiedPaper],
    max_representatives: int = MAX_REPRESENTATIVES,
) -> List[TopicAggregation]:
    """Group classified papers by primary category.

    Within a topic, papers are ranked by impact (desc) then publication date
    (desc) and the first max_representatives are kept. Topics are ordered by
    count (desc); equal counts keep first-seen order.

    Args:
        papers: Classified papers of one run
        max_representatives: Representatives kept per topic

    Returns:
        List of TopicAggregation (empty if papers is empty)
    """
    groups = {}
    for paper in papers:
        groups.setdefault(paper.primary_category, []).append(paper)

    aggregations = []
    for category, members in groups.items():
        ranked = sorted(members, key=lambda p: p.published, reverse=True)
        ranked = sorted(ranked, key=lambda p: p.potential_impact, reverse=True)
        aggregations.append(
            TopicAggregation(
                primary_category=category,
                count=len(members),
                representative_papers=[
                    RepresentativePaper(
                        arxiv_id=p.arxiv_id,
                        title=p.title,
                        summary=p.summary,
                        authors=list(p.authors),
                        published=p.published,
                        potential_impact=p.potential_impact,
                    )
                    for p in ranked[:max_representatives]
                ],
            )
        )

    # sorted() is stable, so ties keep first-seen order
    aggregations = sorted(aggregations, key=lambda a: -a.count)
    logger.info(
        "Aggregated %d papers into %d topics", len(papers), len(aggregations)
    )
    return aggregations


def get_topic_aggregations(store, run_id: str) -> List[TopicAggregation]:
    """Load a run's classifications from storage and aggregate them."""
    return aggregate_topics(store.get_classified_papers(run_id))
