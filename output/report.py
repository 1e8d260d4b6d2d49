"""Render a run's topic aggregation into the weekly trend report."""

import logging
import os
from datetime import date
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader

from output.markdown_html import markdown_to_html, sanitize_html
from trend_types import NoDataError, RenderedReport, TopicAggregation

logger = logging.getLogger(__name__)

TRENDING_TOPICS = 5
MAX_LISTED_AUTHORS = 3
SUMMARY_PREVIEW_CHARS = 200
HIGH_IMPACT_THRESHOLD = 4

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")


def format_report_date(day: date) -> str:
    """Format a date as "October 17, 2026"."""
    return f"{day:%B} {day.day}, {day.year}"


def format_authors(authors: List[str]) -> str:
    text = ", ".join(authors[:MAX_LISTED_AUTHORS])
    if len(authors) > MAX_LISTED_AUTHORS:
        text += " et al."
    return text


def truncate_summary(summary: str, limit: int = SUMMARY_PREVIEW_CHARS) -> str:
    if len(summary) <= limit:
        return summary
    return summary[:limit].rstrip() + "..."


def build_subject(aggregations: List[TopicAggregation], day: date) -> str:
    total = sum(a.count for a in aggregations)
    leader = aggregations[0].primary_category.value
    return f"Weekly ML Research Trends - {format_report_date(day)} ({total} papers, {leader} leads)"


def build_markdown(aggregations: List[TopicAggregation], day: date) -> str:
    """Build the markdown body of the report.

    Sections, in order: header, topic distribution, trending research areas
    (top 5 topics with their representative papers), insights, attribution.

    Args:
        aggregations: Topic aggregations ordered by count descending
        day: Report date

    Returns:
        Markdown document
    """
    total = sum(a.count for a in aggregations)
    leader = aggregations[0]
    generated = format_report_date(day)

    lines = [
        "# Weekly ML Research Trends Report",
        "",
        f"**Generated:** {generated}",
        f"**Total Papers Analyzed:** {total}",
        f"**Leading Topic:** {leader.primary_category.value}",
        "",
        "## 📊 Topic Distribution",
        "",
    ]

    for index, topic in enumerate(aggregations, start=1):
        percentage = topic.count / total * 100
        lines.append(
            f"{index}. **{topic.primary_category.value}**: {topic.count} papers ({percentage:.1f}%)"
        )

    lines.extend(["", "## 🔬 Trending Research Areas", ""])

    for index, topic in enumerate(aggregations[:TRENDING_TOPICS], start=1):
        lines.extend([f"### {index}. {topic.primary_category.value} ({topic.count} papers)", ""])
        if not topic.representative_papers:
            continue
        lines.extend(["**Key Papers:**", ""])
        for paper_index, paper in enumerate(topic.representative_papers, start=1):
            lines.extend([
                f"{paper_index}. **{paper.title}**",
                f"   - Authors: {format_authors(paper.authors)}",
                f"   - ArXiv ID: {paper.arxiv_id}",
                f"   - Impact Score: {paper.potential_impact}/5",
                f"   - Summary: {truncate_summary(paper.summary)}",
                "",
            ])

    high_impact = sum(
        1
        for topic in aggregations
        for paper in topic.representative_papers
        if paper.potential_impact >= HIGH_IMPACT_THRESHOLD
    )

    lines.extend(["## 📈 Insights", ""])
    lines.append(f"- **Most Active Area:** {leader.primary_category.value} with {leader.count} papers")
    if len(aggregations) > 1:
        second = aggregations[1]
        lines.append(
            f"- **Second Most Active:** {second.primary_category.value} with {second.count} papers"
        )
    lines.append(f"- **High Impact Papers:** {high_impact} papers with impact score ≥ {HIGH_IMPACT_THRESHOLD}")
    lines.append(f"- **Research Diversity:** {len(aggregations)} distinct research categories")
    lines.extend([
        "",
        "---",
        "",
        "*This report was automatically generated from ArXiv papers and LLM classifications.*",
        "",
    ])

    return "\n".join(lines)


def render_email_html(body_markdown: str, subject: str, run_id: str) -> str:
    """Convert the markdown body and wrap it in the HTML email shell."""
    env = Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=True,
    )
    template = env.get_template("report_email.html.j2")
    document = template.render(
        subject=subject,
        run_id=run_id,
        content=markdown_to_html(body_markdown),
    )
    return sanitize_html(document)


def render_report(
    aggregations: List[TopicAggregation],
    run_id: str,
    today: Optional[date] = None,
) -> RenderedReport:
    """Render subject, markdown and HTML for a run.

    Args:
        aggregations: Topic aggregations for the run, ordered by count descending
        run_id: Run identifier (named in the error when there is no data)
        today: Report date (defaults to today)

    Returns:
        RenderedReport

    Raises:
        NoDataError: If the aggregation holds no papers
    """
    total = sum(a.count for a in aggregations)
    if total == 0:
        raise NoDataError(run_id)

    day = today or date.today()
    subject = build_subject(aggregations, day)
    body_markdown = build_markdown(aggregations, day)
    body_html = render_email_html(body_markdown, subject, run_id)

    logger.info(
        "Rendered report for run %s: %d papers across %d topics", run_id, total, len(aggregations)
    )
    return RenderedReport(subject=subject, body_markdown=body_markdown, body_html=body_html)
