"""Ingestion and report operations for arxiv-trends.

ingest():            fetch -> dedupe against storage -> classify -> persist
generate_report():   aggregate -> render -> deliver (unless preview) -> persist
get_latest_report(), get_topic_aggregations(), get_topic_counts(), health_check()
"""

import logging
from collections import Counter
from typing import Callable, List, Optional

from classify.classifier import PaperClassifier, classify_papers
from config.app_config import AppConfig
from diff.dedupe import filter_unseen
from digest.aggregate import get_topic_aggregations
from digest.senders import EmailSender, send_email
from ingest.fetch import fetch_arxiv_papers
from output.report import render_report
from storage.store import get_store
from trend_types import RawPaper, new_run_id

logger = logging.getLogger(__name__)


class TrendPipeline:
    """Operations exposed to the CLI (or any other transport).

    Collaborators are built from the config unless passed in explicitly.
    """

    def __init__(
        self,
        config: AppConfig,
        store=None,
        classifier: Optional[PaperClassifier] = None,
        fetcher: Optional[Callable[[str], List[RawPaper]]] = None,
        sender: Optional[EmailSender] = None,
    ):
        self.config = config
        self.store = store if store is not None else get_store(config.storage)
        self.classifier = classifier or PaperClassifier(config.llm)
        self.fetcher = fetcher or (lambda run_id: fetch_arxiv_papers(config.arxiv, run_id=run_id))
        self.sender = sender

    def ingest(self) -> dict:
        """Fetch, classify and store papers not seen before.

        Classification of every new paper completes before anything is
        written, so a transport failure leaves storage untouched.

        Returns:
            {"run_id": str, "total_new": int, "topic_counts": {category: count}}

        Raises:
            FetchError, ClassifierConfigError, ClassifierTransportError,
            StorageIntegrityError
        """
        run_id = new_run_id()
        logger.info("=" * 70)
        logger.info("Starting ingestion run %s", run_id)

        papers = self.fetcher(run_id)
        logger.info("Fetched %d papers", len(papers))

        existing_ids = self.store.get_existing_ids([p.arxiv_id for p in papers])
        new_papers = filter_unseen(papers, existing_ids)

        if not new_papers:
            logger.info("No new papers for run %s", run_id)
            return {"run_id": run_id, "total_new": 0, "topic_counts": {}}

        classifications = classify_papers(
            self.classifier, new_papers, max_workers=self.config.classify_workers
        )

        self.store.create_papers_bulk(new_papers)
        self.store.create_classifications_bulk(
            [(paper.arxiv_id, c) for paper, c in zip(new_papers, classifications)],
            run_id,
        )

        counts = Counter(c.primary_category.value for c in classifications)
        topic_counts = {category: count for category, count in counts.most_common()}

        logger.info(
            "Ingestion run %s complete: %d new papers across %d topics",
            run_id,
            len(new_papers),
            len(topic_counts),
        )
        return {"run_id": run_id, "total_new": len(new_papers), "topic_counts": topic_counts}

    def generate_report(self, run_id: str, preview_only: bool = False) -> dict:
        """Render the report for a run, email it unless previewing, and store it.

        Args:
            run_id: Run to report on
            preview_only: Skip delivery (emailed is recorded as False)

        Returns:
            {"subject", "body_markdown", "body_html", "emailed", "delivered"}
            emailed is True whenever delivery was attempted; delivered is the
            outcome of that attempt (False in preview mode)

        Raises:
            NoDataError: If the run has no classified papers (no report is stored)
        """
        aggregations = get_topic_aggregations(self.store, run_id)
        report = render_report(aggregations, run_id)

        emailed = not preview_only
        delivered = False
        if preview_only:
            logger.info("Preview mode: skipping email delivery for run %s", run_id)
        else:
            delivered = send_email(
                to=self.config.report.recipients,
                subject=report.subject,
                html_body=report.body_html,
                markdown_body=report.body_markdown,
                smtp_config=self.config.smtp,
                report_config=self.config.report,
                sender=self.sender,
            )

        self.store.create_report(
            run_id=run_id,
            subject=report.subject,
            body_markdown=report.body_markdown,
            body_html=report.body_html,
            emailed=emailed,
        )

        return {
            "subject": report.subject,
            "body_markdown": report.body_markdown,
            "body_html": report.body_html,
            "emailed": emailed,
            "delivered": delivered,
        }

    def get_latest_report(self) -> Optional[dict]:
        latest = self.store.get_latest_report()
        return latest.to_dict() if latest else None

    def get_topic_aggregations(self, run_id: str) -> List[dict]:
        return [a.to_dict() for a in get_topic_aggregations(self.store, run_id)]

    def get_topic_counts(self, run_id: str) -> dict:
        return self.store.get_topic_counts(run_id)

    def health_check(self) -> dict:
        """Check that storage answers a trivial query."""
        try:
            self.store.health_check()
        except Exception as e:
            logger.error("Health check failed: %s", e)
            return {"status": "error", "error": str(e)}
        return {"status": "ok"}
