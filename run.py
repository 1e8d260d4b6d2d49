#!/usr/bin/env python3
"""Main CLI entrypoint for arxiv-trends.

Examples:
    python run.py ingest
    python run.py report --run-id <RUN_ID> --preview
    python run.py weekly
    python run.py latest
    python run.py topics --run-id <RUN_ID>
    python run.py health
"""

import argparse
import json
import logging
import sys

from config.app_config import ConfigError, load_config
from pipeline import TrendPipeline
from trend_types import PipelineError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _print_report(result: dict, show_markdown: bool) -> None:
    print(f"\nSubject: {result['subject']}")
    print(f"Emailed: {result['emailed']} (delivered: {result['delivered']})")
    if show_markdown:
        print()
        print(result["body_markdown"])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="arxiv-trends - weekly ML research trend reports from arXiv"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config file (environment variables take precedence)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("ingest", help="Fetch, classify and store new papers")

    report = subparsers.add_parser("report", help="Generate (and email) the report for a run")
    report.add_argument("--run-id", required=True, help="Run identifier returned by ingest")
    report.add_argument("--preview", action="store_true", help="Render and store without emailing")
    report.add_argument("--show-markdown", action="store_true", help="Print the markdown body")

    weekly = subparsers.add_parser("weekly", help="Run ingest followed by report")
    weekly.add_argument("--preview", action="store_true", help="Render and store without emailing")
    weekly.add_argument("--show-markdown", action="store_true", help="Print the markdown body")

    subparsers.add_parser("latest", help="Show the most recent stored report")

    topics = subparsers.add_parser("topics", help="Show topic aggregations for a run")
    topics.add_argument("--run-id", required=True, help="Run identifier")
    topics.add_argument("--counts-only", action="store_true", help="Only print per-topic counts")

    subparsers.add_parser("health", help="Check storage connectivity")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    try:
        pipeline = TrendPipeline(config)

        if args.command == "ingest":
            _print_json(pipeline.ingest())

        elif args.command == "report":
            result = pipeline.generate_report(args.run_id, preview_only=args.preview)
            _print_report(result, args.show_markdown)

        elif args.command == "weekly":
            ingestion = pipeline.ingest()
            _print_json(ingestion)
            if ingestion["total_new"] == 0:
                logger.info("No new papers ingested; skipping report")
                return 0
            result = pipeline.generate_report(ingestion["run_id"], preview_only=args.preview)
            _print_report(result, args.show_markdown)

        elif args.command == "latest":
            latest = pipeline.get_latest_report()
            if latest is None:
                print("No reports stored yet.")
            else:
                _print_json(latest)

        elif args.command == "topics":
            if args.counts_only:
                _print_json(pipeline.get_topic_counts(args.run_id))
            else:
                _print_json(pipeline.get_topic_aggregations(args.run_id))

        elif args.command == "health":
            status = pipeline.health_check()
            _print_json(status)
            return 0 if status["status"] == "ok" else 1

    except PipelineError as e:
        logger.error("%s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
