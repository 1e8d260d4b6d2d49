"""Classify papers into research topics with an LLM.

Two failure tiers:
- Configuration and transport failures (no API key, HTTP error from the
  LLM service, no completions returned) raise and abort the run.
- Content failures (invalid JSON, values outside the category set, too many
  secondary categories, impact out of range) degrade to the fallback
  classification.
"""

import concurrent.futures
import logging
import time
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from classify.json_utils import extract_json_object
from classify.prompts import build_classification_prompt
from classify.text_sanitize import sanitize_for_llm
from config.app_config import LLMConfig
from trend_types import (
    FALLBACK_CLASSIFICATION,
    Category,
    Classification,
    ClassifierConfigError,
    ClassifierTransportError,
    RawPaper,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("primary_category", "secondary_categories", "potential_impact")


def validate_classification(data: Dict[str, Any]) -> Classification:
    """Validate a parsed model response against the classification contract.

    Args:
        data: Parsed JSON object

    Returns:
        Classification

    Raises:
        ValueError: If a field is missing, has the wrong type, or holds a value
            outside the category set / impact range
    """
    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise ValueError(f"Missing required fields: {missing}")

    primary = data["primary_category"]
    secondary = data["secondary_categories"]
    impact = data["potential_impact"]

    type_errors = []
    if not isinstance(primary, str):
        type_errors.append("primary_category must be a string")
    if not isinstance(secondary, list) or not all(isinstance(s, str) for s in secondary):
        type_errors.append("secondary_categories must be a list of strings")
    if isinstance(impact, bool) or not isinstance(impact, (int, float)):
        type_errors.append("potential_impact must be a number")
    elif isinstance(impact, float) and not impact.is_integer():
        type_errors.append("potential_impact must be an integer")
    if type_errors:
        raise ValueError(f"Type mismatches: {type_errors}")

    return Classification(
        primary_category=Category.from_label(primary),
        secondary_categories=tuple(Category.from_label(s) for s in secondary),
        potential_impact=int(impact),
    )


def parse_classification(response_text: Optional[str]) -> Classification:
    """Parse model output into a Classification, falling back on any error."""
    try:
        return validate_classification(extract_json_object(response_text or ""))
    except ValueError as e:
        snippet = (response_text or "")[:200]
        logger.warning("Invalid classification response, using fallback: %s | %r", e, snippet)
        return FALLBACK_CLASSIFICATION


class PaperClassifier:
    """Topic classifier backed by an OpenAI-compatible chat endpoint (OpenRouter)."""

    def __init__(self, config: LLMConfig, client: Optional[Any] = None):
        self.config = config
        self._client = client

    def _get_client(self):
        if not self.config.api_key:
            raise ClassifierConfigError("OPENROUTER_API_KEY is required for classification")
        if self._client is None:
            self._client = OpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=0,
                default_headers={
                    "HTTP-Referer": self.config.app_url,
                    "X-Title": self.config.app_title,
                },
            )
        return self._client

    def complete(self, prompt: str) -> str:
        """Send a single user prompt and return the first completion's text.

        Raises:
            ClassifierConfigError: If no API key is configured
            ClassifierTransportError: On API errors or when no completions are returned
        """
        client = self._get_client()

        # UTF-8 round trip so that nothing unencodable reaches the HTTP layer
        user_msg = sanitize_for_llm(prompt).encode("utf-8", "replace").decode("utf-8")

        try:
            response = client.chat.completions.create(
                model=self.config.model,
                messages=[{"role": "user", "content": user_msg}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.APIStatusError as e:
            raise ClassifierTransportError(
                f"LLM service error: {e.status_code} {e.message}"
            ) from e
        except openai.APIError as e:
            raise ClassifierTransportError(f"LLM request failed: {e}") from e

        if not getattr(response, "choices", None):
            raise ClassifierTransportError("LLM service returned no completions")

        return response.choices[0].message.content or ""

    def classify(self, title: str, summary: str) -> Classification:
        """Classify one paper by title and summary.

        Args:
            title: Paper title
            summary: Paper abstract

        Returns:
            Validated Classification, or the fallback (Other, [], 1) when the
            model output is unusable

        Raises:
            ClassifierConfigError: If no API key is configured
            ClassifierTransportError: If the LLM call itself fails
        """
        prompt = build_classification_prompt(title, summary)
        start_time = time.time()
        response_text = self.complete(prompt)
        classification = parse_classification(response_text)
        logger.info(
            "Classified '%s' as %s (impact=%d) in %dms",
            title[:80],
            classification.primary_category.value,
            classification.potential_impact,
            int((time.time() - start_time) * 1000),
        )
        return classification


def classify_papers(
    classifier: PaperClassifier,
    papers: List[RawPaper],
    max_workers: int = 1,
) -> List[Classification]:
    """Classify a batch of papers, optionally in parallel.

    Results are returned in input order. The first configuration or
    transport error aborts the batch.

    Args:
        classifier: Classifier instance
        papers: Papers to classify
        max_workers: Number of concurrent LLM calls (1 = sequential)

    Returns:
        One Classification per paper, aligned with papers
    """
    if not papers:
        return []

    logger.info("Classifying %d papers (workers=%d)", len(papers), max_workers)

    if max_workers <= 1:
        return [classifier.classify(paper.title, paper.summary) for paper in papers]

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(classifier.classify, paper.title, paper.summary)
            for paper in papers
        ]
        try:
            return [future.result() for future in futures]
        except Exception:
            for future in futures:
                future.cancel()
            raise
