"""Prompt for paper topic classification."""

from trend_types import Category

CLASSIFICATION_PROMPT_TEMPLATE = """You are an AI research paper classifier. Please classify the following research paper and assess its potential impact.

Paper Title: {title}

Paper Summary: {summary}

Available Categories: {categories}

Please respond with a JSON object in this exact format:
{{
  "primary_category": "one of the available categories",
  "secondary_categories": ["up to 2 additional relevant categories"],
  "potential_impact": 1-5 (integer, where 1=low impact, 5=high impact)
}}

Guidelines:
- Choose the PRIMARY category that best represents the main focus of the paper
- Select up to 2 SECONDARY categories for additional relevant areas (can be empty array)
- Rate potential impact from 1-5 based on novelty, methodology quality, and potential applications
- Impact 1-2: Incremental improvements or narrow applications
- Impact 3: Solid contributions with moderate broader applicability
- Impact 4-5: Significant advances with high potential for broad impact

Respond only with the JSON object, no additional text."""


def build_classification_prompt(title: str, summary: str) -> str:
    """Build the classification prompt for one paper.

    The prompt is deterministic for a given title and summary.
    """
    return CLASSIFICATION_PROMPT_TEMPLATE.format(
        title=title,
        summary=summary,
        categories=", ".join(Category.labels()),
    )
