"""Utilities for extracting JSON objects from model responses."""

from __future__ import annotations

import json
import re
from typing import Any, Dict

# A fence must enclose the whole response; text around it is not stripped
ENCLOSING_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` fence enclosing the whole text, if present."""
    stripped = text.strip()
    match = ENCLOSING_FENCE_PATTERN.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse model output as a single JSON object.

    An enclosing code fence is removed; everything else must be strict JSON.
    Prose around the object, trailing commas and other near-JSON are
    rejected. Raises ValueError if the text is not a JSON object.
    """
    if not text or not text.strip():
        raise ValueError("Empty response; no JSON to parse")

    candidate = strip_code_fences(text)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"JSON decode failed: {e}; candidate snippet: {candidate[:300]}") from e

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
