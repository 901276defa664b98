"""Helpers for pulling structured data out of model output."""

import json
import re
from typing import Any, Dict, Optional

JSON_BLOCK_PATTERN = r'```(?:json)?\s*(\{[\s\S]*?\})\s*```'


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Find the first JSON object in model output.

    Tries fenced ```json blocks first, then the outermost {...} span.
    Returns None when nothing parses.
    """
    for match in re.findall(JSON_BLOCK_PATTERN, text or ""):
        try:
            return json.loads(match)
        except json.JSONDecodeError:
            continue

    start = (text or "").find("{")
    end = (text or "").rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
