# --------------------------- bizbot/utils/json_extract.py ----------------------------
"""
First-JSON-object extraction for free-text LLM responses.

LLMs wrap the requested JSON in prose or markdown fences. A greedy regex
(``\\{[\\s\\S]*\\}``) truncates or over-captures when the prose itself contains
braces, so this module does an explicit brace-matching scan that is aware
of string literals and escapes, bounded by a maximum nesting depth.
"""

import json
from typing import Any, Dict, Iterator, Optional, Tuple

from bizbot.config import settings
from bizbot.errors import MalformedUpstreamResponse


def _balanced_spans(text: str, max_depth: int) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) for each top-level balanced {...} span in order."""
    depth = 0
    start: Optional[int] = None
    too_deep = False
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
            if depth > max_depth:
                # Too deep to be a config/classification object; drop the whole span
                too_deep = True
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                if start is not None and not too_deep:
                    yield start, i + 1
                start = None
                too_deep = False


def extract_json_object(text: str, max_depth: int = None) -> Dict[str, Any]:
    """
    Return the first balanced substring of ``text`` that parses as a JSON object.

    Balanced spans that do not parse (e.g. ``{nombre}`` placeholders in the
    prose) are skipped. Raises MalformedUpstreamResponse when nothing usable
    is found.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedUpstreamResponse("empty response")

    limit = max_depth or settings.MAX_JSON_DEPTH
    for start, end in _balanced_spans(text, limit):
        try:
            value = json.loads(text[start:end])
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value

    raise MalformedUpstreamResponse("no JSON object found in response")
