"""Helpers for turning raw model output into JSON values.

Models frequently wrap JSON in markdown fences or add a sentence before the
payload; these helpers tolerate both.
"""

from __future__ import annotations

import json
import re

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or *text* stripped."""
    text = text.strip()
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Unterminated fence (e.g. truncated response).
    if text.startswith("```"):
        text = re.sub(r"^```(?:json|JSON)?", "", text)
    return text.strip().rstrip("`").strip()


def _load_between(text: str, opener: str, closer: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    start = text.find(opener)
    end = text.rfind(closer)
    if start != -1 and end > start:
        return json.loads(text[start : end + 1])
    raise json.JSONDecodeError(f"No JSON value delimited by {opener}{closer} found", text, 0)


def parse_json_object(text: str) -> dict:
    """Parse a JSON object out of *text*.

    Raises :class:`json.JSONDecodeError` or :class:`ValueError` when no object
    can be recovered.
    """
    data = _load_between(strip_code_fences(text), "{", "}")
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_json_array(text: str) -> list:
    """Parse a JSON array out of *text*."""
    data = _load_between(strip_code_fences(text), "[", "]")
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    return data
