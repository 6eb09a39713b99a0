"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import json
import re
from typing import List

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        text = "\n".join(lines)
    return text


def parse_llm_json(raw: str) -> dict:
    """Parse JSON from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict
    """
    if not raw:
        return {}

    text = _strip_fences(raw)
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start >= 0 and end > start:
        try:
            parsed = json.loads(raw[start:end])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    return {}


def parse_llm_list(raw: str, limit: int = 0) -> List[str]:
    """Parse a comma-, newline- or bullet-separated list of short items.

    JSON arrays and objects holding an array are accepted too.
    Quotes and list markers are stripped, blanks and repeats dropped
    (case-insensitive), order kept. ``limit`` > 0 caps the result.
    """
    if not raw:
        return []

    text = _strip_fences(raw)
    if text.startswith("["):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                text = "\n".join(str(p) for p in parsed)
        except json.JSONDecodeError:
            pass
    elif text.startswith("{"):
        # {"terms": [...]} style answers: take the first list value
        for value in parse_llm_json(text).values():
            if isinstance(value, list):
                text = "\n".join(str(p) for p in value)
                break

    # A one-line answer is comma separated, a multi-line answer is one item per line
    lines = [l for l in text.split("\n") if l.strip()]
    if len(lines) == 1:
        parts = lines[0].split(",")
    else:
        parts = lines

    items = []
    seen = set()
    for part in parts:
        item = _BULLET.sub("", part).strip().strip("\"'`").strip()
        item = item.rstrip(".;")
        if not item or item.lower() in seen:
            continue
        seen.add(item.lower())
        items.append(item)
        if limit and len(items) >= limit:
            break
    return items
