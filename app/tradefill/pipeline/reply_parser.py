"""Recover a partial field record from an LLM reply.

Each tier is a pure function returning a partial record, or ``None`` to mean
"try the next tier". Order: sentinel check, strict JSON, embedded JSON span,
labeled-regex fallback.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Dict, List, Mapping, Optional, Pattern, Tuple

from ..field_registry import is_field_name, iter_fields
from .prompts import ERROR_SENTINEL

LOGGER = logging.getLogger(__name__)

STRICT_JSON = "strict_json"
EMBEDDED_JSON = "embedded_json"
LABELED_REGEX = "labeled_regex"

_DECODER = json.JSONDecoder()


def is_error_sentinel(reply: Optional[str]) -> bool:
    if reply is None:
        return False
    return reply.strip().casefold() == ERROR_SENTINEL


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(_stringify(item) for item in value if item is not None and _stringify(item))
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def coerce_fields(parsed: Mapping[str, object]) -> Dict[str, str]:
    """Keep allowed keys only, stringify values, drop null/blank ones."""
    fields: Dict[str, str] = {}
    for key, value in parsed.items():
        if not is_field_name(key) or value is None:
            continue
        text = _stringify(value).strip()
        if text:
            fields[key] = text
    return fields


def parse_strict_json(reply: str) -> Optional[Dict[str, str]]:
    try:
        parsed = json.loads(reply)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return coerce_fields(parsed)


def _embedded_candidates(reply: str) -> List[str]:
    start = reply.find("{")
    if start == -1:
        return []
    candidates: List[str] = []
    try:
        _, end = _DECODER.raw_decode(reply, start)
        candidates.append(reply[start:end])
    except ValueError:
        pass
    last = reply.rfind("}")
    if last > start:
        span = reply[start : last + 1]
        if span not in candidates:
            candidates.append(span)
    return candidates


def parse_embedded_json(reply: str) -> Optional[Dict[str, str]]:
    """Parse the object starting at the first '{' (matching brace, else last '}')."""
    for candidate in _embedded_candidates(reply):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return coerce_fields(parsed)
    return None


def _label_alternation(hints: List[str]) -> str:
    return "|".join(f"(?:{hint})" for hint in hints)


# "Label: value" is preferred; OCR'd prose often drops the colon ("Issuing Bank Deutsche Bank").
_COLON_SEPARATOR = r"[\"']?\??\s*[:=]\s*"
_SPACE_SEPARATOR = r"[\"']?\??[ \t]+"


def _build_label_patterns() -> List[Tuple[str, Pattern[str], Pattern[str]]]:
    per_field: List[Tuple[str, List[str]]] = []
    all_hints: List[str] = []
    for spec in iter_fields():
        hints = list(spec.label_hints) + [re.escape(spec.key)]
        per_field.append((spec.key, hints))
        all_hints.extend(hints)
    any_label = _label_alternation(all_hints)
    # A value runs until end of line or until the next "<label>:" on the same line.
    value_end = rf"(?=\s+[\"']?(?:{any_label})[\"']?\s*[:=]|\s*(?:\n|$))"
    patterns = []
    for key, hints in per_field:
        compiled = [
            re.compile(
                rf"\b(?:{_label_alternation(hints)}){separator}[\"']?([^\n]+?)[\"']?[,;}}]*{value_end}",
                re.IGNORECASE,
            )
            for separator in (_COLON_SEPARATOR, _SPACE_SEPARATOR)
        ]
        patterns.append((key, compiled[0], compiled[1]))
    return patterns


LABEL_PATTERNS = _build_label_patterns()


def parse_labeled_fields(reply: str) -> Dict[str, str]:
    """Last-resort extraction from 'Label: value' or 'Label value' text; never returns None."""
    fields: Dict[str, str] = {}
    for key, colon_pattern, space_pattern in LABEL_PATTERNS:
        match = colon_pattern.search(reply) or space_pattern.search(reply)
        if not match:
            continue
        value = (match.group(1) or "").strip()
        if value:
            fields[key] = value
    return fields


def parse_reply(reply: str) -> Tuple[Dict[str, str], str]:
    """Run the JSON tiers then the regex fallback; returns (fields, strategy)."""
    for strategy, tier in ((STRICT_JSON, parse_strict_json), (EMBEDDED_JSON, parse_embedded_json)):
        fields = tier(reply)
        if fields is not None:
            return fields, strategy
    LOGGER.info("LLM reply was not JSON; falling back to labeled regex extraction")
    return parse_labeled_fields(reply), LABELED_REGEX
