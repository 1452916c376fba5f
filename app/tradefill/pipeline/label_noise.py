from __future__ import annotations

import re
from typing import Iterable, Optional

from ..field_registry import iter_fields

PLACEHOLDER_VALUES = {
    "n/a",
    "na",
    "none",
    "not applicable",
    "not available",
    "not found",
    "not specified",
    "unknown",
    "nil",
    "null",
    "tbd",
    "-",
}

# Labels that OCR/LLM output sometimes echoes back as a value.
LABEL_NOISE_PHRASES = [
    "letter of credit",
    "issuing bank",
    "confirming bank",
    "confirming banks",
    "advising bank",
    "beneficiary",
    "applicant",
    "importer name",
    "exporter name",
    "product description",
    "description of goods",
    "payment terms",
    "amount",
    "total",
    "lc type",
    "enter amount",
    "enter issuing bank",
    "enter importer name",
    "enter exporter name",
    "enter product description",
    "yes or no",
]


def _normalize(value: str) -> str:
    cleaned = re.sub(r"[^a-z0-9/ ]+", " ", value.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def is_placeholder_value(value: Optional[str]) -> bool:
    if not value:
        return False
    return value.strip().lower() in PLACEHOLDER_VALUES


def _registry_labels() -> Iterable[str]:
    for spec in iter_fields():
        yield spec.label
        if spec.placeholder:
            yield spec.placeholder


def looks_like_label_value(value: Optional[str], label_hints: Optional[Iterable[str]] = None) -> bool:
    """True when the value is just a form label or placeholder rather than data."""
    if not value:
        return False
    normalized = _normalize(value)
    if not normalized:
        return False
    if normalized in {_normalize(phrase) for phrase in LABEL_NOISE_PHRASES}:
        return True
    if normalized in {_normalize(label) for label in _registry_labels()}:
        return True
    # Hints are regex fragments (e.g. r"total\s*price"); the whole value must be one of them.
    bare = value.strip().strip("\"'").rstrip(":?").strip()
    for hint in label_hints or []:
        if re.fullmatch(hint, bare, re.IGNORECASE):
            return True
    return False
