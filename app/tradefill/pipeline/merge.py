from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from ..field_registry import FIELD_NAMES


def complete_record(fields: Optional[Mapping[str, object]]) -> Dict[str, str]:
    """Return a record with exactly the known keys; missing or non-string values become ''."""
    source = fields or {}
    record: Dict[str, str] = {}
    for key in FIELD_NAMES:
        value = source.get(key)
        record[key] = value.strip() if isinstance(value, str) else ""
    return record


def merge_fields(current: Mapping[str, object], partial: Optional[Mapping[str, object]]) -> Dict[str, str]:
    """Apply non-empty values from ``partial`` over ``current``; never clears a field."""
    merged = complete_record(current)
    for key in FIELD_NAMES:
        value = (partial or {}).get(key)
        if isinstance(value, str) and value.strip():
            merged[key] = value.strip()
    return merged


def changed_fields(before: Mapping[str, object], after: Mapping[str, object]) -> List[str]:
    old = complete_record(before)
    new = complete_record(after)
    return [key for key in FIELD_NAMES if old[key] != new[key]]
