from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from ..field_registry import FIELD_NAMES, get_field_spec
from ..schemas import ValidationIssue, ValidationReport
from .label_noise import is_placeholder_value, looks_like_label_value
from .normalize import (
    normalize_date,
    normalize_lc_type,
    normalize_transaction_role,
    normalize_whitespace,
    normalize_yes_no,
)

RE_HAS_DIGIT = re.compile(r"\d")
RE_PERCENT = re.compile(r"\d+(?:[.,]\d+)?\s*%")


@dataclass
class RuleResult:
    is_valid: bool
    reasons: List[str]
    normalized: Optional[str] = None


def validate_choice(key: str, value: str, choices: List[str]) -> RuleResult:
    if key == "transactionRole":
        normalized = normalize_transaction_role(value)
    elif key == "lcType":
        normalized = normalize_lc_type(value)
    else:
        lowered = value.strip().lower()
        normalized = lowered if lowered in choices else None
    if not normalized or normalized not in choices:
        return RuleResult(False, ["choice_value"], None)
    if normalized != value:
        return RuleResult(True, ["choice_normalize"], normalized)
    return RuleResult(True, ["choice_ok"], None)


def validate_yes_no(value: str) -> RuleResult:
    normalized = normalize_yes_no(value)
    if not normalized:
        return RuleResult(False, ["yes_no_value"], None)
    if normalized != value:
        return RuleResult(True, ["yes_no_normalize"], normalized)
    return RuleResult(True, ["yes_no_ok"], None)


def validate_amount(value: str) -> RuleResult:
    if not RE_HAS_DIGIT.search(value):
        return RuleResult(False, ["amount_missing_digits"], None)
    normalized = normalize_whitespace(value)
    if normalized and normalized != value:
        return RuleResult(True, ["amount_normalize"], normalized)
    if RE_PERCENT.search(value):
        return RuleResult(True, ["amount_percent"], None)
    return RuleResult(True, ["amount_ok"], None)


def validate_date(value: str) -> RuleResult:
    normalized = normalize_date(value)
    if not normalized:
        return RuleResult(False, ["date_format"], None)
    if normalized != value:
        return RuleResult(True, ["date_normalize"], normalized)
    return RuleResult(True, ["date_ok"], None)


def validate_name(value: str) -> RuleResult:
    if re.fullmatch(r"[^A-Za-z0-9]+", value):
        return RuleResult(False, ["name_format"], None)
    if len(value.strip()) < 2:
        return RuleResult(False, ["name_length"], None)
    normalized = normalize_whitespace(value)
    if normalized and normalized != value:
        return RuleResult(True, ["name_normalize"], normalized)
    return RuleResult(True, ["name_ok"], None)


def validate_field(key: str, value: Optional[str]) -> RuleResult:
    """Check one field value; empty values are valid (the field is simply unknown)."""
    spec = get_field_spec(key)
    if spec is None:
        return RuleResult(False, ["unknown_field"], None)
    if not value or not value.strip():
        return RuleResult(True, ["empty"], None)
    if is_placeholder_value(value):
        return RuleResult(False, ["placeholder_value"], None)
    if spec.field_type == "choice":
        return validate_choice(key, value, spec.choices)
    if spec.field_type == "yes_no":
        return validate_yes_no(value)
    if looks_like_label_value(value, spec.label_hints):
        return RuleResult(False, ["label_noise"], None)
    if spec.field_type == "amount":
        return validate_amount(value)
    if spec.field_type == "date":
        return validate_date(value)
    if spec.field_type == "name":
        return validate_name(value)
    return RuleResult(True, ["text_ok"], None)


_MESSAGES: Dict[str, str] = {
    "placeholder_value": "Value is a placeholder, not data",
    "label_noise": "Value looks like a form label",
    "choice_value": "Value is not one of the allowed choices",
    "choice_normalize": "Value can be normalized to an allowed choice",
    "yes_no_value": "Expected Yes or No",
    "yes_no_normalize": "Value can be normalized to Yes/No",
    "amount_missing_digits": "Amount has no digits",
    "amount_normalize": "Amount whitespace can be normalized",
    "date_format": "Could not parse a date",
    "date_normalize": "Date can be normalized to ISO format",
    "name_format": "Name has no letters or digits",
    "name_length": "Name is too short",
    "name_normalize": "Name whitespace can be normalized",
}


def validate_record(fields: Mapping[str, Optional[str]]) -> ValidationReport:
    """Run field rules over a complete record; never mutates it."""
    issues: List[ValidationIssue] = []
    filled = 0
    passed = 0
    for key in FIELD_NAMES:
        value = fields.get(key) or ""
        result = validate_field(key, value)
        if not value.strip():
            continue
        filled += 1
        if result.is_valid:
            passed += 1
        reason = result.reasons[0] if result.reasons else "invalid"
        if not result.is_valid or result.normalized:
            issues.append(
                ValidationIssue(
                    field=key,
                    severity="error" if not result.is_valid else "info",
                    rule=reason,
                    message=_MESSAGES.get(reason, reason),
                    current_value=value,
                    suggestion=result.normalized,
                )
            )
    score = round(passed / filled, 2) if filled else 0.0
    ok = not any(issue.severity == "error" for issue in issues)
    return ValidationReport(ok=ok, issues=issues, score=score)
