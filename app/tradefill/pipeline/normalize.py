from __future__ import annotations

import re
from typing import Optional

from dateutil import parser

YES_VALUES = {"yes", "y", "true", "issued", "already issued"}
NO_VALUES = {"no", "n", "false", "not issued", "not yet issued", "pending"}

TRANSACTION_ROLE_ALIASES = {
    "exporter": "exporter",
    "supplier": "exporter",
    "seller": "exporter",
    "beneficiary": "exporter",
    "exporter/supplier": "exporter",
    "importer": "importer",
    "applicant": "importer",
    "buyer": "importer",
    "consignee": "importer",
}

LC_TYPE_ALIASES = {
    "local": "local",
    "domestic": "local",
    "inland": "local",
    "international": "international",
    "foreign": "international",
    "export": "international",
    "import": "international",
}


def normalize_whitespace(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return re.sub(r"\s+", " ", value.strip())


def normalize_yes_no(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    key = value.strip().lower().rstrip(".")
    if key in YES_VALUES:
        return "Yes"
    if key in NO_VALUES:
        return "No"
    return None


def _alias_lookup(value: Optional[str], aliases: dict) -> Optional[str]:
    if not value:
        return None
    key = value.strip().lower().rstrip(".")
    if key in aliases:
        return aliases[key]
    # "Exporter/Supplier (Beneficiary)" and similar free-form labels.
    for word in re.findall(r"[a-z]+", key):
        if word in aliases:
            return aliases[word]
    return None


def normalize_transaction_role(value: Optional[str]) -> Optional[str]:
    return _alias_lookup(value, TRANSACTION_ROLE_ALIASES)


def normalize_lc_type(value: Optional[str]) -> Optional[str]:
    return _alias_lookup(value, LC_TYPE_ALIASES)


def normalize_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.strip().rstrip(".")
    try:
        parsed = parser.parse(cleaned, dayfirst=False, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()
