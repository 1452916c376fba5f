from __future__ import annotations

import random

from tradefill.field_registry import FIELD_NAMES, empty_record
from tradefill.pipeline.merge import changed_fields, complete_record, merge_fields


def _filled_record() -> dict:
    record = empty_record()
    record.update({"amount": "100 USD", "issuingBank": "HSBC", "lcType": "local"})
    return record


def test_empty_partial_is_noop() -> None:
    for record in (empty_record(), _filled_record()):
        assert merge_fields(record, {}) == record
        assert merge_fields(record, None) == record


def test_empty_values_never_overwrite() -> None:
    current = _filled_record()
    merged = merge_fields(current, {"amount": "", "issuingBank": "   ", "lcType": None})
    assert merged == current


def test_non_empty_values_replace_and_are_trimmed() -> None:
    merged = merge_fields(_filled_record(), {"issuingBank": "  Citibank ", "importerName": "Acme"})
    assert merged["issuingBank"] == "Citibank"
    assert merged["importerName"] == "Acme"
    assert merged["amount"] == "100 USD"


def test_unknown_keys_are_ignored() -> None:
    merged = merge_fields(empty_record(), {"bankAddress": "London", "Amount": "5"})
    assert merged == empty_record()
    assert set(merged) == set(FIELD_NAMES)


def test_merge_is_idempotent() -> None:
    partial = {"amount": "50", "paymentTerms": "Sight LC"}
    once = merge_fields(_filled_record(), partial)
    assert merge_fields(once, partial) == once


def test_populated_fields_survive_random_partials() -> None:
    rng = random.Random(7)
    choices = ["", "  ", "value", " other "]
    for _ in range(200):
        current = {key: rng.choice(["", "kept"]) for key in FIELD_NAMES}
        partial = {key: rng.choice(choices) for key in FIELD_NAMES if rng.random() < 0.5}
        merged = merge_fields(current, partial)
        assert set(merged) == set(FIELD_NAMES)
        for key in FIELD_NAMES:
            if current[key] and not (partial.get(key) or "").strip():
                assert merged[key] == current[key]
            assert merged[key] == merged[key].strip()


def test_complete_record_fills_missing_keys() -> None:
    record = complete_record({"amount": " 5 ", "other": "x"})
    assert record["amount"] == "5"
    assert set(record) == set(FIELD_NAMES)


def test_changed_fields_lists_updates_in_field_order() -> None:
    before = empty_record()
    after = merge_fields(before, {"issuingBank": "HSBC", "amount": "1"})
    assert changed_fields(before, after) == ["amount", "issuingBank"]
    assert changed_fields(after, after) == []
