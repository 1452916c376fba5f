from __future__ import annotations

import json
from typing import Dict, Optional

from ..field_registry import iter_fields

ERROR_SENTINEL = "error"

FIELD_MAPPING_PROMPT = """
You map OCR text from a trade-finance document (letter of credit, proforma invoice,
bid request) onto a fixed set of form fields. Return JSON only. Do not wrap in markdown.

Allowed keys (exact spelling, case-sensitive):
{field_lines}

Rules:
- Return ONLY a single JSON object whose keys are a subset of the allowed keys.
- Include only the fields whose values should change. Omit fields you cannot find;
  never emit empty strings or null.
- Every value must be a string copied or trivially normalized from the OCR text.
  Never invent banks, names, amounts or dates.
- Keep currency with amounts (e.g. "100,000.00 USD").
- transactionRole must be "exporter" or "importer"; lcType must be "local" or
  "international"; isLcIssued must be "Yes" or "No".
- If no field can be extracted, reply with the single word: {sentinel}

Current form values (empty string = not filled yet):
{current_fields}
""".strip()


def _field_lines() -> str:
    lines = []
    for spec in iter_fields():
        hint = f" ({spec.description})" if spec.description else ""
        lines.append(f"- {spec.key}{hint}")
    return "\n".join(lines)


def build_field_mapping_prompt(current_fields: Optional[Dict[str, str]] = None) -> str:
    current = json.dumps(current_fields or {}, indent=2, ensure_ascii=False)
    return FIELD_MAPPING_PROMPT.format(
        field_lines=_field_lines(),
        sentinel=ERROR_SENTINEL,
        current_fields=current,
    )


def build_engine_user_message(raw_text: str, directive: str) -> str:
    return f'{directive}\n\nOCR text:\n"""\n{raw_text}\n"""'
