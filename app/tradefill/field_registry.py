from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class FieldSpec:
    key: str
    field_type: str
    label: str
    placeholder: Optional[str] = None
    # Regex fragments for labels that introduce this field in free text.
    label_hints: List[str] = field(default_factory=list)
    choices: List[str] = field(default_factory=list)
    description: str = ""


FIELDS: List[FieldSpec] = [
    FieldSpec(
        key="transactionRole",
        field_type="choice",
        label="In this transaction you are",
        placeholder="Exporter/Supplier (Beneficiary) or Importer (Applicant)",
        label_hints=[r"transaction\s*role", r"role\s+in\s+(?:the\s+|this\s+)?transaction"],
        choices=["exporter", "importer"],
        description="exporter (beneficiary/supplier) or importer (applicant)",
    ),
    FieldSpec(
        key="amount",
        field_type="amount",
        label="Amount",
        placeholder="Enter Amount (e.g. 100.000,OO USD)",
        label_hints=[
            r"total\s*price",
            r"total\s*amount",
            r"(?:lc|l/c)\s*amount",
            r"amount",
            r"total",
        ],
        description="credit amount including currency",
    ),
    FieldSpec(
        key="paymentTerms",
        field_type="text",
        label="Payment Terms",
        placeholder="e.g., Sight LC, Usance LC",
        label_hints=[r"payment\s*terms?", r"terms\s+of\s+payment"],
        description="payment terms, e.g. Sight LC or Usance LC 90 days",
    ),
    FieldSpec(
        key="lcType",
        field_type="choice",
        label="LC Type",
        placeholder="e.g., Local or International",
        label_hints=[
            r"(?:lc|l/c)\s*type",
            r"type\s+of\s+(?:lc|l/c|letter\s+of\s+credit|credit)",
            r"letter\s+of\s+credit\s+type",
        ],
        choices=["local", "international"],
        description="local or international",
    ),
    FieldSpec(
        key="isLcIssued",
        field_type="yes_no",
        label="Is this LC issued?",
        placeholder="Yes or No",
        label_hints=[
            r"is\s*(?:the\s+|this\s+)?(?:lc|l/c)\s*issued",
            r"(?:lc|l/c)\s+issued",
            r"issued",
        ],
        description="Yes or No",
    ),
    FieldSpec(
        key="issuingBank",
        field_type="name",
        label="LC Issuing Bank",
        placeholder="Enter Issuing Bank",
        label_hints=[r"issuing\s*bank", r"opening\s+bank", r"issuer"],
        description="bank that issued the letter of credit",
    ),
    FieldSpec(
        key="confirmingBanks",
        field_type="name",
        label="Confirming Bank(s)",
        label_hints=[r"confirming\s*banks?(?:\s*\(s\))?"],
        description="confirming bank or banks, comma separated",
    ),
    FieldSpec(
        key="productDescription",
        field_type="text",
        label="Product Description",
        placeholder="Enter product description",
        label_hints=[
            r"product\s*description",
            r"description\s+of\s+goods",
            r"goods\s+description",
            r"description",
        ],
        description="goods or services covered by the credit",
    ),
    FieldSpec(
        key="importerName",
        field_type="name",
        label="Importer Name",
        placeholder="Enter Importer Name",
        label_hints=[r"importer(?:\s*name)?", r"consignee", r"applicant", r"buyer"],
        description="importer / applicant / consignee",
    ),
    FieldSpec(
        key="exporterName",
        field_type="name",
        label="Exporter Name",
        placeholder="Enter Exporter Name",
        label_hints=[r"exporter(?:\s*name)?", r"seller", r"beneficiary", r"supplier"],
        description="exporter / beneficiary / seller",
    ),
    FieldSpec(
        key="confirmationCharges",
        field_type="amount",
        label="Confirmation Charges",
        label_hints=[r"confirmation\s*charges?", r"confirmation\s*fees?"],
        description="confirmation charges, amount or percentage",
    ),
    FieldSpec(
        key="lastDateForReceivingBids",
        field_type="date",
        label="Last Date for Receiving Bids",
        label_hints=[
            r"last\s*date\s*for\s*receiving\s*bids",
            r"bid\s*deadline",
            r"closing\s*date",
            r"last\s*date",
            r"date",
        ],
        description="deadline for bids",
    ),
]

FIELD_NAMES = tuple(spec.key for spec in FIELDS)
_FIELD_INDEX: Dict[str, FieldSpec] = {spec.key: spec for spec in FIELDS}


def iter_fields() -> Iterable[FieldSpec]:
    return iter(FIELDS)


def get_field_spec(key: str) -> Optional[FieldSpec]:
    return _FIELD_INDEX.get(key)


def is_field_name(key: object) -> bool:
    return isinstance(key, str) and key in _FIELD_INDEX


def empty_record() -> Dict[str, str]:
    return {key: "" for key in FIELD_NAMES}


def field_registry_payload() -> Dict[str, object]:
    return {
        "fields": [
            {
                "key": spec.key,
                "field_type": spec.field_type,
                "label": spec.label,
                "placeholder": spec.placeholder,
                "choices": list(spec.choices),
            }
            for spec in FIELDS
        ]
    }
