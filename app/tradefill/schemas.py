from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FieldRecord(BaseModel):
    """Complete form record: every key present, unknown values are empty strings."""

    model_config = ConfigDict(extra="forbid")

    transactionRole: str = ""
    amount: str = ""
    paymentTerms: str = ""
    lcType: str = ""
    isLcIssued: str = ""
    issuingBank: str = ""
    confirmingBanks: str = ""
    productDescription: str = ""
    importerName: str = ""
    exporterName: str = ""
    confirmationCharges: str = ""
    lastDateForReceivingBids: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value


class MapRequest(BaseModel):
    text: str
    current_fields: Optional[FieldRecord] = None


class ValidationIssue(BaseModel):
    field: str
    severity: str
    rule: str
    message: str
    current_value: Optional[str] = None
    suggestion: Optional[str] = None


class ValidationReport(BaseModel):
    ok: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    score: float = 0.0

