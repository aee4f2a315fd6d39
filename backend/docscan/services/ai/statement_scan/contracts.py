"""Statement scan scope contracts: account details plus a short transaction preview."""

from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docscan.services.csv_rules.contracts import CsvParsingRules

AccountType = Literal["checking", "savings", "credit", "investment", "other"]
DocumentType = Literal["bank_statement", "credit_card", "investment", "unknown"]
RulesStatus = Literal["existing", "new", "none"]

MAX_SAMPLE_TRANSACTIONS = 5
DEFAULT_CONFIDENCE = 0.8

# Minimal default when the model output cannot be parsed even after repair.
SCAN_FALLBACK: dict[str, Any] = {
    "bankName": "Unknown Bank",
    "accountNumber": "Unknown",
    "currency": "USD",
    "documentType": "unknown",
    "pageCount": 1,
    "confidence": 0.3,
    "transactionCount": 0,
    "warnings": [],
    "suggestions": [],
}


def to_float(value: Any) -> float | None:
    """Finite float for *value*, else ``None``. NaN and Infinity count as missing."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float)):
        value = str(value).replace(",", "").replace("$", "").strip()
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def to_int(value: Any, default: int = 0) -> int:
    number = to_float(value)
    return int(number) if number is not None else default


class SampleTransaction(BaseModel):
    date: str = ""
    description: str = ""
    amount: float = 0.0
    type: Literal["credit", "debit"] = "debit"

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v: Any) -> float:
        return abs(to_float(v) or 0.0)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return "credit" if str(v or "").strip().lower() == "credit" else "debit"

    @field_validator("date", "description", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()


class TemplateMatch(BaseModel):
    template_id: str
    confidence: float


class ScanResult(BaseModel):
    """What a scan reports back for the user to confirm. Persisted by the caller."""

    model_config = ConfigDict(frozen=True)

    bank_name: str = "Unknown Bank"
    bank_name_raw: str | None = None
    bank_identifier: str = "unknown"
    needs_bank_identification: bool = False
    bank_country: str | None = None
    bank_branch: str | None = None

    account_number: str = "Unknown"
    account_holder_name: str | None = None
    account_type: AccountType = "other"
    currency: str = "USD"
    currencies: list[str] | None = None

    document_type: DocumentType = "unknown"
    page_count: int = 1
    period_start: str | None = None
    period_end: str | None = None
    opening_balance: float | None = None
    closing_balance: float | None = None

    transaction_count: int = 0
    sample_transactions: list[SampleTransaction] = Field(default_factory=list)

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    template_match: TemplateMatch | None = None
    csv_parsing_rules_id: str | None = None
    csv_parsing_rules_status: RulesStatus = "none"
    csv_parsing_rules: CsvParsingRules | None = None

    input_tokens: int = 0
    output_tokens: int = 0

    @field_validator("account_type", mode="before")
    @classmethod
    def _account_type(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        return text if text in ("checking", "savings", "credit", "investment") else "other"

    @field_validator("document_type", mode="before")
    @classmethod
    def _document_type(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        return text if text in ("bank_statement", "credit_card", "investment") else "unknown"

    @field_validator("currencies", mode="before")
    @classmethod
    def _currencies(cls, v: Any) -> list[str] | None:
        if isinstance(v, list):
            return [str(c) for c in v if c] or None
        return None

    @field_validator("sample_transactions", mode="before")
    @classmethod
    def _samples(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, (dict, SampleTransaction))][:MAX_SAMPLE_TRANSACTIONS]

    @field_validator("warnings", "suggestions", mode="before")
    @classmethod
    def _messages(cls, v: Any) -> list[str]:
        if not v:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item]
