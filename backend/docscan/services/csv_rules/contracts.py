"""CSV parsing rule contracts: how to read one bank's delimited export without a model call."""

from __future__ import annotations

import csv
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

AmountFormat = Literal["sign", "absolute"]
TypeDetection = Literal["sign", "separate_columns", "keyword"]

# Fields an owner may still edit before confirming a proposal.
EDITABLE_FIELDS = (
    "header_row",
    "data_start_row",
    "skip_footer_rows",
    "delimiter",
    "date_column",
    "date_format",
    "description_column",
    "amount_column",
    "debit_column",
    "credit_column",
    "balance_column",
    "reference_column",
    "amount_format",
    "type_detection",
    "debit_keywords",
    "thousands_separator",
    "decimal_separator",
    "currency_symbol",
)

# model proposal key -> contract field
_PROPOSAL_KEYS = {
    "headerRow": "header_row",
    "dataStartRow": "data_start_row",
    "skipFooterRows": "skip_footer_rows",
    "delimiter": "delimiter",
    "dateColumn": "date_column",
    "dateFormat": "date_format",
    "descriptionColumn": "description_column",
    "amountColumn": "amount_column",
    "debitColumn": "debit_column",
    "creditColumn": "credit_column",
    "balanceColumn": "balance_column",
    "referenceColumn": "reference_column",
    "amountFormat": "amount_format",
    "typeDetection": "type_detection",
    "debitKeywords": "debit_keywords",
    "thousandsSeparator": "thousands_separator",
    "decimalSeparator": "decimal_separator",
    "currencySymbol": "currency_symbol",
}

_DELIMITER_NAMES = {
    "tab": "\t",
    "\\t": "\t",
    "comma": ",",
    "semicolon": ";",
    "pipe": "|",
    "space": " ",
}

_COLUMN_FIELDS = (
    "date_column",
    "description_column",
    "amount_column",
    "debit_column",
    "credit_column",
    "balance_column",
    "reference_column",
)


class CsvParsingRules(BaseModel):
    id: str | None = None
    bank_identifier: str
    bank_display_name: str

    header_row: int = Field(default=0, ge=0)
    data_start_row: int = Field(default=1, ge=0)
    skip_footer_rows: int | None = Field(default=None, ge=0)
    delimiter: str | None = None

    date_column: str | None = None
    date_format: str = "YYYY-MM-DD"
    description_column: str | None = None
    amount_column: str | None = None
    debit_column: str | None = None
    credit_column: str | None = None
    balance_column: str | None = None
    reference_column: str | None = None

    amount_format: AmountFormat = "sign"
    type_detection: TypeDetection = "sign"
    debit_keywords: list[str] = Field(default_factory=list)
    thousands_separator: str | None = None
    decimal_separator: str = "."
    currency_symbol: str | None = None

    sample_headers: list[str] = Field(default_factory=list)
    sample_row: list[str] = Field(default_factory=list)

    created_by: str = ""
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    usage_count: int = 0
    last_used_at: datetime | None = None

    @field_validator(*_COLUMN_FIELDS, mode="before")
    @classmethod
    def _column_to_str(cls, v: Any) -> str | None:
        if v is None or isinstance(v, bool):
            return None
        text = str(v).strip()
        return text or None

    @field_validator("amount_format", mode="before")
    @classmethod
    def _amount_format(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        if text in ("absolute", "abs", "unsigned"):
            return "absolute"
        return "sign"

    @field_validator("type_detection", mode="before")
    @classmethod
    def _type_detection(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        if text in ("separate_columns", "column", "columns", "separate"):
            return "separate_columns"
        if text in ("keyword", "keywords"):
            return "keyword"
        return "sign"

    @field_validator("decimal_separator", mode="before")
    @classmethod
    def _decimal_separator(cls, v: Any) -> str:
        return str(v) if v in (".", ",") else "."

    @field_validator("delimiter", mode="before")
    @classmethod
    def _delimiter(cls, v: Any) -> str | None:
        return normalize_delimiter(v)

    @field_validator("thousands_separator", "currency_symbol", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> str | None:
        if v is None:
            return None
        text = str(v)
        return text if text.strip() or text == " " else None

    @field_validator("date_format", mode="before")
    @classmethod
    def _date_format(cls, v: Any) -> str:
        return str(v).strip() if v and str(v).strip() else "YYYY-MM-DD"

    @property
    def confirmed(self) -> bool:
        return self.confirmed_at is not None


def normalize_delimiter(value: Any) -> str | None:
    """Single delimiter character for *value*; models also answer "tab" or "semicolon"."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value)
    if len(text) == 1:
        return text
    return _DELIMITER_NAMES.get(text.strip().lower())


def split_row(line: str, delimiter: str | None = None) -> list[str]:
    """Split one delimited line, honouring quoted fields."""
    if not line:
        return []
    reader = csv.reader([line], delimiter=normalize_delimiter(delimiter) or ",", skipinitialspace=False)
    return [cell.strip() for cell in next(reader, [])]


def rules_from_proposal(
    proposal: dict[str, Any],
    *,
    bank_identifier: str,
    bank_display_name: str,
    created_by: str,
    sample_text: str,
) -> CsvParsingRules:
    """Build a rule set from the model's camelCase proposal.

    The sample header and data rows are cut from *sample_text*, the same
    bounded sample the model was shown.
    """
    fields: dict[str, Any] = {}
    for key, value in proposal.items():
        target = _PROPOSAL_KEYS.get(key, key if key in EDITABLE_FIELDS else None)
        if target is not None and value is not None:
            fields[target] = value

    header_row = _as_int(fields.get("header_row"), 0)
    data_start_row = _as_int(fields.get("data_start_row"), header_row + 1)
    fields["header_row"] = header_row
    fields["data_start_row"] = data_start_row
    if "skip_footer_rows" in fields:
        fields["skip_footer_rows"] = _as_int(fields["skip_footer_rows"], 0) or None
    if not isinstance(fields.get("debit_keywords"), list):
        fields.pop("debit_keywords", None)

    lines = sample_text.splitlines()
    delimiter = normalize_delimiter(fields.get("delimiter"))
    sample_headers = split_row(lines[header_row], delimiter) if header_row < len(lines) else []
    sample_row = split_row(lines[data_start_row], delimiter) if data_start_row < len(lines) else []

    return CsvParsingRules(
        bank_identifier=bank_identifier,
        bank_display_name=bank_display_name,
        created_by=created_by,
        sample_headers=sample_headers,
        sample_row=sample_row,
        **fields,
    )


def _as_int(value: Any, default: int) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return result if result >= 0 else default
