"""PDF-to-sheet scope contracts: column detection and per-page row extraction."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from docscan.services.ai.statement_scan.contracts import to_float

ColumnType = Literal["string", "number", "date", "currency", "boolean"]
COLUMN_TYPES = ("string", "number", "date", "currency", "boolean")


class ColumnSpec(BaseModel):
    name: str = Field(min_length=1)
    type: ColumnType = "string"
    description: str = ""
    example: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        text = str(v or "").strip().lower()
        return text if text in COLUMN_TYPES else "string"

    @field_validator("description", "example", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class PageExtractionResult(BaseModel):
    page: int
    rows: list[dict[str, Any]] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def failed(cls, page: int, reason: str) -> "PageExtractionResult":
        return cls(page=page, rows=[], confidence=0.0, warnings=[f"Extraction failed: {reason}"])


class BatchExtractResult(BaseModel):
    results: list[PageExtractionResult] = Field(default_factory=list)
    total_rows: int = 0


class Pdf2SheetScanResult(BaseModel):
    headers: list[ColumnSpec] = Field(default_factory=list)
    sample_rows: list[dict[str, Any]] = Field(default_factory=list)
    document_type: str = "unknown"
    supplier_name: str | None = None
    document_date: str | None = None
    document_number: str | None = None
    page_count: int = 1
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_extractable: bool = False
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0


def clamp_confidence(value: Any, default: float) -> float:
    number = to_float(value)
    if number is None:
        return default
    return min(max(number, 0.0), 1.0)


PAGE_FALLBACK: dict[str, Any] = {"rows": [], "confidence": 0.0, "warnings": []}

COLUMN_SCAN_FALLBACK: dict[str, Any] = {
    "headers": [],
    "sampleRows": [],
    "documentType": "not_extractable",
    "pageCount": 1,
    "confidence": 0.0,
    "isExtractable": False,
    "warnings": ["Could not analyze this document. It may be an image, corrupted, or contain no extractable data."],
    "suggestions": ["Try uploading a different document with clear tabular data like an invoice or bank statement."],
}
