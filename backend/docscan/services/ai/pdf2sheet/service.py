"""PDF-to-sheet: detect a document's table columns, then extract rows page by page."""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.orm import Session

from docscan.core.config import get_settings
from docscan.core.storage import fetch_bytes
from docscan.services.ai.common.invoker import InvocationResult, invoke_structured
from docscan.services.ai.common.providers.base import Attachment
from docscan.services.ai.common.router import ResolvedConfig, resolve
from docscan.services.ai.common.usage import DatabaseUsageSink, UsageEvent, UsageSink
from docscan.services.ai.statement_scan.contracts import to_int
from docscan.services.content_preparer import DEFAULT_BINARY_MIME, prepare_content, resolve_content_type
from docscan.services.errors import FileRetrievalError, InvalidInputError

from .contracts import (
    COLUMN_SCAN_FALLBACK,
    PAGE_FALLBACK,
    BatchExtractResult,
    ColumnSpec,
    PageExtractionResult,
    Pdf2SheetScanResult,
    clamp_confidence,
)
from .scheduler import PageScheduler

logger = logging.getLogger(__name__)

DEFAULT_PAGE_CONFIDENCE = 0.8
COLUMN_SCAN_MAX_TOKENS = 4096

COLUMN_SCAN_PROMPT = """You are a document analysis expert specializing in extracting tabular data from PDFs.

Analyze this document and identify ANY tabular or structured data that could be extracted into a spreadsheet
(financial transactions, invoice line items, product lists, employee records, sales reports, inventory lists).

Your task:
1. Identify the columns/headers that would best represent the data
2. Determine the data type for each column
3. Extract 3-5 sample rows to demonstrate the structure
4. Estimate the total number of pages

Return ONLY valid JSON in this exact format:
{
  "headers": [
    {"name": "string", "type": "string|number|date|currency|boolean", "description": "string", "example": "string"}
  ],
  "sampleRows": [{"Column1": "value1", "Column2": "value2"}],
  "documentType": "bank_statement|invoice|report|inventory|image|letter|unknown|not_extractable",
  "supplierName": "string or null",
  "documentDate": "YYYY-MM-DD or null",
  "documentNumber": "string or null",
  "pageCount": number,
  "confidence": number (0-1),
  "isExtractable": true or false,
  "warnings": ["string"],
  "suggestions": ["string"]
}

IMPORTANT:
- Focus on the FIRST PAGE to understand the structure
- Use Title Case column names; sample rows use the header names as keys
- For currency values use type "currency" not "number"; for dates use type "date"
- If the document has no extractable tabular data, set isExtractable to false, headers and sampleRows to [], confidence to 0, and add a warning explaining why"""

PAGE_EXTRACT_PROMPT = """You are a data extraction expert. Extract ALL rows of tabular data from PAGE {page} of {total} of this document.

COLUMN SCHEMA (use these EXACT column names):
{schema}

Return ONLY valid JSON:
{{
  "page": {page},
  "rows": [
    {{ {row_template} }}
  ],
  "confidence": number (0-1),
  "warnings": ["string"]
}}

RULES:
1. Extract EVERY row from page {page} - do not skip any data
2. Use the EXACT column names as object keys
3. Dates: YYYY-MM-DD format
4. Numbers/currency: numeric values only, no currency symbols
5. Empty cells: null
6. If a row is partially visible or unclear, still include it but add a warning
7. Focus ONLY on page {page}; keep the row order of the page"""

Fetcher = Callable[[str], Awaitable[bytes]]


def build_page_prompt(page: int, total_pages: int, columns: list[ColumnSpec]) -> str:
    schema = "\n".join(
        f'- "{c.name}" ({c.type}): {c.description or "No description"}' for c in columns
    )
    row_template = ", ".join(f'{json.dumps(c.name)}: "value"' for c in columns)
    return PAGE_EXTRACT_PROMPT.format(page=page, total=total_pages, schema=schema, row_template=row_template)


def _cell(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def normalize_rows(rows: Any, columns: list[ColumnSpec]) -> list[dict[str, Any]]:
    """Key every row by exactly the confirmed column names; missing cells are ``None``."""
    if not isinstance(rows, list):
        return []
    names = [c.name for c in columns]
    normalized: list[dict[str, Any]] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        folded = {str(k).strip().lower(): v for k, v in row.items()}
        normalized.append(
            {name: _cell(row[name] if name in row else folded.get(name.strip().lower())) for name in names}
        )
    return normalized


def _validate_columns(columns: list[ColumnSpec] | None) -> list[ColumnSpec]:
    if not columns:
        raise InvalidInputError("Column headers required")
    return list(columns)


def _validate_reference(file_reference: str | None) -> str:
    if not file_reference or not file_reference.strip():
        raise InvalidInputError("File reference required")
    return file_reference


async def _fetch(fetch: Fetcher | None, file_reference: str) -> bytes:
    try:
        return await (fetch or fetch_bytes)(file_reference)
    except FileRetrievalError:
        raise
    except Exception as exc:
        logger.exception("Failed to fetch %s", file_reference)
        raise FileRetrievalError(f"Failed to retrieve file: {exc}") from exc


def _usage_event(
    outcome: InvocationResult,
    *,
    usage_type: str,
    owner_id: str,
    org_id: str | None,
    prompt: str,
    rows: int,
    confidence: float,
    started: float,
    extra: dict[str, Any] | None = None,
) -> UsageEvent:
    return UsageEvent(
        owner_id=owner_id,
        org_id=org_id,
        usage_type=usage_type,
        provider=outcome.provider,
        model=outcome.model,
        input_tokens=outcome.input_tokens,
        output_tokens=outcome.output_tokens,
        pages_processed=1,
        rows_extracted=rows,
        confidence=confidence,
        status="needs_review" if outcome.degraded else "success",
        processing_time_ms=int((time.monotonic() - started) * 1000),
        prompt_text=prompt,
        response_text=outcome.raw_text,
        extra_meta=extra or {},
    )


class _PageExtractor:
    """One fetched document, one resolved model config, any number of pages."""

    def __init__(
        self,
        config: ResolvedConfig,
        attachment: Attachment,
        total_pages: int,
        columns: list[ColumnSpec],
        sink: UsageSink,
        *,
        owner_id: str,
        org_id: str | None,
    ) -> None:
        self.config = config
        self.attachment = attachment
        self.total_pages = total_pages
        self.columns = columns
        self.sink = sink
        self.owner_id = owner_id
        self.org_id = org_id

    async def __call__(self, page: int) -> PageExtractionResult:
        started = time.monotonic()
        prompt = build_page_prompt(page, self.total_pages, self.columns)
        outcome = await invoke_structured(self.config, prompt, fallback=PAGE_FALLBACK, attachment=self.attachment)

        rows = normalize_rows(outcome.data.get("rows"), self.columns)
        default = 0.0 if outcome.degraded else DEFAULT_PAGE_CONFIDENCE
        result = PageExtractionResult(
            page=page,
            rows=rows,
            confidence=clamp_confidence(outcome.data.get("confidence"), default),
            warnings=[str(w) for w in outcome.data.get("warnings") or []],
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
        )
        await self.sink.record(
            _usage_event(
                outcome,
                usage_type="pdf2sheet_extraction",
                owner_id=self.owner_id,
                org_id=self.org_id,
                prompt=prompt,
                rows=len(rows),
                confidence=result.confidence,
                started=started,
                extra={"page": page},
            )
        )
        logger.info("Extracted %d rows from page %d", len(rows), page)
        return result


async def _extractor(
    file_reference: str,
    content_type: str | None,
    total_pages: int,
    columns: list[ColumnSpec],
    db: Session,
    *,
    owner_id: str,
    org_id: str | None,
    fetch: Fetcher | None,
    usage_sink: UsageSink | None,
    override_provider: str | None,
    override_model: str | None,
) -> _PageExtractor:
    data = await _fetch(fetch, file_reference)
    mime = resolve_content_type(file_reference, content_type) or DEFAULT_BINARY_MIME
    config = resolve("pdf2sheet_extract", override_provider=override_provider, override_model=override_model)
    return _PageExtractor(
        config,
        Attachment(data=data, mime_type=mime),
        total_pages,
        columns,
        usage_sink or DatabaseUsageSink(db),
        owner_id=owner_id,
        org_id=org_id,
    )


async def extract_page(
    file_reference: str | None,
    page_number: int,
    total_pages: int,
    columns: list[ColumnSpec] | None,
    db: Session,
    *,
    owner_id: str,
    org_id: str | None = None,
    content_type: str | None = None,
    fetch: Fetcher | None = None,
    usage_sink: UsageSink | None = None,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> PageExtractionResult:
    """Extract the rows of a single page with the confirmed columns."""
    file_reference = _validate_reference(file_reference)
    if page_number is None or page_number < 1:
        raise InvalidInputError("Valid page number required")
    columns = _validate_columns(columns)
    total_pages = max(total_pages or 0, page_number)

    settings = get_settings()
    extractor = await _extractor(
        file_reference,
        content_type,
        total_pages,
        columns,
        db,
        owner_id=owner_id,
        org_id=org_id,
        fetch=fetch,
        usage_sink=usage_sink,
        override_provider=override_provider,
        override_model=override_model,
    )
    scheduler = PageScheduler(batch_size=1, page_timeout_seconds=settings.ai_page_timeout_seconds)
    return await scheduler.run_page(page_number, extractor)


async def batch_extract(
    file_reference: str | None,
    total_pages: int,
    columns: list[ColumnSpec] | None,
    db: Session,
    *,
    owner_id: str,
    org_id: str | None = None,
    content_type: str | None = None,
    batch_size: int | None = None,
    fetch: Fetcher | None = None,
    usage_sink: UsageSink | None = None,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> BatchExtractResult:
    """Extract every page ``1..total_pages``; a failed page never fails the batch.

    The file is fetched once and shared by all pages.
    """
    file_reference = _validate_reference(file_reference)
    if total_pages is None or total_pages < 1:
        raise InvalidInputError("Total pages must be at least 1")
    columns = _validate_columns(columns)

    settings = get_settings()
    extractor = await _extractor(
        file_reference,
        content_type,
        total_pages,
        columns,
        db,
        owner_id=owner_id,
        org_id=org_id,
        fetch=fetch,
        usage_sink=usage_sink,
        override_provider=override_provider,
        override_model=override_model,
    )
    scheduler = PageScheduler(
        batch_size=batch_size or settings.ai_extract_batch_size,
        page_timeout_seconds=settings.ai_page_timeout_seconds,
    )
    logger.info("Batch extract of %d pages for %s", total_pages, owner_id)
    return await scheduler.run(total_pages, extractor)


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _not_extractable(reason: str) -> Pdf2SheetScanResult:
    return Pdf2SheetScanResult(
        document_type="not_extractable",
        confidence=0.0,
        is_extractable=False,
        warnings=[
            f"Could not analyze this document: {reason}",
            "The document may be an image, corrupted, password-protected, or contain no extractable data.",
        ],
        suggestions=["Try uploading a different document with clear tabular data."],
    )


async def scan_columns(
    file_reference: str | None,
    content_type: str | None,
    db: Session,
    *,
    owner_id: str,
    org_id: str | None = None,
    fetch: Fetcher | None = None,
    usage_sink: UsageSink | None = None,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> Pdf2SheetScanResult:
    """Propose a column schema for a document.

    Only a missing reference raises; every other failure returns a
    non-extractable result.
    """
    file_reference = _validate_reference(file_reference)
    settings = get_settings()
    started = time.monotonic()

    try:
        data = await _fetch(fetch, file_reference)
        prepared = prepare_content(
            data,
            file_reference,
            content_type,
            sample_lines=settings.csv_sample_lines,
            char_ceiling=settings.csv_char_ceiling,
        )
        prompt = COLUMN_SCAN_PROMPT
        if prepared.is_delimited:
            prompt += "\n\nHere is the start of the document:\n\n```\n" + prepared.sample_text + "\n```"
        config = resolve("pdf2sheet_scan", override_provider=override_provider, override_model=override_model)
        outcome = await invoke_structured(
            config,
            prompt,
            fallback=COLUMN_SCAN_FALLBACK,
            attachment=prepared.attachment,
            max_tokens=COLUMN_SCAN_MAX_TOKENS,
        )
    except InvalidInputError as exc:
        logger.warning("Column scan rejected %s: %s", file_reference, exc)
        return _not_extractable(str(exc))
    except Exception as exc:
        logger.exception("Column scan failed for %s", file_reference)
        return _not_extractable(str(exc) or exc.__class__.__name__)

    parsed = outcome.data
    headers = [
        ColumnSpec(name=str(h.get("name") or "Unknown"), type=h.get("type"),
                   description=h.get("description"), example=h.get("example"))
        for h in parsed.get("headers") or []
        if isinstance(h, dict)
    ]
    is_extractable = parsed.get("isExtractable") is not False and bool(headers)
    confidence = clamp_confidence(parsed.get("confidence"), DEFAULT_PAGE_CONFIDENCE) if is_extractable else 0.0
    sample_rows = [r for r in parsed.get("sampleRows") or [] if isinstance(r, dict)]

    result = Pdf2SheetScanResult(
        headers=headers,
        sample_rows=sample_rows,
        document_type=str(parsed.get("documentType") or "unknown"),
        supplier_name=_opt_str(parsed.get("supplierName")),
        document_date=_opt_str(parsed.get("documentDate")),
        document_number=_opt_str(parsed.get("documentNumber")),
        page_count=max(to_int(parsed.get("pageCount"), 1), 1),
        confidence=confidence,
        is_extractable=is_extractable,
        warnings=[str(w) for w in parsed.get("warnings") or []],
        suggestions=[str(s) for s in parsed.get("suggestions") or []],
        input_tokens=outcome.input_tokens,
        output_tokens=outcome.output_tokens,
    )

    sink = usage_sink or DatabaseUsageSink(db)
    await sink.record(
        _usage_event(
            outcome,
            usage_type="pdf2sheet_scan",
            owner_id=owner_id,
            org_id=org_id,
            prompt=prompt,
            rows=0,
            confidence=confidence,
            started=started,
        )
    )
    return result
