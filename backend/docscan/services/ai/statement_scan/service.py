"""Statement scan: detect bank and account details and preview a few transactions.

This is the first step before full extraction. For delimited uploads only a
short sample is sent to the model, which also proposes CSV parsing rules so the
full file can later be parsed without another model call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.orm import Session

from docscan.core.config import get_settings
from docscan.core.storage import fetch_bytes
from docscan.services.ai.common.invoker import DEGRADED_CONFIDENCE, InvocationResult, invoke_structured
from docscan.services.ai.common.router import resolve
from docscan.services.ai.common.usage import DatabaseUsageSink, UsageEvent, UsageSink
from docscan.services.ai.statement_scan.contracts import (
    DEFAULT_CONFIDENCE,
    SCAN_FALLBACK,
    ScanResult,
    TemplateMatch,
    to_float,
    to_int,
)
from docscan.services.bank_identity import (
    NEEDS_IDENTIFICATION_WARNING,
    UNRESOLVED,
    BankIdentity,
    find_accounts_by_owner,
    resolve_bank_identity,
)
from docscan.services.content_preparer import DocumentLane, PreparedContent, prepare_content
from docscan.services.csv_rules.cache import (
    find_parsing_rules,
    record_rules_use,
    save_parsing_rules,
    to_contract,
)
from docscan.services.csv_rules.contracts import CsvParsingRules, rules_from_proposal
from docscan.services.errors import FileRetrievalError, InvalidInputError
from docscan.services.template_matcher import match_template

logger = logging.getLogger(__name__)

SCOPE = "statement_scan"
MODEL_FAILURE_WARNING = "Document scan failed - please try again"
LOOKUP_FAILURE_WARNING = "Bank lookup failed - please review the detected details"

DOCUMENT_SCAN_PROMPT = """Scan this bank statement and extract account details plus a preview of transactions.

ACCOUNT DETAILS (extract exactly as shown):
- bankName: Bank name
- bankCountry: Country code or null
- bankBranch: Branch or null
- accountNumber: FULL account number (all digits)
- accountType: checking/savings/credit/investment/other
- accountHolderName: Account holder name or null
- currency: Currency code (USD/EUR/GBP/ANG/XCG etc)
- currencies: Array if multi-currency else null
- periodStart: YYYY-MM-DD or null
- periodEnd: YYYY-MM-DD or null
- documentType: bank_statement/credit_card/investment/unknown
- pageCount: Number of pages
- openingBalance: Opening balance at start of statement period (number or null)
- closingBalance: The ending balance shown on the statement ("Closing Balance", "Ending Balance", or the final balance after all transactions)
- transactionCount: Total number of transactions

TRANSACTION PREVIEW (first 5 only):
- sampleTransactions: Array of up to 5 transactions with:
  - date: YYYY-MM-DD format
  - description: SHORT description (max 50 chars, letters/numbers/spaces only)
  - amount: Positive number
  - type: "credit" or "debit"

QUALITY:
- confidence: 0.0-1.0
- warnings: []
- suggestions: []

Keep descriptions short and simple. Return valid JSON only."""

DELIMITED_SCAN_PROMPT = """Analyze this CSV bank statement sample and extract account details PLUS generate parsing rules.

FILENAME: {file_name}

ACCOUNT DETAILS (extract from content OR infer from patterns):
- bankName: Bank name. Look for an explicit bank name in the data, filename hints, transaction code patterns or account number formats. Provide the full proper bank name if you can reasonably identify it.
- bankCountry: Country code or null
- accountNumber: From a dedicated account number column (not from description/memo text), FULL number
- accountType: checking/savings/credit/investment/other
- accountHolderName: Account holder name if visible, else null
- currency: Currency code from the data (USD/EUR/GBP/ANG/AWG/XCG etc)
- periodStart: YYYY-MM-DD (earliest date in the data)
- periodEnd: YYYY-MM-DD (latest date in the data)
- documentType: bank_statement
- pageCount: 1
- openingBalance: Opening balance number or null
- closingBalance: If there is a Balance column, the balance of the most recent transaction, as a number
- transactionCount: {transaction_count} (total data rows)

BANK NAME HINTS from filename/patterns:
- "RBC" or FT###### transaction codes = "RBC Royal Bank"
- "MCB" or "Maduro" = "Maduro & Curiel's Bank"
- "CMB" or "Caribbean Mercantile" = "Caribbean Mercantile Bank"
- "Butterfield" or "BNTB" = "Bank of N.T. Butterfield & Son"
- "CIBC" = "CIBC FirstCaribbean"
- "Scotia" = "Scotiabank"

CSV PARSING RULES (analyze the structure):
- csvParsingRules: {{
    "headerRow": number (0-indexed row containing column headers),
    "dataStartRow": number (0-indexed row where data begins),
    "delimiter": "," or ";" or tab,
    "dateColumn": column header name for date,
    "dateFormat": exact format in the data, one of "YYYY-MM-DD", "DD/MM/YYYY", "MM/DD/YYYY", "DD-MMM-YY", "DD-MMM-YYYY",
    "descriptionColumn": column header name for description/memo,
    "amountColumn": string or null (single amount column with +/-),
    "debitColumn": string or null (separate debit column),
    "creditColumn": string or null (separate credit column),
    "balanceColumn": string or null ("Balance", "Running Balance", "Bal"),
    "referenceColumn": string or null,
    "amountFormat": "sign" or "absolute",
    "typeDetection": "sign" or "separate_columns" or "keyword",
    "debitKeywords": array of strings or null,
    "thousandsSeparator": "," or "." or null,
    "decimalSeparator": "." or ","
  }}

TRANSACTION PREVIEW (first 5 actual transactions):
- sampleTransactions: Array of up to 5 transactions with date (YYYY-MM-DD), description (max 50 chars), amount (positive number), type ("credit" or "debit")

QUALITY:
- confidence: 0.0-1.0
- warnings: []
- suggestions: []

The csvParsingRules must accurately describe how to parse this specific format. Return valid JSON only.

{sample_label}

```
{sample}
```"""

Fetcher = Callable[[str], Awaitable[bytes]]


def build_scan_prompt(prepared: PreparedContent) -> str:
    if not prepared.is_delimited:
        return DOCUMENT_SCAN_PROMPT
    if prepared.lane is DocumentLane.SPREADSHEET:
        label = "Here is the spreadsheet content (first sheet, first rows):"
    else:
        label = "Here are the first rows of the CSV:"
    return DELIMITED_SCAN_PROMPT.format(
        file_name=prepared.file_name,
        transaction_count=prepared.total_rows,
        sample_label=label,
        sample=prepared.sample_text,
    )


def _apply_rules_policy(
    db: Session,
    *,
    owner_id: str,
    identity: BankIdentity,
    proposal: Any,
    sample_text: str,
) -> tuple[str, CsvParsingRules | None]:
    """Reuse confirmed rules when the bank is known, else store the model's proposal."""
    existing = find_parsing_rules(db, owner_id, identity.identifier) if identity.resolved else None
    if existing is not None:
        logger.info("Using existing parsing rules %s for %s", existing.id, identity.display_name)
        record_rules_use(db, existing)
        return "existing", to_contract(existing)

    if isinstance(proposal, dict) and proposal:
        candidate = rules_from_proposal(
            proposal,
            bank_identifier=identity.identifier or "unknown_bank",
            bank_display_name=identity.display_name or "Unknown Bank",
            created_by=owner_id,
            sample_text=sample_text,
        )
        rules_id = save_parsing_rules(db, candidate)
        return "new", candidate.model_copy(update={"id": rules_id})

    return "none", None


async def _fetch(fetch: Fetcher | None, file_reference: str) -> bytes:
    try:
        return await (fetch or fetch_bytes)(file_reference)
    except FileRetrievalError:
        raise
    except Exception as exc:
        logger.exception("Failed to fetch %s", file_reference)
        raise FileRetrievalError(f"Failed to retrieve file: {exc}") from exc


async def scan_document(
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
) -> ScanResult:
    """Scan one uploaded statement and return a preview for confirmation.

    Raises ``InvalidInputError`` for a missing reference or an unreadable
    spreadsheet and ``FileRetrievalError`` when the upload cannot be fetched.
    Everything after that degrades to a low-confidence result instead.
    """
    if not file_reference or not file_reference.strip():
        raise InvalidInputError("File reference required")

    settings = get_settings()
    started = time.monotonic()

    data = await _fetch(fetch, file_reference)
    prepared = prepare_content(
        data,
        file_reference,
        content_type,
        sample_lines=settings.csv_sample_lines,
        char_ceiling=settings.csv_char_ceiling,
    )
    logger.info("Scanning %s (%s lane) for %s", prepared.file_name, prepared.lane.value, owner_id)

    config = resolve(SCOPE, override_provider=override_provider, override_model=override_model)
    prompt = build_scan_prompt(prepared)

    try:
        outcome = await invoke_structured(config, prompt, fallback=SCAN_FALLBACK, attachment=prepared.attachment)
    except Exception:
        logger.exception("Statement scan model call failed for %s", prepared.file_name)
        return ScanResult(
            needs_bank_identification=True,
            transaction_count=prepared.total_rows if prepared.is_delimited else 0,
            confidence=0.0,
            warnings=[MODEL_FAILURE_WARNING, NEEDS_IDENTIFICATION_WARNING],
        )

    parsed = outcome.data
    warnings: list[str] = list(parsed.get("warnings") or [])
    confidence = to_float(parsed.get("confidence"))
    confidence = DEFAULT_CONFIDENCE if confidence is None else min(max(confidence, 0.0), 1.0)

    identity = UNRESOLVED
    template: TemplateMatch | None = None
    rules_status, rules = "none", None
    try:
        identity = resolve_bank_identity(
            parsed.get("bankName"),
            _text(parsed.get("accountNumber")),
            lambda: find_accounts_by_owner(db, owner_id),
        )
        if identity.resolved:
            hit = match_template(db, identity.display_name)
            if hit is not None:
                template = TemplateMatch(template_id=hit.template_id, confidence=hit.confidence)
        if prepared.is_delimited:
            rules_status, rules = _apply_rules_policy(
                db,
                owner_id=owner_id,
                identity=identity,
                proposal=parsed.get("csvParsingRules"),
                sample_text=prepared.sample_text,
            )
    except Exception:
        logger.exception("Bank/rules lookup failed for %s", prepared.file_name)
        db.rollback()
        template, rules_status, rules = None, "none", None
        confidence = min(confidence, DEGRADED_CONFIDENCE)
        warnings.append(LOOKUP_FAILURE_WARNING)

    if not identity.resolved:
        warnings.append(NEEDS_IDENTIFICATION_WARNING)

    if prepared.is_delimited:
        transaction_count = prepared.total_rows
    else:
        transaction_count = to_int(parsed.get("transactionCount"))
    page_count = max(to_int(parsed.get("pageCount"), 1), 1)

    result = ScanResult(
        bank_name=identity.display_name or "Unknown Bank",
        bank_name_raw=identity.raw_name or _text(parsed.get("bankName")),
        bank_identifier=identity.identifier or "unknown",
        needs_bank_identification=not identity.resolved,
        bank_country=_text(parsed.get("bankCountry")),
        bank_branch=_text(parsed.get("bankBranch")),
        account_number=_text(parsed.get("accountNumber")) or "Unknown",
        account_holder_name=_text(parsed.get("accountHolderName")),
        account_type=parsed.get("accountType"),
        currency=_text(parsed.get("currency")) or "USD",
        currencies=parsed.get("currencies"),
        document_type=parsed.get("documentType"),
        page_count=page_count,
        period_start=_text(parsed.get("periodStart")),
        period_end=_text(parsed.get("periodEnd")),
        opening_balance=to_float(parsed.get("openingBalance")),
        closing_balance=to_float(parsed.get("closingBalance")),
        transaction_count=transaction_count,
        sample_transactions=parsed.get("sampleTransactions") or [],
        confidence=confidence,
        warnings=warnings,
        suggestions=parsed.get("suggestions") or [],
        template_match=template,
        csv_parsing_rules_id=rules.id if rules else None,
        csv_parsing_rules_status=rules_status,
        csv_parsing_rules=rules,
        input_tokens=outcome.input_tokens,
        output_tokens=outcome.output_tokens,
    )

    sink = usage_sink or DatabaseUsageSink(db)
    await sink.record(
        _usage_event(
            outcome,
            owner_id=owner_id,
            org_id=org_id,
            prompt=prompt,
            pages=0 if prepared.is_delimited else page_count,
            confidence=confidence,
            started=started,
        )
    )

    logger.info(
        "Scan complete: bank=%s rules=%s txns=%d confidence=%.2f",
        result.bank_identifier,
        result.csv_parsing_rules_status,
        result.transaction_count,
        result.confidence,
    )
    return result


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _usage_event(
    outcome: InvocationResult,
    *,
    owner_id: str,
    org_id: str | None,
    prompt: str,
    pages: int,
    confidence: float,
    started: float,
) -> UsageEvent:
    return UsageEvent(
        owner_id=owner_id,
        org_id=org_id,
        usage_type="scan",
        provider=outcome.provider,
        model=outcome.model,
        input_tokens=outcome.input_tokens,
        output_tokens=outcome.output_tokens,
        pages_processed=pages,
        rows_extracted=0,
        confidence=confidence,
        status="needs_review" if outcome.degraded else "success",
        processing_time_ms=int((time.monotonic() - started) * 1000),
        prompt_text=prompt,
        response_text=outcome.raw_text,
        extra_meta={"repaired": outcome.repaired},
    )
