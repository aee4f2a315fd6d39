"""Rule-based transaction extraction for delimited uploads.

Once a bank's parsing rules are confirmed, CSV and spreadsheet exports are read
programmatically; no model call is made.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any, Literal

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from docscan.core.storage import fetch_bytes
from docscan.services.content_preparer import (
    DocumentLane,
    classify,
    decode_text,
    resolve_content_type,
    spreadsheet_to_csv,
)
from docscan.services.errors import FileRetrievalError, InvalidInputError

from .cache import get_parsing_rules_for_bank, record_rules_use, to_contract
from .parser import parse_csv_with_rules

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[bytes]]

NEEDS_CONFIRMATION_WARNING = "Please confirm the CSV parsing rules before extraction can proceed."


class RuleExtractionResult(BaseModel):
    status: Literal["parsed", "needs_rules_confirmation"]
    bank_name: str
    csv_parsing_rules_id: str | None = None
    transaction_count: int = 0
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


async def _fetch(fetch: Fetcher | None, file_reference: str) -> bytes:
    try:
        return await (fetch or fetch_bytes)(file_reference)
    except FileRetrievalError:
        raise
    except Exception as exc:
        logger.exception("Failed to fetch %s", file_reference)
        raise FileRetrievalError(f"Failed to retrieve file: {exc}") from exc


async def extract_with_rules(
    file_reference: str | None,
    content_type: str | None,
    bank_name: str | None,
    db: Session,
    *,
    owner_id: str,
    fetch: Fetcher | None = None,
) -> RuleExtractionResult:
    """Parse every row of a delimited upload with the bank's confirmed rules.

    Without confirmed rules nothing is fetched and the result asks for
    confirmation. Raises ``InvalidInputError`` for a missing reference or bank,
    or for a PDF/image upload.
    """
    if not file_reference or not file_reference.strip():
        raise InvalidInputError("File reference required")
    if not bank_name or not bank_name.strip():
        raise InvalidInputError("Bank name required")

    lane = classify(resolve_content_type(file_reference, content_type), file_reference)
    if lane is DocumentLane.BINARY:
        raise InvalidInputError("Rule-based parsing needs a CSV or spreadsheet file")

    row = get_parsing_rules_for_bank(db, owner_id, bank_name)
    if row is None:
        logger.info("No confirmed parsing rules for %r, extraction deferred", bank_name)
        return RuleExtractionResult(
            status="needs_rules_confirmation",
            bank_name=bank_name.strip(),
            warnings=[NEEDS_CONFIRMATION_WARNING],
        )

    data = await _fetch(fetch, file_reference)
    text = spreadsheet_to_csv(data) if lane is DocumentLane.SPREADSHEET else decode_text(data)

    parsed = parse_csv_with_rules(text, to_contract(row))
    record_rules_use(db, row)

    return RuleExtractionResult(
        status="parsed",
        bank_name=row.bank_display_name,
        csv_parsing_rules_id=str(row.id),
        transaction_count=len(parsed.transactions),
        transactions=[asdict(txn) for txn in parsed.transactions],
        warnings=parsed.warnings,
    )
