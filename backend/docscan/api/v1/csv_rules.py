"""CSV parsing rules: look up, edit before confirmation, confirm, and parse uploads with them."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from docscan.core.auth import CurrentUser, get_current_user
from docscan.core.dependencies import get_db
from docscan.services.csv_rules.cache import (
    RulesConflictError,
    RulesError,
    RulesNotFoundError,
    RulesPermissionError,
    confirm_parsing_rules,
    get_parsing_rules_for_bank,
    to_contract,
    update_parsing_rules,
)
from docscan.services.csv_rules.contracts import CsvParsingRules
from docscan.services.csv_rules.extraction import RuleExtractionResult, extract_with_rules

router = APIRouter()


class RulesLookupResponse(BaseModel):
    found: bool
    rules: CsvParsingRules | None = None


class RulesParseRequest(BaseModel):
    file_reference: str | None = Field(default=None, max_length=2048)
    content_type: str | None = Field(default=None, max_length=255)
    bank_name: str | None = Field(default=None, max_length=255)


class RulesConfirmResponse(BaseModel):
    success: bool
    message: str
    rules: CsvParsingRules


def _raise_http(exc: RulesError) -> None:
    if isinstance(exc, RulesNotFoundError):
        raise HTTPException(404, str(exc)) from exc
    if isinstance(exc, RulesPermissionError):
        raise HTTPException(403, str(exc)) from exc
    if isinstance(exc, RulesConflictError):
        raise HTTPException(409, str(exc)) from exc
    raise HTTPException(400, str(exc)) from exc


@router.get("/csv-rules", response_model=RulesLookupResponse)
def get_csv_rules(
    bank_name: str = Query(..., min_length=1, max_length=255),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    row = get_parsing_rules_for_bank(db, user.id, bank_name)
    if row is None:
        return RulesLookupResponse(found=False)
    return RulesLookupResponse(found=True, rules=to_contract(row))


@router.post("/csv-rules/{rules_id}/confirm", response_model=RulesConfirmResponse)
def confirm_csv_rules(
    rules_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    try:
        row = confirm_parsing_rules(db, rules_id, user.id)
    except RulesError as exc:
        _raise_http(exc)
    db.commit()
    return RulesConfirmResponse(
        success=True,
        message=f"Parsing rules confirmed for {row.bank_display_name}",
        rules=to_contract(row),
    )


@router.patch("/csv-rules/{rules_id}", response_model=CsvParsingRules)
def update_csv_rules(
    rules_id: str,
    updates: dict[str, Any],
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    try:
        row = update_parsing_rules(db, rules_id, user.id, updates)
    except RulesError as exc:
        _raise_http(exc)
    except ValidationError as exc:
        raise HTTPException(422, f"Invalid parsing rules: {exc.error_count()} field error(s)") from exc
    db.commit()
    return to_contract(row)


@router.post("/csv-rules/parse", response_model=RuleExtractionResult, summary="Parse a CSV upload with confirmed rules")
async def parse_with_csv_rules(
    body: RulesParseRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    result = await extract_with_rules(
        body.file_reference,
        body.content_type,
        body.bank_name,
        db,
        owner_id=user.id,
    )
    db.commit()
    return result
