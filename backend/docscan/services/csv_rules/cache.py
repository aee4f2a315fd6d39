"""Per-bank CSV parsing rule storage.

Creation is append-only: every model proposal becomes a new unconfirmed row.
Only confirmed rows are returned by ``find_parsing_rules``; the scan path never
changes an existing row beyond its usage counter.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from docscan.models.statement import CsvParsingRuleSet

from .contracts import EDITABLE_FIELDS, CsvParsingRules

logger = logging.getLogger(__name__)


class RulesError(Exception):
    pass


class RulesNotFoundError(RulesError):
    pass


class RulesPermissionError(RulesError):
    pass


class RulesConflictError(RulesError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_contract(row: CsvParsingRuleSet) -> CsvParsingRules:
    return CsvParsingRules(
        id=str(row.id),
        bank_identifier=row.bank_identifier,
        bank_display_name=row.bank_display_name,
        header_row=row.header_row,
        data_start_row=row.data_start_row,
        skip_footer_rows=row.skip_footer_rows,
        delimiter=row.delimiter,
        date_column=row.date_column,
        date_format=row.date_format,
        description_column=row.description_column,
        amount_column=row.amount_column,
        debit_column=row.debit_column,
        credit_column=row.credit_column,
        balance_column=row.balance_column,
        reference_column=row.reference_column,
        amount_format=row.amount_format,
        type_detection=row.type_detection,
        debit_keywords=row.debit_keywords or [],
        thousands_separator=row.thousands_separator,
        decimal_separator=row.decimal_separator,
        currency_symbol=row.currency_symbol,
        sample_headers=row.sample_headers or [],
        sample_row=row.sample_row or [],
        created_by=row.created_by,
        created_at=row.created_at,
        confirmed_at=row.confirmed_at,
        usage_count=row.usage_count or 0,
        last_used_at=row.last_used_at,
    )


def find_parsing_rules(db: Session, owner_id: str, bank_identifier: str) -> CsvParsingRuleSet | None:
    """Authoritative rule set for (owner, bank), or ``None``.

    The owner's most recently confirmed set wins; otherwise the most used
    confirmed set shared by any owner for that bank.
    """
    own = db.execute(
        select(CsvParsingRuleSet)
        .where(
            CsvParsingRuleSet.bank_identifier == bank_identifier,
            CsvParsingRuleSet.created_by == owner_id,
            CsvParsingRuleSet.confirmed_at.is_not(None),
        )
        .order_by(CsvParsingRuleSet.confirmed_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if own is not None:
        return own

    return db.execute(
        select(CsvParsingRuleSet)
        .where(
            CsvParsingRuleSet.bank_identifier == bank_identifier,
            CsvParsingRuleSet.confirmed_at.is_not(None),
        )
        .order_by(CsvParsingRuleSet.usage_count.desc(), CsvParsingRuleSet.confirmed_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def save_parsing_rules(db: Session, rules: CsvParsingRules) -> str:
    """Append *rules* as a new unconfirmed proposal and return its id."""
    row = CsvParsingRuleSet(
        **rules.model_dump(
            exclude={"id", "created_at", "confirmed_at", "usage_count", "last_used_at"},
        ),
        created_at=_now(),
        usage_count=0,
    )
    db.add(row)
    db.flush()
    logger.info("Saved new parsing rules %s for %s", row.id, rules.bank_identifier)
    return str(row.id)


def record_rules_use(db: Session, row: CsvParsingRuleSet) -> None:
    """Increment the usage counter by exactly one."""
    now = _now()
    db.execute(
        update(CsvParsingRuleSet)
        .where(CsvParsingRuleSet.id == row.id)
        .values(usage_count=CsvParsingRuleSet.usage_count + 1, last_used_at=now)
    )
    db.refresh(row)


def _load_owned(db: Session, rules_id: str, owner_id: str) -> CsvParsingRuleSet:
    row = db.get(CsvParsingRuleSet, rules_id)
    if row is None:
        raise RulesNotFoundError("Parsing rules not found")
    if row.created_by != owner_id:
        raise RulesPermissionError("You can only change your own parsing rules")
    return row


def get_parsing_rules_for_bank(db: Session, owner_id: str, bank_name: str) -> CsvParsingRuleSet | None:
    from docscan.services.bank_identity import bank_identifier

    return find_parsing_rules(db, owner_id, bank_identifier(bank_name))


def confirm_parsing_rules(db: Session, rules_id: str, owner_id: str) -> CsvParsingRuleSet:
    row = _load_owned(db, rules_id, owner_id)
    if row.confirmed_at is None:
        row.confirmed_at = _now()
        db.flush()
        logger.info("Confirmed parsing rules %s for %s", rules_id, row.bank_identifier)
    return row


def update_parsing_rules(db: Session, rules_id: str, owner_id: str, updates: dict[str, Any]) -> CsvParsingRuleSet:
    """Edit an unconfirmed proposal; unknown keys are ignored."""
    row = _load_owned(db, rules_id, owner_id)
    if row.confirmed_at is not None:
        raise RulesConflictError("Cannot update confirmed rules")

    merged = to_contract(row).model_dump()
    merged.update({k: v for k, v in updates.items() if k in EDITABLE_FIELDS})
    validated = CsvParsingRules(**merged)
    for key in EDITABLE_FIELDS:
        setattr(row, key, getattr(validated, key))
    db.flush()
    return row
