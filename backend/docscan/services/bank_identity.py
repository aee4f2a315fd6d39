"""Bank name normalization and inference from the caller's known accounts."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from docscan.models.statement import BankAccount

logger = logging.getLogger(__name__)

UNKNOWN_SENTINELS = frozenset({"unknown", "unknown bank", "n/a", "none", "null"})
SUFFIX_LENGTH = 4
NEEDS_IDENTIFICATION_WARNING = "Bank name not found in document - please specify the bank"

# canonical name -> known variations
BANK_NAME_ALIASES: dict[str, list[str]] = {
    "Maduro & Curiel's Bank": [
        "Maduro Curiels Bank",
        "Maduro and Curiels Bank",
        "Maduro and Curiel's Bank",
        "Maduro & Curiels Bank",
        "MCB Bank",
        "MCB",
        "MCBBANK",
    ],
    "RBC Royal Bank": ["RBC", "Royal Bank of Canada", "RBC Bank", "RBCROYALBANK"],
    "Scotiabank": ["Scotia Bank", "Bank of Nova Scotia", "BNS"],
    "FirstCaribbean": ["First Caribbean", "FirstCaribbean International Bank", "FCIB", "CIBC FirstCaribbean"],
    "Orco Bank": ["ORCO", "Orco Bank N.V.", "ORCOBANK"],
    "Caribbean Mercantile Bank": ["CMB", "Caribbean Mercantile"],
    "Bank of N.T. Butterfield & Son": ["Butterfield", "BNTB", "Butterfield Bank"],
    "Chase": ["JPMorgan Chase", "JP Morgan Chase", "Chase Bank"],
    "Bank of America": ["BofA", "BOA", "Bank of America N.A.", "BANKOFAMERICA"],
    "Wells Fargo": ["WellsFargo", "Wells Fargo Bank"],
    "Citibank": ["Citi", "Citigroup"],
    "HSBC": ["HSBC Bank", "Hong Kong Shanghai Bank", "HSBCBANK"],
    "Barclays": ["Barclays Bank"],
    "ING": ["ING Bank", "ING Direct", "INGBANK"],
    "Stripe": ["Stripe Inc", "Stripe Payments"],
    "PayPal": ["PayPal Inc"],
    "Wise": ["TransferWise", "Wise Payments"],
}


def _clean(name: str) -> str:
    cleaned = re.sub(r"[^a-z0-9\s]", "", name.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


_ALIAS_INDEX: dict[str, str] = {}
for _canonical, _variations in BANK_NAME_ALIASES.items():
    _ALIAS_INDEX[_clean(_canonical)] = _canonical
    for _variation in _variations:
        _ALIAS_INDEX.setdefault(_clean(_variation), _canonical)


def is_unknown(value: str | None) -> bool:
    return not value or not value.strip() or value.strip().lower() in UNKNOWN_SENTINELS


def normalize_bank_name(bank_name: str) -> str:
    """Canonical display name for *bank_name*; title-cased input when no alias matches."""
    canonical = _ALIAS_INDEX.get(_clean(bank_name))
    if canonical:
        return canonical
    return " ".join(word[:1].upper() + word[1:].lower() for word in bank_name.split())


def bank_identifier(bank_name: str) -> str:
    """Machine-safe key, e.g. ``"Maduro & Curiel's Bank"`` -> ``"maduro_curiel_s_bank"``."""
    normalized = normalize_bank_name(bank_name).lower()
    return re.sub(r"_+", "_", re.sub(r"[^a-z0-9]", "_", normalized)).strip("_")


@dataclass(frozen=True)
class AccountRef:
    bank_name: str | None
    account_number_suffix: str


@dataclass(frozen=True)
class BankIdentity:
    raw_name: str | None
    display_name: str | None
    identifier: str | None
    source: str = "none"

    @property
    def resolved(self) -> bool:
        return self.display_name is not None


UNRESOLVED = BankIdentity(raw_name=None, display_name=None, identifier=None)


def find_accounts_by_owner(db: Session, owner_id: str) -> list[AccountRef]:
    """The owner's stored accounts, most recently updated first."""
    rows = db.execute(
        select(BankAccount.bank_name, BankAccount.account_number)
        .where(BankAccount.owner_id == owner_id)
        .order_by(BankAccount.updated_at.desc(), BankAccount.created_at.desc())
    ).all()
    return [
        AccountRef(bank_name=bank_name, account_number_suffix=(number or "").strip()[-SUFFIX_LENGTH:])
        for bank_name, number in rows
    ]


def match_by_account_suffix(account_number: str | None, accounts: Iterable[AccountRef]) -> str | None:
    if is_unknown(account_number):
        return None
    suffix = account_number.strip()[-SUFFIX_LENGTH:]
    for account in accounts:
        if account.account_number_suffix == suffix and not is_unknown(account.bank_name):
            logger.info("Matched existing account ****%s -> %s", suffix, account.bank_name)
            return account.bank_name
    return None


def resolve_bank_identity(
    raw_name: str | None,
    account_number: str | None,
    load_accounts: Callable[[], Iterable[AccountRef]],
) -> BankIdentity:
    """Resolve the statement's bank; never raises for an unknown bank.

    *load_accounts* is only called when the model gave no usable name.
    """
    source = "model"
    name = raw_name.strip() if not is_unknown(raw_name) else None

    if name is None:
        name = match_by_account_suffix(account_number, load_accounts())
        source = "account_match"

    if name is None:
        logger.info("Bank identity unresolved (model name %r)", raw_name)
        return UNRESOLVED

    display = normalize_bank_name(name)
    return BankIdentity(raw_name=name, display_name=display, identifier=bank_identifier(display), source=source)
