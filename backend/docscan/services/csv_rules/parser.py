"""Apply a confirmed rule set to a delimited export without calling a model."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .contracts import CsvParsingRules, split_row

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DATE_PARTS = re.compile(r"[-/.\s]+")
_CURRENCY = re.compile(r"ANG|[$€£¥₹₽]")
_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")


@dataclass
class ParsedTransaction:
    date: str
    description: str
    amount: float
    type: str
    balance: float | None = None
    reference: str | None = None
    raw_row: list[str] = field(default_factory=list)


@dataclass
class ParseResult:
    transactions: list[ParsedTransaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def column_index(column: str | None, headers: list[str]) -> int:
    """Exact header match, then partial match, then a bare numeric index; -1 if absent."""
    if not column:
        return -1
    wanted = column.lower()
    lowered = [h.lower() for h in headers]

    for idx, header in enumerate(lowered):
        if header and header == wanted:
            return idx
    for idx, header in enumerate(lowered):
        if header and (wanted in header or header in wanted):
            return idx
    if column.isdigit():
        return int(column)
    return -1


def parse_date(value: str, date_format: str) -> str | None:
    """Return ``YYYY-MM-DD`` or ``None`` when *value* cannot be read."""
    cleaned = (value or "").strip().replace('"', "").replace("'", "")
    if not cleaned:
        return None
    if _ISO_DATE.match(cleaned):
        return cleaned[:10]

    parts = [p for p in _DATE_PARTS.split(cleaned) if p]
    if len(parts) < 3:
        return None

    fmt = (date_format or "").upper()
    if fmt.startswith("YYYY"):
        year, month, day = parts[:3]
    elif fmt.startswith("DD"):
        day, month, year = parts[:3]
    elif fmt.startswith("MM"):
        month, day, year = parts[:3]
    elif len(parts[0]) == 4:
        year, month, day = parts[:3]
    else:
        day, month, year = parts[:3]

    if not month.isdigit():
        month = str(MONTHS.get(month.lower(), month))
    if len(year) == 2 and year.isdigit():
        year = ("19" if int(year) > 50 else "20") + year

    try:
        y, m, d = int(year), int(month), int(day)
    except ValueError:
        return None
    if not (1 <= m <= 12 and 1 <= d <= 31):
        return None
    return f"{y:04d}-{m:02d}-{d:02d}"


def parse_amount(value: str | None, rules: CsvParsingRules) -> float:
    """Signed float from a bank-formatted amount; 0.0 when unreadable."""
    if not value:
        return 0.0
    cleaned = value.strip()
    if rules.currency_symbol:
        cleaned = cleaned.replace(rules.currency_symbol, "")
    cleaned = _CURRENCY.sub("", cleaned).strip()

    negative = "(" in cleaned or cleaned.startswith("-")
    cleaned = cleaned.replace("(", "").replace(")", "").lstrip("-")

    if rules.thousands_separator == "." and rules.decimal_separator == ",":
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    elif rules.thousands_separator == ",":
        cleaned = cleaned.replace(",", "")
    elif "," in cleaned and cleaned.find(",") > cleaned.find("."):
        cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    else:
        cleaned = cleaned.replace(",", "")

    match = _NUMBER.search(re.sub(r"[^\d.]", "", cleaned))
    if match is None:
        return 0.0
    number = float(match.group(0))
    return -number if negative else number


def _cell(row: list[str], idx: int) -> str:
    return row[idx] if 0 <= idx < len(row) else ""


def parse_csv_with_rules(text: str, rules: CsvParsingRules) -> ParseResult:
    result = ParseResult()
    delimiter = rules.delimiter or ","
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        result.warnings.append("Empty CSV file")
        return result

    header_line = lines[rules.header_row] if rules.header_row < len(lines) else lines[0]
    headers = split_row(header_line, delimiter)

    date_idx = column_index(rules.date_column, headers)
    desc_idx = column_index(rules.description_column, headers)
    amount_idx = column_index(rules.amount_column, headers)
    debit_idx = column_index(rules.debit_column, headers)
    credit_idx = column_index(rules.credit_column, headers)
    balance_idx = column_index(rules.balance_column, headers)
    ref_idx = column_index(rules.reference_column, headers)

    logger.debug(
        "CSV columns: date=%d desc=%d amount=%d debit=%d credit=%d",
        date_idx, desc_idx, amount_idx, debit_idx, credit_idx,
    )

    if date_idx == -1:
        result.warnings.append(f'Date column "{rules.date_column}" not found')
    if desc_idx == -1:
        result.warnings.append(f'Description column "{rules.description_column}" not found')
    if amount_idx == -1 and debit_idx == -1 and credit_idx == -1:
        result.warnings.append("No amount column found")

    start = rules.data_start_row
    end = len(lines) - rules.skip_footer_rows if rules.skip_footer_rows else len(lines)
    min_width = max(date_idx, desc_idx, amount_idx, debit_idx, credit_idx) + 1
    keywords = [kw.lower() for kw in rules.debit_keywords]

    for i in range(start, end):
        row = split_row(lines[i], delimiter)
        if len(row) < min_width:
            continue

        date_value = _cell(row, date_idx)
        date = parse_date(date_value, rules.date_format)
        if date is None:
            result.warnings.append(f'Row {i + 1}: Invalid date "{date_value}"')
            continue

        description = _cell(row, desc_idx).strip()
        if not description:
            continue

        if amount_idx != -1:
            amount = parse_amount(_cell(row, amount_idx), rules)
            if rules.amount_format == "sign" or rules.type_detection == "sign":
                txn_type = "debit" if amount < 0 else "credit"
            elif rules.type_detection == "keyword":
                lowered = description.lower()
                txn_type = "debit" if any(kw in lowered for kw in keywords) else "credit"
            else:
                txn_type = "debit"
            amount = abs(amount)
        else:
            debit = abs(parse_amount(_cell(row, debit_idx), rules)) if debit_idx != -1 else 0.0
            credit = abs(parse_amount(_cell(row, credit_idx), rules)) if credit_idx != -1 else 0.0
            if debit > 0:
                amount, txn_type = debit, "debit"
            elif credit > 0:
                amount, txn_type = credit, "credit"
            else:
                continue

        if amount == 0:
            continue

        balance = parse_amount(_cell(row, balance_idx), rules) if balance_idx != -1 else None
        reference = _cell(row, ref_idx).strip() if ref_idx != -1 else None
        result.transactions.append(
            ParsedTransaction(
                date=date,
                description=description,
                amount=amount,
                type=txn_type,
                balance=balance or None,
                reference=reference or None,
                raw_row=row,
            )
        )

    logger.info(
        "Parsed %d transactions with rules for %s (%d warnings)",
        len(result.transactions),
        rules.bank_identifier,
        len(result.warnings),
    )
    return result
