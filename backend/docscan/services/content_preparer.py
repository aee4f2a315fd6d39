"""Turn an uploaded file into a model-ready payload.

Three lanes:
- binary (PDF/images): bytes go to the model untouched as an attachment
- delimited (CSV/text): only the first lines are sent, the row total is counted locally
- spreadsheet: first sheet converted to CSV, then handled like delimited text
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum

from docscan.core.storage import file_extension, file_name_from_reference
from docscan.services.ai.common.providers.base import Attachment
from docscan.services.errors import InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LINES = 15
DEFAULT_CHAR_CEILING = 50000
TRUNCATION_MARKER = "\n...[truncated]..."
DEFAULT_BINARY_MIME = "application/pdf"

SPREADSHEET_MIME_MARKERS = ("spreadsheetml", "excel", "vnd.ms-excel", "vnd.openxmlformats")
DELIMITED_MIME_MARKERS = ("csv", "text/")
SPREADSHEET_EXTENSIONS = frozenset({".xlsx", ".xlsm", ".xls"})
DELIMITED_EXTENSIONS = frozenset({".csv", ".txt", ".tsv"})
# legacy BIFF .xls workbooks are OLE2 compound files
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class DocumentLane(str, Enum):
    BINARY = "binary"
    DELIMITED = "delimited"
    SPREADSHEET = "spreadsheet"


@dataclass(frozen=True)
class PreparedContent:
    lane: DocumentLane
    mime_type: str
    file_name: str
    attachment: Attachment | None = None
    sample_text: str = ""
    total_rows: int = 0
    truncated: bool = False

    @property
    def is_delimited(self) -> bool:
        """True for CSV/text and spreadsheet-derived content."""
        return self.lane in (DocumentLane.DELIMITED, DocumentLane.SPREADSHEET)


def resolve_content_type(file_reference: str, content_type: str | None) -> str:
    if content_type and content_type.strip():
        return content_type.strip().lower()
    guessed, _ = mimetypes.guess_type(file_name_from_reference(file_reference))
    return (guessed or "").lower()


def classify(content_type: str, file_reference: str = "") -> DocumentLane:
    mime = (content_type or "").lower()
    ext = file_extension(file_reference)

    if any(marker in mime for marker in SPREADSHEET_MIME_MARKERS) or (not mime and ext in SPREADSHEET_EXTENSIONS):
        return DocumentLane.SPREADSHEET
    if any(marker in mime for marker in DELIMITED_MIME_MARKERS) or (not mime and ext in DELIMITED_EXTENSIONS):
        return DocumentLane.DELIMITED
    return DocumentLane.BINARY


def decode_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def count_data_rows(lines: list[str]) -> int:
    """Non-blank lines after the header row."""
    return max(sum(1 for line in lines if line.strip()) - 1, 0)


def _cell_to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, dt.datetime):
        return value.date().isoformat() if value.time() == dt.time(0, 0) else value.isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    return str(value)


SPREADSHEET_PARSE_ERROR = "Failed to parse Excel file. Please ensure it's a valid .xlsx or .xls file."


def _xlsx_rows(data: bytes) -> list[list[str]]:
    from openpyxl import load_workbook

    try:
        wb = load_workbook(filename=io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        logger.warning("Failed to parse .xlsx workbook: %s", exc)
        raise InvalidInputError(SPREADSHEET_PARSE_ERROR) from exc

    try:
        if not wb.worksheets:
            raise InvalidInputError("Spreadsheet has no worksheets")
        return [[_cell_to_text(v) for v in row] for row in wb.worksheets[0].iter_rows(values_only=True)]
    finally:
        wb.close()


def _xls_cell_to_text(cell, datemode: int) -> str:
    import xlrd

    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return ""
    if cell.ctype == xlrd.XL_CELL_DATE:
        return _cell_to_text(xlrd.xldate_as_datetime(cell.value, datemode))
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return str(bool(cell.value))
    if cell.ctype == xlrd.XL_CELL_NUMBER and float(cell.value).is_integer():
        # BIFF stores every number as a float
        return str(int(cell.value))
    return str(cell.value)


def _xls_rows(data: bytes) -> list[list[str]]:
    import xlrd

    try:
        book = xlrd.open_workbook(file_contents=data)
    except Exception as exc:
        logger.warning("Failed to parse .xls workbook: %s", exc)
        raise InvalidInputError(SPREADSHEET_PARSE_ERROR) from exc

    if book.nsheets == 0:
        raise InvalidInputError("Spreadsheet has no worksheets")
    sheet = book.sheet_by_index(0)
    return [[_xls_cell_to_text(cell, book.datemode) for cell in sheet.row(i)] for i in range(sheet.nrows)]


def spreadsheet_to_csv(data: bytes) -> str:
    """Convert the first worksheet of an .xlsx or legacy .xls workbook to CSV text.

    Raises ``InvalidInputError`` if the workbook cannot be read.
    """
    rows = _xls_rows(data) if data.startswith(OLE2_SIGNATURE) else _xlsx_rows(data)

    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerows(rows)
    text = out.getvalue()
    logger.info("Converted spreadsheet to CSV: %d chars", len(text))
    return text


def bound_sample(lines: list[str], *, sample_lines: int, char_ceiling: int) -> tuple[str, bool]:
    """First *sample_lines* lines, cut to *char_ceiling* characters plus marker."""
    sample = "\n".join(lines[:sample_lines])
    if len(sample) > char_ceiling:
        return sample[:char_ceiling] + TRUNCATION_MARKER, True
    return sample, False


def prepare_content(
    data: bytes,
    file_reference: str,
    content_type: str | None = None,
    *,
    sample_lines: int = DEFAULT_SAMPLE_LINES,
    char_ceiling: int = DEFAULT_CHAR_CEILING,
) -> PreparedContent:
    mime = resolve_content_type(file_reference, content_type)
    lane = classify(mime, file_reference)
    file_name = file_name_from_reference(file_reference)

    if lane is DocumentLane.BINARY:
        mime = mime or DEFAULT_BINARY_MIME
        return PreparedContent(
            lane=lane,
            mime_type=mime,
            file_name=file_name,
            attachment=Attachment(data=data, mime_type=mime),
        )

    text = spreadsheet_to_csv(data) if lane is DocumentLane.SPREADSHEET else decode_text(data)
    lines = text.splitlines()
    sample, truncated = bound_sample(lines, sample_lines=sample_lines, char_ceiling=char_ceiling)

    return PreparedContent(
        lane=lane,
        mime_type=mime or "text/csv",
        file_name=file_name,
        sample_text=sample,
        total_rows=count_data_rows(lines),
        truncated=truncated,
    )
