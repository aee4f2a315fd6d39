import io
import unittest
from unittest.mock import patch

from docscan.services.content_preparer import (
    OLE2_SIGNATURE,
    TRUNCATION_MARKER,
    DocumentLane,
    bound_sample,
    classify,
    count_data_rows,
    prepare_content,
)
from docscan.services.errors import InvalidInputError


def _csv(rows: int) -> bytes:
    lines = ["Date,Description,Amount"]
    lines += [f"2024-01-{(i % 28) + 1:02d},Payment {i},-{i}.00" for i in range(1, rows + 1)]
    return ("\n".join(lines) + "\n").encode("utf-8")


class ClassifyTests(unittest.TestCase):
    def test_pdf_and_images_are_binary(self):
        self.assertIs(classify("application/pdf"), DocumentLane.BINARY)
        self.assertIs(classify("image/png"), DocumentLane.BINARY)

    def test_text_types_are_delimited(self):
        self.assertIs(classify("text/csv"), DocumentLane.DELIMITED)
        self.assertIs(classify("text/plain"), DocumentLane.DELIMITED)

    def test_spreadsheet_types(self):
        mime = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        self.assertIs(classify(mime), DocumentLane.SPREADSHEET)
        self.assertIs(classify("application/vnd.ms-excel"), DocumentLane.SPREADSHEET)

    def test_extension_used_when_type_missing(self):
        self.assertIs(classify("", "uploads/u1/export.xlsx"), DocumentLane.SPREADSHEET)
        self.assertIs(classify("", "uploads/u1/export.tsv"), DocumentLane.DELIMITED)
        self.assertIs(classify("", "uploads/u1/scan"), DocumentLane.BINARY)


class DelimitedLaneTests(unittest.TestCase):
    def test_only_first_lines_are_sampled(self):
        prepared = prepare_content(_csv(40), "uploads/u1/chase.csv", "text/csv")

        self.assertIs(prepared.lane, DocumentLane.DELIMITED)
        self.assertIsNone(prepared.attachment)
        self.assertEqual(len(prepared.sample_text.splitlines()), 15)
        self.assertNotIn("Payment 15,", prepared.sample_text)
        self.assertIn("Payment 14,", prepared.sample_text)
        self.assertEqual(prepared.total_rows, 40)
        self.assertFalse(prepared.truncated)

    def test_sample_respects_line_setting(self):
        prepared = prepare_content(_csv(10), "a.csv", "text/csv", sample_lines=3)
        self.assertEqual(len(prepared.sample_text.splitlines()), 3)
        self.assertEqual(prepared.total_rows, 10)

    def test_char_ceiling_truncates_with_marker(self):
        prepared = prepare_content(_csv(40), "a.csv", "text/csv", char_ceiling=100)

        self.assertTrue(prepared.truncated)
        self.assertTrue(prepared.sample_text.endswith(TRUNCATION_MARKER))
        self.assertEqual(len(prepared.sample_text), 100 + len(TRUNCATION_MARKER))

    def test_three_line_csv_counts_two_rows(self):
        data = b"Date,Description,Amount\n2024-01-01,Coffee,-3.50\n2024-01-02,Salary,1000.00\n"
        prepared = prepare_content(data, "statement.csv", None)

        self.assertIs(prepared.lane, DocumentLane.DELIMITED)
        self.assertEqual(prepared.total_rows, 2)

    def test_bom_and_invalid_bytes_are_tolerated(self):
        data = b"\xef\xbb\xbfDate,Description\n2024-01-01,Caf\xe9\n"
        prepared = prepare_content(data, "a.csv", "text/csv")

        self.assertTrue(prepared.sample_text.startswith("Date,"))
        self.assertIn("�", prepared.sample_text)

    def test_blank_lines_do_not_count(self):
        self.assertEqual(count_data_rows(["h", "", "a", "  ", "b"]), 2)
        self.assertEqual(count_data_rows([]), 0)

    def test_bound_sample_short_text_untouched(self):
        self.assertEqual(bound_sample(["a", "b"], sample_lines=15, char_ceiling=50), ("a\nb", False))


class BinaryLaneTests(unittest.TestCase):
    def test_pdf_bytes_pass_through(self):
        data = b"%PDF-1.7 binary"
        prepared = prepare_content(data, "uploads/u1/march.pdf", "application/pdf")

        self.assertIs(prepared.lane, DocumentLane.BINARY)
        self.assertEqual(prepared.attachment.data, data)
        self.assertEqual(prepared.attachment.mime_type, "application/pdf")
        self.assertEqual(prepared.sample_text, "")

    def test_unknown_type_defaults_to_pdf(self):
        prepared = prepare_content(b"...", "uploads/u1/scan", None)
        self.assertEqual(prepared.mime_type, "application/pdf")

    def test_image_keeps_its_type(self):
        prepared = prepare_content(b"\x89PNG", "uploads/u1/photo.png", None)
        self.assertEqual(prepared.attachment.mime_type, "image/png")


class SpreadsheetLaneTests(unittest.TestCase):
    def _workbook(self) -> bytes:
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.append(["Date", "Description", "Amount"])
        ws.append(["2024-02-01", "Rent", -1200.5])
        ws.append(["2024-02-03", "Refund", 40])
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    def test_first_sheet_converted_to_csv(self):
        mime = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        prepared = prepare_content(self._workbook(), "uploads/u1/feb.xlsx", mime)

        self.assertIs(prepared.lane, DocumentLane.SPREADSHEET)
        self.assertTrue(prepared.is_delimited)
        lines = prepared.sample_text.splitlines()
        self.assertEqual(lines[0], "Date,Description,Amount")
        self.assertEqual(lines[1], "2024-02-01,Rent,-1200.5")
        self.assertEqual(prepared.total_rows, 2)

    def test_unreadable_workbook_is_rejected(self):
        with self.assertRaises(InvalidInputError):
            prepare_content(b"not a workbook", "uploads/u1/feb.xlsx", None)


class _LegacySheet:
    def __init__(self, rows):
        self._rows = rows
        self.nrows = len(rows)

    def row(self, i):
        return self._rows[i]


class _LegacyBook:
    nsheets = 1
    datemode = 0

    def __init__(self, rows):
        self._sheet = _LegacySheet(rows)

    def sheet_by_index(self, index):
        return self._sheet


class LegacyXlsTests(unittest.TestCase):
    def test_xls_workbook_read_with_xlrd(self):
        import xlrd
        from xlrd.sheet import Cell

        book = _LegacyBook(
            [
                [Cell(xlrd.XL_CELL_TEXT, "Date"), Cell(xlrd.XL_CELL_TEXT, "Description"), Cell(xlrd.XL_CELL_TEXT, "Amount")],
                [Cell(xlrd.XL_CELL_DATE, 45323.0), Cell(xlrd.XL_CELL_TEXT, "Rent"), Cell(xlrd.XL_CELL_NUMBER, -1200.5)],
                [Cell(xlrd.XL_CELL_DATE, 45325.0), Cell(xlrd.XL_CELL_TEXT, "Refund"), Cell(xlrd.XL_CELL_NUMBER, 40.0)],
                [Cell(xlrd.XL_CELL_EMPTY, ""), Cell(xlrd.XL_CELL_TEXT, "Note"), Cell(xlrd.XL_CELL_BLANK, "")],
            ]
        )
        data = OLE2_SIGNATURE + b"\x00" * 64

        with patch("xlrd.open_workbook", return_value=book) as open_workbook:
            prepared = prepare_content(data, "uploads/u1/feb.xls", "application/vnd.ms-excel")

        open_workbook.assert_called_once_with(file_contents=data)
        self.assertIs(prepared.lane, DocumentLane.SPREADSHEET)
        self.assertEqual(
            prepared.sample_text.splitlines(),
            [
                "Date,Description,Amount",
                "2024-02-01,Rent,-1200.5",
                "2024-02-03,Refund,40",
                ",Note,",
            ],
        )
        self.assertEqual(prepared.total_rows, 3)

    def test_xlsx_bytes_do_not_reach_xlrd(self):
        with patch("xlrd.open_workbook") as open_workbook:
            with self.assertRaises(InvalidInputError):
                prepare_content(b"PK\x03\x04broken", "uploads/u1/feb.xlsx", None)

        open_workbook.assert_not_called()

    def test_corrupt_xls_is_rejected(self):
        with self.assertRaises(InvalidInputError) as ctx:
            prepare_content(OLE2_SIGNATURE + b"\x00" * 64, "uploads/u1/feb.xls", None)

        self.assertIn(".xls", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
