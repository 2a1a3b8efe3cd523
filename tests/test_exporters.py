import io

from openpyxl import load_workbook

from receipt_automation.domain.models import Merchant, ReceiptRecord, StoredReceiptItem, TaxRateEntry, Totals
from receipt_automation.pipeline.exporters import (
    BOM,
    export_filename,
    to_csv,
    to_csv_bytes,
    to_html_table,
    to_xlsx_bytes,
)
from receipt_automation.pipeline.projector import ExportTable, build_export_table


def _table():
    return ExportTable(columns=("a", "b"), rows=(("x,y", 'q"z'), ("plain", 3), ("two\nlines", "")))


def test_csv_quotes_only_when_needed():
    assert to_csv(_table(), bom=False) == 'a,b\n"x,y","q""z"\nplain,3\n"two\nlines",'


def test_csv_has_bom_by_default():
    text = to_csv(_table())
    assert text.startswith(BOM)
    assert text[len(BOM):].split("\n", 1)[0] == "a,b"
    assert to_csv_bytes(_table()).startswith(b"\xef\xbb\xbf")


def test_csv_empty_table_is_only_the_header():
    assert to_csv(ExportTable(columns=("a", "b"), rows=()), bom=False) == "a,b"


def test_csv_keeps_turkish_characters():
    table = ExportTable(columns=("merchant_name",), rows=(("Şişli Börekçisi",),))
    assert "Şişli Börekçisi".encode("utf-8") in to_csv_bytes(table)


def test_xlsx_roundtrip_through_openpyxl():
    item = StoredReceiptItem(
        id="a",
        created_at=1000,
        file_name="a.jpg",
        mime_type="image/jpeg",
        size=1,
        status="done",
        receipt=ReceiptRecord(
            merchant=Merchant(name="Cafe X"),
            totals=Totals(total=12.5),
            tax_rates=(TaxRateEntry(rate=10, taxable_amount=100, tax_amount=10),),
        ),
    )
    table = build_export_table([item])
    wb = load_workbook(io.BytesIO(to_xlsx_bytes(table)))
    assert wb.sheetnames == ["Receipts"]
    ws = wb["Receipts"]
    header = [c.value for c in ws[1]]
    assert header == list(table.columns)
    values = dict(zip(header, [c.value for c in ws[2]]))
    assert values["merchant_name"] == "Cafe X"
    assert values["total"] == 12.5
    assert values["tax_amount 10%"] == 10
    assert ws.max_row == 2


def test_xlsx_custom_sheet_name():
    wb = load_workbook(io.BytesIO(to_xlsx_bytes(_table(), sheet_name="Fişler")))
    assert wb.sheetnames == ["Fişler"]


def test_html_escapes_every_cell():
    table = ExportTable(columns=("name<", "b"), rows=(("<b>Tom & Jerry</b>", None),))
    out = to_html_table(table)
    assert out.startswith("<table>\n<thead><tr>")
    assert "<th>name&lt;</th>" in out
    assert "<td>&lt;b&gt;Tom &amp; Jerry&lt;/b&gt;</td><td></td>" in out
    assert out.endswith("</tbody>\n</table>")
    assert "<b>" not in out


def test_export_filename():
    assert export_filename("report", "csv") == "report.csv"
    assert export_filename("report.CSV", "csv") == "report.CSV"
    assert export_filename("report", ".xlsx") == "report.xlsx"
    assert export_filename("", "csv") == "receipts.csv"
    assert export_filename("  ", "html") == "receipts.html"


def test_csv_quotes_bare_carriage_return():
    table = ExportTable(columns=("merchant_name", "total"), rows=(("a\rb", "x"),))
    assert to_csv(table, bom=False) == 'merchant_name,total\n"a\rb",x'


def test_xlsx_drops_control_characters():
    table = ExportTable(columns=("merchant_name", "total"), rows=(("Cafe\u0001X", 12.5),))
    ws = load_workbook(io.BytesIO(to_xlsx_bytes(table)))["Receipts"]
    assert ws["A2"].value == "CafeX"
    assert ws["B2"].value == 12.5
    assert "Cafe\u0001X" in to_csv(table)


def test_xlsx_keeps_leading_equals_as_text():
    table = ExportTable(columns=("merchant_name",), rows=(("=1+1",), ('=HYPERLINK("http://x")',)))
    ws = load_workbook(io.BytesIO(to_xlsx_bytes(table)))["Receipts"]
    assert ws["A2"].value == "=1+1"
    assert ws["A2"].data_type == "s"
    assert ws["A3"].value == '=HYPERLINK("http://x")'
    assert ws["A3"].data_type == "s"
