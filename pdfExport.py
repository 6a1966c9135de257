# pdfExport.py
"""
Render bills and prescriptions to A4 PDF with reportlab.

Row and summary heights are measured with the same font metrics used for
drawing, so the page plan from billLayout matches what ends up on paper.
"""
import io
import re
from datetime import date

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas
from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing

from appUtils import format_display_date
from billLayout import plan_bill_layout

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 40
HEADER_HEIGHT = 110
PATIENT_BLOCK_HEIGHT = 70
TABLE_HEADER_HEIGHT = 24
CONTINUATION_HEADER_HEIGHT = 40
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
PRICE_COLUMN_WIDTH = 100
CELL_PADDING = 8

ROW_LINE_HEIGHT = 14
ROW_PADDING = 30
SUMMARY_LINES = 5
SUMMARY_LINE_HEIGHT = 26
SUMMARY_ADVICE_LINE_HEIGHT = 14
SUMMARY_PADDING = 60
COMPRESSED_LINE_HEIGHT = 16
COMPRESSED_ADVICE_LINE_HEIGHT = 12
COMPRESSED_PADDING = 40
QR_SIZE = 80

BODY_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"
BODY_SIZE = 10

# symbols outside the standard PDF font encoding
PDF_CURRENCY = {"₹": "Rs. ", "元": "CNY "}

DOC_TITLES = {"bill": "INVOICE", "prescription": "PRESCRIPTION"}


def pdf_filename(doc_type, patient_name, record_id):
    safe_name = re.sub(r"\s", "_", patient_name)
    return f"{doc_type}-{safe_name}-{record_id}.pdf"


class ReportlabSurface:
    """Measures document rows and the summary block with reportlab font metrics."""

    def __init__(self, rows, advice, priced):
        self.rows = rows
        self.priced = priced
        text_width = CONTENT_WIDTH - 2 * CELL_PADDING - (PRICE_COLUMN_WIDTH if priced else 0)
        self.row_lines = [simpleSplit(label, BODY_FONT, BODY_SIZE, text_width) or [""] for label, _ in rows]
        self.advice_lines = simpleSplit(advice, BODY_FONT, BODY_SIZE, CONTENT_WIDTH) if advice else []

    def row_height(self, index):
        return len(self.row_lines[index]) * ROW_LINE_HEIGHT + ROW_PADDING

    def summary_height(self, compressed):
        if compressed:
            return (SUMMARY_LINES * COMPRESSED_LINE_HEIGHT
                    + len(self.advice_lines) * COMPRESSED_ADVICE_LINE_HEIGHT + COMPRESSED_PADDING)
        return SUMMARY_LINES * SUMMARY_LINE_HEIGHT + len(self.advice_lines) * SUMMARY_ADVICE_LINE_HEIGHT + SUMMARY_PADDING

    def measure(self, rows, with_summary, compressed):
        height = sum(self.row_height(i) for i in rows)
        if with_summary:
            height += self.summary_height(compressed)
        return height

    def capacity(self, page_index):
        if page_index == 0:
            return PAGE_HEIGHT - 2 * MARGIN - HEADER_HEIGHT - PATIENT_BLOCK_HEIGHT - TABLE_HEADER_HEIGHT
        return PAGE_HEIGHT - 2 * MARGIN - CONTINUATION_HEADER_HEIGHT - TABLE_HEADER_HEIGHT


def _document_rows(doc_type, prescription):
    if doc_type != "bill":
        return [(item, None) for item in prescription.items or []]
    billed = {row["item"]: row["price"] for row in (prescription.bill_details or {}).get("items", [])}
    return [(item, billed.get(item, 0)) for item in prescription.items or []]


def _summary_lines(doc_type, prescription, currency):
    details = prescription.bill_details or {}
    if doc_type == "bill" and details:
        tax = details.get("taxInfo", {})
        return [
            ("Subtotal", f"{currency}{details.get('subtotal', 0):.2f}"),
            (f"{tax.get('type', 'Tax')} ({tax.get('percentage', 0)}%)", f"{currency}{tax.get('amount', 0):.2f}"),
            ("Appointment Fee", f"{currency}{details.get('appointmentFee', 0):.2f}"),
            ("Round Off", f"{currency}{details.get('roundOff', 0):.2f}"),
            ("Total", f"{currency}{details.get('total', 0):.2f}"),
        ]
    return [
        ("Doctor", prescription.doctor),
        ("Visit Date", format_display_date(prescription.visit_date) or "-"),
        ("Valid Till", format_display_date(prescription.due_date) or "-"),
        ("Items", str(len(prescription.items or []))),
        ("Signature", "______________________"),
    ]


def _draw_qr(c, url, x, y, size):
    widget = QrCodeWidget(url)
    x1, y1, x2, y2 = widget.getBounds()
    drawing = Drawing(size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0])
    drawing.add(widget)
    renderPDF.draw(drawing, c, x, y)


def render_document(doc_type, prescription, settings, public_url=None, today=None):
    """Return (pdf_bytes, layout) for a bill or prescription."""
    currency = PDF_CURRENCY.get(settings.currency, settings.currency)
    priced = doc_type == "bill"
    rows = _document_rows(doc_type, prescription)
    surface = ReportlabSurface(rows, prescription.advice, priced)
    layout = plan_bill_layout(surface, len(rows))

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(pdf_filename(doc_type, prescription.patient_name, prescription.id))
    total_pages = len(layout.pages)

    for page_index, page_rows in enumerate(layout.pages):
        y = PAGE_HEIGHT - MARGIN
        if page_index == 0:
            y = _draw_header(c, doc_type, prescription, settings, y, today)
        else:
            c.setFont(BOLD_FONT, 12)
            c.drawString(MARGIN, y - 20, f"{settings.clinic_name} · {DOC_TITLES[doc_type].title()} (continued)")
            y -= CONTINUATION_HEADER_HEIGHT

        y = _draw_table_header(c, priced, y)
        for index in page_rows:
            y = _draw_row(c, surface, rows, index, currency, priced, y)

        if layout.summary_page == page_index:
            _draw_summary(c, surface, doc_type, prescription, currency,
                          layout.compressed, public_url, y)

        c.setFont("Helvetica-Oblique", 8)
        c.drawString(MARGIN, MARGIN / 2,
                     f"Thank you for choosing {settings.clinic_name}. This receipt is valid till the due date.")
        c.drawRightString(PAGE_WIDTH - MARGIN, MARGIN / 2, f"Page {page_index + 1} of {total_pages}")
        c.showPage()

    c.save()
    return buffer.getvalue(), layout


def _draw_header(c, doc_type, prescription, settings, y, today):
    c.setFont(BOLD_FONT, 18)
    c.drawString(MARGIN, y - 24, settings.clinic_name)
    c.setFont(BODY_FONT, 9)
    for i, line in enumerate(simpleSplit(settings.clinic_address or "", BODY_FONT, 9, CONTENT_WIDTH - 160)[:3]):
        c.drawString(MARGIN, y - 42 - i * 12, line)
    c.setFont(BOLD_FONT, 14)
    c.drawRightString(PAGE_WIDTH - MARGIN, y - 24, DOC_TITLES[doc_type])
    c.line(MARGIN, y - HEADER_HEIGHT + 10, PAGE_WIDTH - MARGIN, y - HEADER_HEIGHT + 10)
    y -= HEADER_HEIGHT

    c.setFont(BOLD_FONT, 9)
    c.drawString(MARGIN, y - 12, "BILL TO" if doc_type == "bill" else "PATIENT")
    c.setFont(BOLD_FONT, 12)
    c.drawString(MARGIN, y - 28, prescription.patient_name)
    c.setFont(BODY_FONT, 9)
    c.drawString(MARGIN, y - 42, f"Doctor: {prescription.doctor}")

    right = PAGE_WIDTH - MARGIN
    prefix = "INV" if doc_type == "bill" else "RX"
    c.drawRightString(right, y - 12, f"{'Invoice' if doc_type == 'bill' else 'Prescription'} #: {prefix}-{prescription.id}")
    c.drawRightString(right, y - 26, f"Date: {format_display_date(prescription.visit_date or today or date.today())}")
    if prescription.due_date:
        c.drawRightString(right, y - 40, f"Due Date: {format_display_date(prescription.due_date)}")
    return y - PATIENT_BLOCK_HEIGHT


def _draw_table_header(c, priced, y):
    c.setFillGray(0.93)
    c.rect(MARGIN, y - TABLE_HEADER_HEIGHT, CONTENT_WIDTH, TABLE_HEADER_HEIGHT, stroke=0, fill=1)
    c.setFillGray(0)
    c.setFont(BOLD_FONT, BODY_SIZE)
    c.drawString(MARGIN + CELL_PADDING, y - 16, "Item")
    if priced:
        c.drawRightString(PAGE_WIDTH - MARGIN - CELL_PADDING, y - 16, "Price")
    return y - TABLE_HEADER_HEIGHT


def _draw_row(c, surface, rows, index, currency, priced, y):
    height = surface.row_height(index)
    c.setFont(BODY_FONT, BODY_SIZE)
    text_y = y - ROW_PADDING / 2 - BODY_SIZE
    for line in surface.row_lines[index]:
        c.drawString(MARGIN + CELL_PADDING, text_y, line)
        text_y -= ROW_LINE_HEIGHT
    if priced:
        c.drawRightString(PAGE_WIDTH - MARGIN - CELL_PADDING, y - ROW_PADDING / 2 - BODY_SIZE,
                          f"{currency}{(rows[index][1] or 0):.2f}")
    c.setStrokeGray(0.85)
    c.line(MARGIN, y - height, PAGE_WIDTH - MARGIN, y - height)
    c.setStrokeGray(0)
    return y - height


def _draw_summary(c, surface, doc_type, prescription, currency, compressed, public_url, y):
    line_height = COMPRESSED_LINE_HEIGHT if compressed else SUMMARY_LINE_HEIGHT
    advice_height = COMPRESSED_ADVICE_LINE_HEIGHT if compressed else SUMMARY_ADVICE_LINE_HEIGHT
    padding = COMPRESSED_PADDING if compressed else SUMMARY_PADDING
    top = y - padding / 2
    left = MARGIN + CONTENT_WIDTH / 2
    right = PAGE_WIDTH - MARGIN - CELL_PADDING

    lines = _summary_lines(doc_type, prescription, currency)
    for i, (label, value) in enumerate(lines):
        last = i == len(lines) - 1 and doc_type == "bill"
        c.setFont(BOLD_FONT if last else BODY_FONT, BODY_SIZE + (1 if last else 0))
        line_y = top - (i + 1) * line_height + 6
        c.drawString(left, line_y, f"{label}:")
        c.drawRightString(right, line_y, value)

    if public_url:
        qr_size = min(QR_SIZE, SUMMARY_LINES * line_height)
        _draw_qr(c, public_url, MARGIN, top - qr_size, qr_size)

    advice_top = top - SUMMARY_LINES * line_height
    if surface.advice_lines:
        c.setFont(BOLD_FONT, BODY_SIZE)
        c.drawString(MARGIN, advice_top - 8, "Doctor's Advice:")
        c.setFont("Helvetica-Oblique", BODY_SIZE)
        for i, line in enumerate(surface.advice_lines):
            c.drawString(MARGIN, advice_top - 8 - (i + 1) * advice_height, line)
