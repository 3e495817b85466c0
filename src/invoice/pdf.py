"""Render a prepared invoice document to PDF with reportlab."""

from __future__ import annotations

import io
import logging
from typing import List, Optional, Tuple
from xml.sax.saxutils import escape

from PIL import Image, ImageOps
from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import LETTER, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Image as PdfImage,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from src.invoice.document import LINE_ITEM_COLUMNS, InvoiceDocument, TicketImage

logger = logging.getLogger(__name__)

PAGE_SIZE = landscape(LETTER)
SIDE_MARGIN = 30
TOP_BOTTOM_MARGIN = 40

# Printed size of ticket photographs
PORTRAIT_IMAGE_HEIGHT = 6.5 * inch
LANDSCAPE_IMAGE_WIDTH = 6.5 * inch
# Pixel cap before embedding, keeps large phone photos from bloating the file
MAX_IMAGE_PIXELS = (2000, 2000)

COLUMN_WIDTHS = [
    0.85 * inch,
    0.8 * inch,
    1.1 * inch,
    1.4 * inch,
    2.2 * inch,
    1.45 * inch,
    0.6 * inch,
    0.8 * inch,
    0.9 * inch,
]

HEADER_BG = colors.HexColor("#1F3A5F")
MONTH_BG = colors.HexColor("#E8EDF3")
BORDER = colors.HexColor("#B0B8C4")


def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "company": ParagraphStyle(
            "Company", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=16,
            spaceAfter=4,
        ),
        "small": ParagraphStyle("Small", parent=base["Normal"], fontSize=9, leading=11),
        "title": ParagraphStyle(
            "Title", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=20,
            alignment=TA_RIGHT,
        ),
        "meta": ParagraphStyle(
            "Meta", parent=base["Normal"], fontSize=10, leading=13, alignment=TA_RIGHT,
        ),
        "cell": ParagraphStyle("Cell", parent=base["Normal"], fontSize=8, leading=10),
        "section": ParagraphStyle(
            "Section", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=18,
            spaceAfter=12,
        ),
        "caption": ParagraphStyle("Caption", parent=base["Normal"], fontSize=9, spaceAfter=4),
    }


def _p(text: str, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(text or ""), style)


def _render_header(document: InvoiceDocument, s: dict) -> list:
    header = document.header
    company = header.company

    left = [_p(company.name, s["company"])]
    for line in company.address_lines:
        left.append(_p(line, s["small"]))
    if company.phone:
        left.append(_p(f"Phone: {company.phone}", s["small"]))
    if company.email:
        left.append(_p(f"Email: {company.email}", s["small"]))
    if company.tax_number:
        left.append(_p(f"HST #: {company.tax_number}", s["small"]))

    right = [
        _p("INVOICE", s["title"]),
        Spacer(1, 6),
        _p(f"Invoice #: {header.invoice_number}", s["meta"]),
        _p(f"Date: {header.invoice_date}", s["meta"]),
    ]
    if header.billed_to:
        right.append(_p(f"Bill To: {header.billed_to}", s["meta"]))
    if header.billed_email:
        right.append(_p(header.billed_email, s["meta"]))

    usable = PAGE_SIZE[0] - 2 * SIDE_MARGIN
    table = Table([[left, right]], colWidths=[usable * 0.55, usable * 0.45])
    table.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, 0), 1, HEADER_BG),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
            ]
        )
    )
    return [table]


def _render_line_items(document: InvoiceDocument, s: dict, group_by_month: bool) -> list:
    data: List[list] = [list(LINE_ITEM_COLUMNS)]
    month_rows: List[int] = []

    def add_row(row):
        cells = row.cells()
        # Route and ticket columns can be long; let them wrap
        cells[4] = _p(cells[4], s["cell"])
        cells[5] = _p(cells[5], s["cell"])
        data.append(cells)

    if group_by_month:
        for group in document.month_groups:
            month_rows.append(len(data))
            data.append([group.label] + [""] * (len(LINE_ITEM_COLUMNS) - 1))
            for row in group.rows:
                add_row(row)
    else:
        for row in document.rows:
            add_row(row)

    table = Table(data, colWidths=COLUMN_WIDTHS, repeatRows=1)
    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("ALIGN", (6, 0), (-1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.5, BORDER),
    ]
    for index in month_rows:
        style_cmds.extend(
            [
                ("SPAN", (0, index), (-1, index)),
                ("BACKGROUND", (0, index), (-1, index), MONTH_BG),
                ("FONTNAME", (0, index), (-1, index), "Helvetica-Bold"),
                ("ALIGN", (0, index), (-1, index), "LEFT"),
            ]
        )
    table.setStyle(TableStyle(style_cmds))
    return [table]


def _render_totals(document: InvoiceDocument) -> list:
    data = [[line.label, line.value] for line in document.totals]
    table = Table(data, colWidths=[1.6 * inch, 1.2 * inch], hAlign="RIGHT")
    table.setStyle(
        TableStyle(
            [
                ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("LINEABOVE", (0, -1), (-1, -1), 1, HEADER_BG),
            ]
        )
    )
    return [table]


def scaled_size(width: int, height: int) -> Tuple[float, float]:
    """
    Printed size for an image of the given pixel dimensions.

    Portrait images get a fixed height and landscape images a fixed width, so
    tickets print at the same scale whatever camera took them.
    """
    if height > width:
        return PORTRAIT_IMAGE_HEIGHT * width / height, PORTRAIT_IMAGE_HEIGHT
    return LANDSCAPE_IMAGE_WIDTH, LANDSCAPE_IMAGE_WIDTH * height / width


def prepare_ticket_image(data: bytes) -> Optional[PdfImage]:
    """
    Decode a photograph with Pillow and wrap it as a flowable.

    Returns None if the image cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.thumbnail(MAX_IMAGE_PIXELS)
            width, height = img.size
            out = io.BytesIO()
            img.save(out, "JPEG", quality=85)
    except Exception as exc:
        logger.warning("Could not decode ticket image: %s", exc)
        return None

    out.seek(0)
    printed_width, printed_height = scaled_size(width, height)
    return PdfImage(out, width=printed_width, height=printed_height)


def _render_images(images: List[TicketImage], s: dict) -> list:
    flowables = []
    for ticket in images:
        image = prepare_ticket_image(ticket.data)
        if image is None:
            logger.warning("Skipping ticket image %s for job %s", ticket.path, ticket.job_id)
            continue
        flowables.extend([PageBreak(), _p(ticket.caption, s["caption"]), image])

    if not flowables:
        return []
    return [PageBreak(), _p("Ticket Images", s["section"])] + flowables


def render_invoice_pdf(document: InvoiceDocument, group_by_month: bool = True) -> bytes:
    """
    Lay out an invoice as a landscape letter PDF.

    Args:
        document: Prepared invoice data (see prepare_invoice_document)
        group_by_month: Insert a bold month header row before each month's jobs

    Returns:
        The PDF file contents
    """
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=PAGE_SIZE,
        leftMargin=SIDE_MARGIN,
        rightMargin=SIDE_MARGIN,
        topMargin=TOP_BOTTOM_MARGIN,
        bottomMargin=TOP_BOTTOM_MARGIN,
        title=document.filename or "Invoice",
    )

    s = _styles()
    story = []
    story.extend(_render_header(document, s))
    story.append(Spacer(1, 16))
    story.extend(_render_line_items(document, s, group_by_month))
    story.append(Spacer(1, 12))
    story.extend(_render_totals(document))
    story.extend(_render_images(document.images, s))

    doc.build(story)
    return buf.getvalue()
