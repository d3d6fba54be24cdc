"""Render export projections to CSV text and PDF files.

The CSV rows coming from :mod:`mall_inventory.export` are already quoted
where needed, so the CSV renderer only joins them. PDF documents are laid
out with reportlab platypus tables; every page gets the document footer with
``Page i of n``.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import KeepTogether, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from . import log
from .export import CSV_HEADERS, LocationSection, ReportDocument, TableSection


PRIMARY = colors.HexColor("#4f46e5")
SLATE = colors.HexColor("#64748b")
PANEL = colors.HexColor("#f8fafc")
HEADING = colors.HexColor("#1e293b")
FOOTER = colors.HexColor("#9ca3af")

MARGIN = 14 * mm
CONTENT_WIDTH = A4[0] - 2 * MARGIN
# Columns holding free text get a larger share of the page width.
WIDE_COLUMNS = frozenset({"Item", "Item Name", "Location", "Person", "Persons", "Persons Involved", "Notes"})


def render_csv(rows: Sequence[Sequence[str]], headers: Sequence[str] = CSV_HEADERS) -> str:
    """Join header and rows with commas and newlines."""

    lines = [",".join(headers)]
    lines.extend(",".join(row) for row in rows)
    return "\n".join(lines)


def write_csv(rows: Sequence[Sequence[str]], destination: Path) -> Path:
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(render_csv(rows), encoding="utf-8")
    log.info("Wrote CSV export with %d rows to '%s'", len(rows), destination)
    return destination


def _numbered_canvas(footer: str) -> type:
    """Canvas class that stamps ``footer`` and the page count on every page."""

    class NumberedCanvas(canvas.Canvas):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._saved_page_states: List[dict] = []

        def showPage(self):
            self._saved_page_states.append(dict(self.__dict__))
            self._startPage()

        def save(self):
            total = len(self._saved_page_states)
            for state in self._saved_page_states:
                self.__dict__.update(state)
                self._draw_footer(total)
                super().showPage()
            super().save()

        def _draw_footer(self, total: int) -> None:
            width, _ = self._pagesize
            self.setFont("Helvetica", 7)
            self.setFillColor(FOOTER)
            self.drawCentredString(width / 2, 8 * mm, f"{footer}  |  Page {self._pageNumber} of {total}")

    return NumberedCanvas


def _styles() -> dict:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("ReportTitle", parent=base["Heading1"], fontSize=20, textColor=PRIMARY, spaceAfter=2),
        "subtitle": ParagraphStyle("ReportSubtitle", parent=base["Normal"], fontSize=11, textColor=HEADING),
        "meta": ParagraphStyle("ReportMeta", parent=base["Normal"], fontSize=8, textColor=SLATE),
        "summary": ParagraphStyle("ReportSummary", parent=base["Normal"], fontSize=9, textColor=SLATE),
        "heading": ParagraphStyle("ReportHeading", parent=base["Heading2"], fontSize=13, textColor=HEADING),
        "location": ParagraphStyle("LocationHeading", parent=base["Heading3"], fontSize=11, textColor=HEADING),
        "cell": ParagraphStyle("Cell", parent=base["Normal"], fontSize=8, leading=10),
        "head_cell": ParagraphStyle("HeadCell", parent=base["Normal"], fontSize=8, leading=10, textColor=colors.white),
        "empty": ParagraphStyle("Empty", parent=base["Normal"], fontSize=9, textColor=SLATE, alignment=TA_CENTER),
    }


def _column_widths(head: Sequence[str]) -> List[float]:
    weights = [1.6 if title in WIDE_COLUMNS else 1.0 for title in head]
    unit = CONTENT_WIDTH / sum(weights)
    return [weight * unit for weight in weights]


def _table(section: TableSection, styles: dict, *, header_fill=PRIMARY) -> Table:
    cell = styles["cell"]
    data = [[Paragraph(f"<b>{escape(text)}</b>", styles["head_cell"]) for text in section.head]]
    data.extend([Paragraph(escape(value), cell) for value in row] for row in section.body)
    table = Table(data, colWidths=_column_widths(section.head), repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), header_fill),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#e2e8f0")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, PANEL]),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return table


def _location_flowables(section: LocationSection, styles: dict) -> list:
    flowables = [Paragraph(escape(section.location), styles["location"])]
    if section.summary_line:
        flowables.append(Paragraph(escape(section.summary_line), styles["meta"]))
    flowables.append(Spacer(1, 2 * mm))
    if section.transactions is not None:
        flowables.append(Paragraph(escape(section.items.title), styles["heading"]))
    flowables.append(_table(section.items, styles, header_fill=SLATE if section.transactions is None else PRIMARY))
    blocks = [KeepTogether(flowables)]
    if section.transactions is not None:
        blocks.append(Spacer(1, 4 * mm))
        blocks.append(Paragraph(escape(section.transactions.title), styles["heading"]))
        if section.transactions.body:
            blocks.append(_table(section.transactions, styles, header_fill=SLATE))
        else:
            blocks.append(Paragraph("No transactions", styles["empty"]))
    blocks.append(Spacer(1, 6 * mm))
    return blocks


def build_flowables(document: ReportDocument) -> list:
    """Turn a report document into the platypus story."""

    styles = _styles()
    story: list = [
        Paragraph(escape(document.title), styles["title"]),
        Paragraph(escape(document.subtitle), styles["subtitle"]),
    ]
    story.extend(Paragraph(escape(line), styles["meta"]) for line in document.header_lines)
    story.append(Spacer(1, 4 * mm))

    summary = Table(
        [[Paragraph(escape(line), styles["summary"])] for line in document.summary_lines],
        colWidths=[CONTENT_WIDTH],
    )
    summary.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), PANEL),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
    ]))
    story.extend([summary, Spacer(1, 6 * mm)])

    if document.transactions is not None:
        story.append(Paragraph(escape(document.transactions.title), styles["heading"]))
        if document.transactions.body:
            story.append(_table(document.transactions, styles))
        else:
            story.append(Paragraph("No transactions found", styles["empty"]))

    if document.locations:
        if document.transactions is not None:
            story.append(PageBreak())
        if document.locations_title:
            story.append(Paragraph(escape(document.locations_title), styles["heading"]))
        for section in document.locations:
            story.extend(_location_flowables(section, styles))
    return story


def render_pdf(document: ReportDocument, destination: Path) -> Path:
    """Lay out ``document`` as an A4 PDF at ``destination``."""

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    pdf = SimpleDocTemplate(
        str(destination),
        pagesize=A4,
        topMargin=MARGIN,
        bottomMargin=18 * mm,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        title=f"{document.title} - {document.subtitle}",
    )
    pdf.build(build_flowables(document), canvasmaker=_numbered_canvas(document.footer))
    log.info("Wrote PDF report '%s'", destination)
    return destination
